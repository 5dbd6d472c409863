"""Search service: the single read entry point for callers."""
from __future__ import annotations

import logging

from trove.services.indexer import SearchIndexer
from trove.services.query_parser import SearchQueryParser
from trove.services.search_types import SearchResult, SearchSort

logger = logging.getLogger(__name__)


class SearchService:
    """Raw query text in, ranked results out."""

    __slots__ = ("indexer", "parser")

    def __init__(
        self,
        indexer: SearchIndexer,
        parser: SearchQueryParser | None = None,
    ) -> None:
        self.indexer = indexer
        self.parser = parser or SearchQueryParser()

    async def search(
        self,
        text: str,
        sort: SearchSort = SearchSort.RELEVANCE,
    ) -> list[SearchResult]:
        """Parse ``text`` and run it against the index.

        Blank input returns [] without touching the parser or the index.
        """
        trimmed = text.strip()
        if not trimmed:
            return []

        query = self.parser.parse(trimmed, sort=sort)
        results = await self.indexer.search_async(query)
        logger.debug("Search %r returned %d result(s)", trimmed, len(results))
        return results
