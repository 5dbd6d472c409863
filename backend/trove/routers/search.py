"""Search router: free-text/filtered search over the item library."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session, select

from trove.db import get_session
from trove.dependencies import get_search_indexer, get_search_service
from trove.models.item import Item
from trove.services.indexer import SearchIndexer
from trove.services.search import SearchService
from trove.services.search_types import SearchSort

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


class SearchResultResponse(BaseModel):
    item_id: str
    title: str
    snippet: str | None


class SearchResponse(BaseModel):
    results: list[SearchResultResponse]
    total: int


class ReindexResponse(BaseModel):
    indexed: int


@router.get("", response_model=SearchResponse)
async def search_items(
    q: str = Query("", max_length=500, description="Search query"),
    sort: SearchSort = Query(SearchSort.RELEVANCE, description="Result order"),
    search_service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    """Search saved items.

    Query syntax: free words (prefix matched), "quoted phrases", and
    filters ``type:``, ``tag:``, ``collection:``, ``source:``.
    """
    results = await search_service.search(q, sort=sort)
    return SearchResponse(
        results=[
            SearchResultResponse(item_id=r.item_id, title=r.title, snippet=r.snippet)
            for r in results
        ],
        total=len(results),
    )


@router.post("/reindex", response_model=ReindexResponse)
async def reindex_items(
    session: Session = Depends(get_session),
    indexer: SearchIndexer = Depends(get_search_indexer),
) -> ReindexResponse:
    """Rebuild the whole index from the item store."""
    count = indexer.rebuild(lambda: session.exec(select(Item)).all())
    return ReindexResponse(indexed=count)
