"""FastAPI dependency injection for the search components built at startup."""

from __future__ import annotations

from fastapi import HTTPException, Request

from trove.services.changes import ChangeFeed
from trove.services.indexer import SearchIndexer
from trove.services.search import SearchService


def get_search_indexer(request: Request) -> SearchIndexer:
    """Inject the SearchIndexer initialized at startup."""
    indexer = getattr(request.app.state, "search_indexer", None)
    if indexer is None:
        raise HTTPException(status_code=503, detail="Search indexer unavailable")
    return indexer


def get_search_service(request: Request) -> SearchService:
    """Inject the SearchService initialized at startup."""
    svc = getattr(request.app.state, "search_service", None)
    if svc is None:
        raise HTTPException(status_code=503, detail="Search service unavailable")
    return svc


def get_change_feed(request: Request) -> ChangeFeed | None:
    """Inject the item ChangeFeed if available."""
    return getattr(request.app.state, "change_feed", None)
