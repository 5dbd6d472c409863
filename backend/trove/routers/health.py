from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from trove.db import get_session
from trove.dependencies import get_change_feed
from trove.services.changes import ChangeFeed

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(
    request: Request,
    session: Session = Depends(get_session),
    change_feed: ChangeFeed | None = Depends(get_change_feed),
):
    db_status = "ok"
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    # The index is rebuildable, so an unavailable index degrades search
    # but does not make the service unhealthy.
    index_status: dict = {"status": "not_initialized"}
    database = getattr(request.app.state, "search_database", None)
    if database is not None:
        if database.available:
            # Queued behind pending writes.
            index_status = {"status": "ok", "documents": await database.count_async()}
        else:
            index_status = {"status": "unavailable"}

    indexer = getattr(request.app.state, "search_indexer", None)
    index_status["observing"] = bool(indexer is not None and indexer.is_observing)
    index_status["subscribers"] = change_feed.subscriber_count if change_feed else 0

    return {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "service": "trove-backend",
        "version": "0.1.0",
        "checks": {
            "database": db_status,
            "search_index": index_status,
        },
    }


@router.get("/health/ready")
async def readiness(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": "trove-backend",
                "error": str(exc),
            },
        )

    return {
        "status": "ready",
        "service": "trove-backend",
    }
