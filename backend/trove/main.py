from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import Session, select

import trove.models  # noqa: F401 (registers SQLModel tables)

from trove.config import get_settings
from trove.db import create_db_and_tables, engine
from trove.models.item import Item
from trove.routers import health, items, search
from trove.services.changes import ChangeFeed
from trove.services.indexer import SearchIndexer
from trove.services.search import SearchService
from trove.services.search_index import SearchDatabase

logger = logging.getLogger(__name__)


def _reindex_from_store(indexer: SearchIndexer) -> None:
    try:
        with Session(engine) as session:
            indexer.rebuild(lambda: session.exec(select(Item)).all())
    except Exception:
        logger.warning("Startup re-index failed, search results may be incomplete", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    create_db_and_tables()

    search_database = SearchDatabase(
        settings.index_path,
        result_limit=settings.search_result_limit,
        snippet_tokens=settings.search_snippet_tokens,
    )
    search_indexer = SearchIndexer(search_database)
    app.state.search_database = search_database
    app.state.search_indexer = search_indexer
    app.state.search_service = SearchService(search_indexer)

    # Committed item changes flow into the index from here on.
    change_feed = ChangeFeed()
    change_feed.attach(Session)
    search_indexer.start_observing(change_feed)
    app.state.change_feed = change_feed

    # A recreated index starts empty; the item store is the source of truth.
    if search_database.schema_rebuilt or settings.reindex_on_startup:
        _reindex_from_store(search_indexer)

    yield

    search_indexer.stop_observing()
    change_feed.detach()
    search_database.close()


app = FastAPI(title="Trove", version="0.1.0", lifespan=lifespan)

app.include_router(health.router)
app.include_router(items.router)
app.include_router(search.router)
