from __future__ import annotations

import os
import tempfile

# Set test environment BEFORE importing app modules.
# trove.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any trove imports.
_test_tmp = tempfile.mkdtemp(prefix="trove-test-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_tmp, "data"))
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("SEARCH_INDEX_PATH", ":memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import trove.models  # noqa: F401
from trove.db import get_session
from trove.main import app as fastapi_app
from trove.services.indexer import SearchIndexer
from trove.services.search_index import SearchDatabase


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory item store shared by every connection (StaticPool)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


# ── Search fixtures ───────────────────────────────────────────────────


@pytest.fixture(name="index_path")
def index_path_fixture(tmp_path):
    return tmp_path / "search.sqlite"


@pytest.fixture(name="search_database")
def search_database_fixture(index_path):
    """Throwaway index file per test."""
    database = SearchDatabase(index_path)
    yield database
    database.close()


@pytest.fixture(name="indexer")
def indexer_fixture(search_database) -> SearchIndexer:
    return SearchIndexer(search_database)


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(session):
    """TestClient with the lifespan running and the DB session overridden."""

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    with TestClient(fastapi_app) as client:
        yield client
    fastapi_app.dependency_overrides.clear()
