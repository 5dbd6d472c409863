"""Full-text search index: SQLite FTS5 table behind a single-writer thread.

All access to the index file goes through one daemon thread that drains a
FIFO queue. Writes (upsert, delete, reset) are fire-and-forget; reads
(search, count) are queued behind every write submitted before them and
the caller waits for the result. A read therefore observes all of the
caller's earlier writes without any explicit acknowledgement.

The index is a derived cache of the item store. Nothing in here raises to
the caller: an unavailable index file, a schema mismatch or a failing
statement degrades to fewer (or no) search results and a log line.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from queue import Queue
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from trove.services.query_builder import SearchQueryBuilder
from trove.services.search_types import SearchDocument, SearchQuery, SearchResult

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
TABLE_NAME = "items_fts"
DEFAULT_RESULT_LIMIT = 100
DEFAULT_SNIPPET_TOKENS = 12

# Column order of the FTS table. ``annotations`` is reserved and always empty.
COLUMNS = (
    "id",
    "title",
    "tags",
    "collection",
    "content",
    "annotations",
    "ai_summary",
    "type",
    "source",
)

# bm25() weight per column, same order as COLUMNS
COLUMN_WEIGHTS = (0.0, 10.0, 6.0, 3.0, 1.0, 0.05, 0.5, 0.1, 0.1)

SNIPPET_OPEN = "["
SNIPPET_CLOSE = "]"
SNIPPET_ELLIPSIS = "…"

_CREATE_TABLE_SQL = (
    f"CREATE VIRTUAL TABLE IF NOT EXISTS {TABLE_NAME} "
    f"USING fts5(id UNINDEXED, {', '.join(COLUMNS[1:])})"
)
_DELETE_SQL = f"DELETE FROM {TABLE_NAME} WHERE id = :id"
_INSERT_SQL = (
    f"INSERT INTO {TABLE_NAME} ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in COLUMNS)})"
)


@dataclass
class _Task:
    name: str
    func: Callable[..., Any]
    args: tuple = ()
    future: Future | None = None
    fallback: Any = None  # result handed to a waiting reader if func blows up


_STOP = object()


class SearchDatabase:
    """Owns the index file and the only connection to it.

    Construct one per process (or one per test, pointing at a throwaway
    path) and inject it into the indexer and the search service.
    """

    __slots__ = (
        "_path",
        "_result_limit",
        "_snippet_tokens",
        "_builder",
        "_queue",
        "_thread",
        "_lock",
        "_closed",
        "_engine",
        "_conn",
        "available",
        "schema_rebuilt",
    )

    def __init__(
        self,
        path: str | Path,
        result_limit: int = DEFAULT_RESULT_LIMIT,
        snippet_tokens: int = DEFAULT_SNIPPET_TOKENS,
        builder: SearchQueryBuilder | None = None,
    ) -> None:
        self._path = path
        self._result_limit = result_limit
        self._snippet_tokens = snippet_tokens
        self._builder = builder or SearchQueryBuilder()
        self._queue: Queue[_Task | object] = Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False
        self._engine: Engine | None = None
        self._conn: Connection | None = None
        self.available = False
        # True when startup found no index, or one with another schema
        # version, and created it empty. The item store should be re-indexed.
        self.schema_rebuilt = False

        self._thread = threading.Thread(
            target=self._run, name="trove-search-index", daemon=True
        )
        self._thread.start()
        self._call("setup", self._setup, fallback=None)

    # ── Lifecycle ────────────────────────────────────────────────────

    def close(self) -> None:
        """Drain queued writes, then release the index file."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=10)

    @property
    def closed(self) -> bool:
        return self._closed

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every write submitted so far has been applied.

        Returns False if the timeout expired first.
        """
        try:
            self._call("flush", lambda: True, fallback=True, timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    # ── Writes (fire-and-forget) ─────────────────────────────────────

    def upsert(self, document: SearchDocument) -> None:
        self._submit("upsert", self._upsert, document)

    def delete(self, item_id: str) -> None:
        self._submit("delete", self._delete, item_id)

    def reset(self) -> None:
        """Drop every row by recreating the table."""
        self._submit("reset", self._reset)

    # ── Reads (wait for queued writes) ───────────────────────────────

    def search(self, query: SearchQuery) -> list[SearchResult]:
        expression = self._builder.build(query)
        if not expression:
            return []
        return self._call("search", self._search, expression, fallback=[])

    async def search_async(self, query: SearchQuery) -> list[SearchResult]:
        """Like search() but suspends the awaiting task instead of blocking."""
        expression = self._builder.build(query)
        if not expression:
            return []
        future = self._enqueue_read("search", self._search, (expression,), fallback=[])
        if future is None:
            return []
        return await asyncio.wrap_future(future)

    def count(self) -> int:
        return self._call("count", self._count, fallback=0)

    async def count_async(self) -> int:
        future = self._enqueue_read("count", self._count, (), fallback=0)
        if future is None:
            return 0
        return await asyncio.wrap_future(future)

    def schema_version(self) -> int:
        return self._call("schema_version", self._schema_version, fallback=0)

    # ── Queue plumbing ───────────────────────────────────────────────

    def _submit(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        with self._lock:
            if self._closed:
                logger.warning("Search index closed, dropping %s", name)
                return
            self._queue.put(_Task(name=name, func=func, args=args))
        logger.debug("Search index task submitted: %s", name)

    def _enqueue_read(
        self, name: str, func: Callable[..., Any], args: tuple, fallback: Any
    ) -> Future | None:
        future: Future = Future()
        with self._lock:
            if self._closed:
                return None
            self._queue.put(
                _Task(name=name, func=func, args=args, future=future, fallback=fallback)
            )
        return future

    def _call(
        self,
        name: str,
        func: Callable[..., Any],
        *args: Any,
        fallback: Any,
        timeout: float | None = None,
    ) -> Any:
        if threading.current_thread() is self._thread:
            return func(*args)
        future = self._enqueue_read(name, func, args, fallback)
        if future is None:
            return fallback
        return future.result(timeout=timeout)

    def _run(self) -> None:
        """Thread main loop. Applies tasks strictly in submission order."""
        logger.info("Search index worker started")
        while True:
            task = self._queue.get()
            if task is _STOP:
                break
            self._execute(task)
        self._disconnect()
        logger.info("Search index worker stopped")

    @staticmethod
    def _execute(task: _Task) -> None:
        try:
            result = task.func(*task.args)
        except Exception:
            logger.exception("Unhandled error in search index task %s", task.name)
            result = task.fallback
        if task.future is not None:
            task.future.set_result(result)

    # ── Worker-thread side ───────────────────────────────────────────

    def _setup(self) -> None:
        if str(self._path) == ":memory:":
            url = "sqlite://"
        else:
            path = Path(self._path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                logger.warning("Cannot create search index directory %s", path.parent, exc_info=True)
                return
            url = f"sqlite:///{path}"

        try:
            engine = create_engine(url, echo=False)
            conn = engine.connect()
        except SQLAlchemyError:
            logger.warning("Search index unavailable at %s", self._path, exc_info=True)
            return

        self._engine = engine
        self._conn = conn
        self.available = self._create_schema()
        if self.available:
            logger.info("Search index opened at %s (schema v%d)", self._path, SCHEMA_VERSION)

    def _create_schema(self) -> bool:
        conn = self._conn
        try:
            version = conn.execute(text("PRAGMA user_version")).scalar() or 0
            if version != SCHEMA_VERSION:
                logger.info(
                    "Search index schema v%s does not match v%d, rebuilding empty",
                    version,
                    SCHEMA_VERSION,
                )
                conn.execute(text(f"DROP TABLE IF EXISTS {TABLE_NAME}"))
                conn.execute(text(f"PRAGMA user_version = {SCHEMA_VERSION}"))
                self.schema_rebuilt = True
            conn.execute(text(_CREATE_TABLE_SQL))
            conn.commit()
        except SQLAlchemyError:
            conn.rollback()
            logger.warning("Failed to create search index schema", exc_info=True)
            return False
        return True

    def _disconnect(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except SQLAlchemyError:
                logger.warning("Error closing search index connection", exc_info=True)
            self._conn = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self.available = False

    def _row(self, document: SearchDocument) -> dict[str, str]:
        # Protected items keep title/tags/collection searchable, never the body.
        content = "" if document.is_protected else document.content
        ai_summary = "" if document.is_protected else (document.ai_summary or "")
        return {
            "id": document.id,
            "title": document.title,
            "tags": " ".join(document.tags),
            "collection": document.collection or "",
            "content": content,
            "annotations": "",
            "ai_summary": ai_summary,
            "type": document.type.value if document.type else "",
            "source": document.source.value if document.source else "",
        }

    def _upsert(self, document: SearchDocument) -> None:
        conn = self._conn
        if conn is None or not self.available:
            logger.debug("Search index unavailable, dropping upsert of %s", document.id)
            return
        try:
            conn.execute(text(_DELETE_SQL), {"id": document.id})
            conn.execute(text(_INSERT_SQL), self._row(document))
            conn.commit()
        except SQLAlchemyError:
            conn.rollback()
            logger.warning("Search index upsert failed for %s", document.id, exc_info=True)

    def _delete(self, item_id: str) -> None:
        conn = self._conn
        if conn is None or not self.available:
            logger.debug("Search index unavailable, dropping delete of %s", item_id)
            return
        try:
            conn.execute(text(_DELETE_SQL), {"id": item_id})
            conn.commit()
        except SQLAlchemyError:
            conn.rollback()
            logger.warning("Search index delete failed for %s", item_id, exc_info=True)

    def _reset(self) -> None:
        conn = self._conn
        if conn is None or not self.available:
            return
        try:
            conn.execute(text(f"DROP TABLE IF EXISTS {TABLE_NAME}"))
            conn.execute(text(_CREATE_TABLE_SQL))
            conn.commit()
            logger.info("Search index reset")
        except SQLAlchemyError:
            conn.rollback()
            logger.warning("Search index reset failed", exc_info=True)

    def _search_sql(self) -> str:
        weights = ", ".join(str(w) for w in COLUMN_WEIGHTS)
        return (
            f"SELECT id, title, "
            f"snippet({TABLE_NAME}, -1, '{SNIPPET_OPEN}', '{SNIPPET_CLOSE}', "
            f"'{SNIPPET_ELLIPSIS}', {int(self._snippet_tokens)}) AS snippet "
            f"FROM {TABLE_NAME} "
            f"WHERE {TABLE_NAME} MATCH :match "
            f"ORDER BY bm25({TABLE_NAME}, {weights}) "
            f"LIMIT :limit"
        )

    def _search(self, expression: str) -> list[SearchResult]:
        conn = self._conn
        if conn is None or not self.available:
            return []

        results: list[SearchResult] = []
        try:
            rows = conn.execute(
                text(self._search_sql()),
                {"match": expression, "limit": self._result_limit},
            )
            for item_id, title, snippet in rows:
                if not item_id:
                    continue
                results.append(
                    SearchResult(item_id=item_id, title=title or "", snippet=snippet or None)
                )
        except SQLAlchemyError:
            # Usually an expression FTS5 cannot parse; keep what we have.
            logger.warning("Search index query failed for %r", expression, exc_info=True)
        finally:
            conn.rollback()
        return results

    def _count(self) -> int:
        conn = self._conn
        if conn is None or not self.available:
            return 0
        try:
            return conn.execute(text(f"SELECT count(*) FROM {TABLE_NAME}")).scalar() or 0
        except SQLAlchemyError:
            logger.warning("Search index count failed", exc_info=True)
            return 0
        finally:
            conn.rollback()

    def _schema_version(self) -> int:
        conn = self._conn
        if conn is None:
            return 0
        try:
            return conn.execute(text("PRAGMA user_version")).scalar() or 0
        finally:
            conn.rollback()
