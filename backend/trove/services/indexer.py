"""Search indexer: projects items into SearchDocuments and keeps the index current."""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from trove.models.item import Item, ItemSnapshot
from trove.services.changes import ChangeBatch, ChangeFeed, Subscription
from trove.services.search_index import SearchDatabase
from trove.services.search_types import SearchDocument, SearchQuery, SearchResult

logger = logging.getLogger(__name__)


def project_item(item: Item | ItemSnapshot) -> SearchDocument:
    """Build the searchable document for an item as it is right now.

    ``content`` is the body text, the link title when it differs from the
    display title, the link URL and the attached file name, one per line.
    """
    snapshot = item.snapshot() if isinstance(item, Item) else item

    parts: list[str] = []
    if snapshot.text_content:
        parts.append(snapshot.text_content)
    if snapshot.link_title and snapshot.link_title != snapshot.title:
        parts.append(snapshot.link_title)
    if snapshot.link_url:
        parts.append(snapshot.link_url)
    if snapshot.document_file_name:
        parts.append(snapshot.document_file_name)

    return SearchDocument(
        id=snapshot.id,
        title=snapshot.title,
        content="\n".join(parts),
        tags=tuple(tag.lower() for tag in snapshot.tags),
        collection=snapshot.collection,
        ai_summary=snapshot.ai_summary,
        is_protected=snapshot.is_protected,
        type=snapshot.item_type,
        source=snapshot.source,
    )


class SearchIndexer:
    """Drives SearchDatabase writes from explicit calls and from a ChangeFeed."""

    __slots__ = ("_database", "_subscription", "_lock", "_touched")

    def __init__(self, database: SearchDatabase) -> None:
        self._database = database
        self._subscription: Subscription | None = None
        self._lock = threading.Lock()
        # Ids seen on the change feed while a rebuild is running, else None
        self._touched: set[str] | None = None

    @property
    def database(self) -> SearchDatabase:
        return self._database

    # ── Explicit indexing ────────────────────────────────────────────

    def index(self, document: SearchDocument) -> None:
        self._database.upsert(document)

    def index_item(self, item: Item | ItemSnapshot) -> None:
        self.index(project_item(item))

    def index_items(self, items: Iterable[Item | ItemSnapshot]) -> int:
        count = 0
        for item in items:
            self.index_item(item)
            count += 1
        return count

    def remove(self, item_id: str) -> None:
        self._database.delete(item_id)

    def reset_index(self) -> None:
        self._database.reset()

    def reindex_all(self, items: Iterable[Item | ItemSnapshot]) -> int:
        """Replace the whole index with the given items. Returns how many were queued."""
        return self.rebuild(lambda: items)

    def rebuild(self, load_items: Callable[[], Iterable[Item | ItemSnapshot]]) -> int:
        """Reset the index, then index whatever ``load_items`` returns.

        ``load_items`` runs after the reset is queued. Items the change feed
        inserts, updates or deletes meanwhile are skipped here: the feed has
        already queued their latest state behind the reset, and a stale
        snapshot from the load must not overwrite it.
        """
        with self._lock:
            self._touched = set()
            self.reset_index()
        try:
            items = list(load_items())
        except Exception:
            with self._lock:
                self._touched = None
            raise

        count = 0
        with self._lock:
            touched, self._touched = self._touched, None
            for item in items:
                if item.id in touched:
                    continue
                self.index_item(item)
                count += 1
        skipped = len(items) - count
        if skipped:
            logger.info("Full re-index skipped %d item(s) changed during the rebuild", skipped)
        logger.info("Full re-index queued for %d item(s)", count)
        return count

    def search(self, query: SearchQuery) -> list[SearchResult]:
        return self._database.search(query)

    async def search_async(self, query: SearchQuery) -> list[SearchResult]:
        return await self._database.search_async(query)

    # ── Change observation ───────────────────────────────────────────

    @property
    def is_observing(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start_observing(self, feed: ChangeFeed) -> None:
        """Index every item change published by ``feed``. Idempotent."""
        if self._subscription is not None:
            if self._subscription.active and self._subscription.feed is feed:
                return
            self._subscription.cancel()
        self._subscription = feed.subscribe(self.handle_changes)
        logger.info("Search indexer observing item changes")

    def stop_observing(self) -> None:
        if self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None
        logger.info("Search indexer stopped observing item changes")

    def handle_changes(self, batch: ChangeBatch) -> None:
        # Every item is handled on its own; an upsert is delete-then-insert
        # so repeats within a batch are harmless.
        with self._lock:
            if self._touched is not None:
                self._touched.update(s.id for s in batch.inserted)
                self._touched.update(s.id for s in batch.updated)
                self._touched.update(batch.deleted)
            for snapshot in batch.inserted:
                self.index_item(snapshot)
            for snapshot in batch.updated:
                self.index_item(snapshot)
            for item_id in batch.deleted:
                self.remove(item_id)
