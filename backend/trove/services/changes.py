"""Change notifications from the item store.

A ChangeFeed hooks SQLAlchemy session events. Each flush records snapshots of
the items it inserted, updated or deleted; on commit, everything recorded
since the last commit is published to subscribers as one ChangeBatch. A
rollback discards what was recorded inside the rolled-back transaction:
all of it for the outer transaction, only the savepoint's own flushes for a
``begin_nested()`` savepoint.

Subscriber errors are logged and swallowed: nothing downstream of the item
store is allowed to fail its commit.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import event, inspect

from trove.models.item import Item, ItemSnapshot

logger = logging.getLogger(__name__)

_PENDING_KEY = "trove_pending_changes"


@dataclass(frozen=True, slots=True)
class ChangeBatch:
    inserted: tuple[ItemSnapshot, ...] = ()
    updated: tuple[ItemSnapshot, ...] = ()
    deleted: tuple[str, ...] = ()  # item ids

    @property
    def is_empty(self) -> bool:
        return not (self.inserted or self.updated or self.deleted)


@dataclass
class _PendingChanges:
    """What one flush recorded, tagged with the transaction it ran in."""
    transaction: Any = None
    inserted: list[ItemSnapshot] = field(default_factory=list)
    updated: list[ItemSnapshot] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


ChangeCallback = Callable[[ChangeBatch], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe(). cancel() is idempotent."""

    __slots__ = ("_feed", "_callback", "_active")

    def __init__(self, feed: ChangeFeed, callback: ChangeCallback) -> None:
        self._feed = feed
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._feed._remove(self)

    def _deliver(self, batch: ChangeBatch) -> None:
        if self._active:
            self._callback(batch)


class ChangeFeed:
    """Observer over item inserts, updates and deletes."""

    __slots__ = ("_subscriptions", "_lock", "_targets")

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._targets: list[Any] = []

    # ── Subscribers ──────────────────────────────────────────────────

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, batch: ChangeBatch) -> None:
        if batch.is_empty:
            return
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            try:
                subscription._deliver(batch)
            except Exception:
                logger.warning("Change subscriber failed", exc_info=True)

    # ── SQLAlchemy session hooks ─────────────────────────────────────

    def attach(self, target: Any) -> None:
        """Listen to a Session class, sessionmaker or Session instance."""
        if target in self._targets:
            return
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_soft_rollback", self._after_soft_rollback)
        self._targets.append(target)

    def detach(self) -> None:
        for target in self._targets:
            event.remove(target, "after_flush", self._after_flush)
            event.remove(target, "after_commit", self._after_commit)
            event.remove(target, "after_soft_rollback", self._after_soft_rollback)
        self._targets.clear()

    def _pending(self, session) -> list[_PendingChanges]:
        key = (_PENDING_KEY, id(self))
        pending = session.info.get(key)
        if pending is None:
            pending = session.info[key] = []
        return pending

    def _after_flush(self, session, flush_context) -> None:
        try:
            # Tagged with the innermost savepoint, else the root transaction.
            transaction = session.get_nested_transaction() or session.get_transaction()
            changes = _PendingChanges(transaction=transaction)
            for obj in session.new:
                if isinstance(obj, Item):
                    changes.inserted.append(obj.snapshot())
            for obj in session.dirty:
                if isinstance(obj, Item) and session.is_modified(obj):
                    changes.updated.append(obj.snapshot())
            for obj in session.deleted:
                if isinstance(obj, Item):
                    identity = inspect(obj).identity
                    changes.deleted.append(identity[0] if identity else obj.id)
            self._pending(session).append(changes)
        except Exception:
            logger.warning("Failed to record item changes", exc_info=True)

    def _after_commit(self, session) -> None:
        pending = session.info.pop((_PENDING_KEY, id(self)), None)
        if pending:
            self.publish(_merge(pending))

    def _after_soft_rollback(self, session, previous_transaction) -> None:
        key = (_PENDING_KEY, id(self))
        pending = session.info.get(key)
        if not pending:
            return
        if previous_transaction.parent is None:
            session.info.pop(key, None)
            return
        session.info[key] = [
            changes
            for changes in pending
            if not _within(changes.transaction, previous_transaction)
        ]


def _within(transaction, ancestor) -> bool:
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


def _merge(pending: list[_PendingChanges]) -> ChangeBatch:
    inserted: list[ItemSnapshot] = []
    updated: list[ItemSnapshot] = []
    deleted: list[str] = []
    for changes in pending:
        inserted.extend(changes.inserted)
        updated.extend(changes.updated)
        deleted.extend(changes.deleted)
    return ChangeBatch(
        inserted=tuple(inserted),
        updated=tuple(updated),
        deleted=tuple(deleted),
    )
