"""Tests for services/indexer.py — item projection and change-driven indexing."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from trove.models.item import Item, ItemSnapshot, ItemSource, ItemType
from trove.services.changes import ChangeBatch, ChangeFeed
from trove.services.indexer import SearchIndexer, project_item
from trove.services.search_index import SearchDatabase
from trove.services.search_types import SearchDocument, SearchQuery


# ── Helpers ──────────────────────────────────────────────────────────


def _q(text: str) -> SearchQuery:
    return SearchQuery(text=text)


def _ids(results) -> list[str]:
    return [r.item_id for r in results]


@pytest.fixture(name="mock_database")
def mock_database_fixture() -> MagicMock:
    return MagicMock(spec=SearchDatabase)


# ── Projection ───────────────────────────────────────────────────────


class TestProjectItem:
    def test_content_parts_in_fixed_order(self) -> None:
        item = Item(
            id="i-1",
            title="My bookmark",
            text_content="Some notes",
            link_title="Page Title",
            link_url="https://example.com/page",
            document_path="docs/2024/report.pdf",
        )
        doc = project_item(item)
        assert doc.content == "Some notes\nPage Title\nhttps://example.com/page\nreport.pdf"

    def test_link_title_equal_to_title_is_not_repeated(self) -> None:
        item = Item(id="i-1", link_title="Page Title", link_url="https://example.com")
        doc = project_item(item)
        assert doc.title == "Page Title"
        assert doc.content == "https://example.com"

    def test_empty_parts_are_omitted(self) -> None:
        doc = project_item(Item(id="i-1", title="Bare", text_content="", link_url=""))
        assert doc.content == ""

    def test_metadata_fields(self) -> None:
        item = Item(
            id="i-1",
            title="Recipe",
            item_type=ItemType.LINK.value,
            source=ItemSource.SAFARI_BOOKMARKS.value,
            source_folder_path="Bookmarks/Food",
            ai_summary="A soup recipe",
            is_protected=True,
        )
        item.set_tag_list(["Dinner", "soup"])
        doc = project_item(item)
        assert doc == SearchDocument(
            id="i-1",
            title="Recipe",
            content="",
            tags=("dinner", "soup"),
            collection="Bookmarks/Food",
            ai_summary="A soup recipe",
            is_protected=True,
            type=ItemType.LINK,
            source=ItemSource.SAFARI_BOOKMARKS,
        )

    def test_unknown_enum_values_project_as_none(self) -> None:
        item = Item(id="i-1", title="x", item_type="hologram", source="carrier-pigeon")
        doc = project_item(item)
        assert doc.type is None
        assert doc.source is None

    def test_accepts_snapshot(self) -> None:
        snapshot = ItemSnapshot(id="s-1", title="Snap", text_content="body", tags=("A",))
        doc = project_item(snapshot)
        assert doc.content == "body"
        assert doc.tags == ("a",)


# ── Explicit indexing ────────────────────────────────────────────────


class TestExplicitIndexing:
    def test_index_document(self, mock_database) -> None:
        doc = SearchDocument(id="d", title="t")
        SearchIndexer(mock_database).index(doc)
        mock_database.upsert.assert_called_once_with(doc)

    def test_index_item_projects_then_upserts(self, mock_database) -> None:
        SearchIndexer(mock_database).index_item(Item(id="i-1", title="Hello"))
        [doc] = mock_database.upsert.call_args.args
        assert doc.id == "i-1"
        assert doc.title == "Hello"

    def test_index_items(self, mock_database) -> None:
        count = SearchIndexer(mock_database).index_items(
            [Item(id="a", title="a"), Item(id="b", title="b")]
        )
        assert count == 2
        assert mock_database.upsert.call_count == 2

    def test_remove(self, mock_database) -> None:
        SearchIndexer(mock_database).remove("gone")
        mock_database.delete.assert_called_once_with("gone")

    def test_reindex_all_resets_first(self, mock_database) -> None:
        calls = MagicMock()
        mock_database.reset.side_effect = lambda: calls("reset")
        mock_database.upsert.side_effect = lambda doc: calls("upsert", doc.id)
        count = SearchIndexer(mock_database).reindex_all([Item(id="a", title="a")])
        assert count == 1
        assert [c.args for c in calls.call_args_list] == [("reset",), ("upsert", "a")]

    def test_rebuild_loads_after_reset(self, mock_database) -> None:
        calls = MagicMock()
        mock_database.reset.side_effect = lambda: calls("reset")
        mock_database.upsert.side_effect = lambda doc: calls("upsert", doc.id)

        def load():
            calls("load")
            return [Item(id="a", title="a")]

        assert SearchIndexer(mock_database).rebuild(load) == 1
        assert [c.args for c in calls.call_args_list] == [
            ("reset",),
            ("load",),
            ("upsert", "a"),
        ]


class TestRebuildRaces:
    def test_delete_during_load_leaves_no_ghost(self, mock_database) -> None:
        indexer = SearchIndexer(mock_database)
        calls = MagicMock()
        mock_database.reset.side_effect = lambda: calls("reset")
        mock_database.upsert.side_effect = lambda doc: calls("upsert", doc.id)
        mock_database.delete.side_effect = lambda item_id: calls("delete", item_id)

        def load():
            items = [Item(id="keep", title="keep"), Item(id="gone", title="gone")]
            indexer.handle_changes(ChangeBatch(deleted=("gone",)))
            return items

        assert indexer.rebuild(load) == 1
        assert [c.args for c in calls.call_args_list] == [
            ("reset",),
            ("delete", "gone"),
            ("upsert", "keep"),
        ]

    def test_update_during_load_is_not_overwritten(self, mock_database) -> None:
        indexer = SearchIndexer(mock_database)

        def load():
            stale = Item(id="x", title="stale title")
            indexer.handle_changes(
                ChangeBatch(updated=(ItemSnapshot(id="x", title="fresh title"),))
            )
            return [stale]

        assert indexer.rebuild(load) == 0
        [doc] = [c.args[0] for c in mock_database.upsert.call_args_list]
        assert doc.title == "fresh title"

    def test_changes_after_rebuild_are_not_tracked(self, mock_database) -> None:
        indexer = SearchIndexer(mock_database)
        indexer.rebuild(lambda: [])
        indexer.handle_changes(ChangeBatch(deleted=("x",)))
        assert indexer.rebuild(lambda: [Item(id="x", title="back again")]) == 1

    def test_failed_load_stops_tracking(self, mock_database) -> None:
        indexer = SearchIndexer(mock_database)

        def load():
            raise RuntimeError("store offline")

        with pytest.raises(RuntimeError):
            indexer.rebuild(load)
        indexer.handle_changes(ChangeBatch(deleted=("x",)))
        assert indexer.rebuild(lambda: [Item(id="x", title="x")]) == 1


# ── Change handling ──────────────────────────────────────────────────


class TestHandleChanges:
    def test_inserted_and_updated_are_upserted_deleted_removed(self, mock_database) -> None:
        indexer = SearchIndexer(mock_database)
        indexer.handle_changes(
            ChangeBatch(
                inserted=(ItemSnapshot(id="new", title="n"),),
                updated=(ItemSnapshot(id="old", title="o"),),
                deleted=("gone",),
            )
        )
        upserted = [c.args[0].id for c in mock_database.upsert.call_args_list]
        assert sorted(upserted) == ["new", "old"]
        mock_database.delete.assert_called_once_with("gone")


class TestObserving:
    def test_start_is_idempotent(self, mock_database) -> None:
        feed = ChangeFeed()
        indexer = SearchIndexer(mock_database)
        indexer.start_observing(feed)
        indexer.start_observing(feed)
        assert indexer.is_observing is True
        assert feed.subscriber_count == 1

    def test_stop_is_idempotent(self, mock_database) -> None:
        feed = ChangeFeed()
        indexer = SearchIndexer(mock_database)
        indexer.stop_observing()
        indexer.start_observing(feed)
        indexer.stop_observing()
        indexer.stop_observing()
        assert indexer.is_observing is False
        assert feed.subscriber_count == 0

    def test_no_indexing_while_stopped(self, mock_database) -> None:
        feed = ChangeFeed()
        indexer = SearchIndexer(mock_database)
        indexer.start_observing(feed)
        indexer.stop_observing()
        feed.publish(ChangeBatch(inserted=(ItemSnapshot(id="x", title="x"),)))
        mock_database.upsert.assert_not_called()

    def test_switching_feeds_drops_old_subscription(self, mock_database) -> None:
        first, second = ChangeFeed(), ChangeFeed()
        indexer = SearchIndexer(mock_database)
        indexer.start_observing(first)
        indexer.start_observing(second)
        assert first.subscriber_count == 0
        assert second.subscriber_count == 1


# ── End to end through the item store ────────────────────────────────


class TestIndexingFromSession:
    @pytest.fixture(name="observed")
    def observed_fixture(self, session, indexer):
        feed = ChangeFeed()
        feed.attach(session)
        indexer.start_observing(feed)
        yield indexer
        indexer.stop_observing()
        feed.detach()

    def test_insert_update_delete_round_trip(self, session, observed) -> None:
        item = Item(title="Sourdough starter", text_content="feed it daily")
        session.add(item)
        session.commit()
        assert _ids(observed.search(_q("sourdough"))) == [item.id]

        item.title = "Rye starter"
        session.add(item)
        session.commit()
        assert observed.search(_q("sourdough")) == []
        assert _ids(observed.search(_q("rye"))) == [item.id]

        session.delete(item)
        session.commit()
        assert observed.search(_q("rye")) == []

    def test_rolled_back_insert_is_not_indexed(self, session, observed) -> None:
        session.add(Item(title="Phantom"))
        session.flush()
        session.rollback()
        assert observed.search(_q("phantom")) == []

    def test_savepoint_rollback_still_indexes_outer_item(self, session, observed) -> None:
        outer = Item(title="Outer committed")
        session.add(outer)
        session.flush()
        nested = session.begin_nested()
        session.add(Item(title="Discarded draft"))
        session.flush()
        nested.rollback()
        session.commit()

        assert _ids(observed.search(_q("outer"))) == [outer.id]
        assert observed.search(_q("discarded")) == []

    def test_protected_item_body_not_indexed(self, session, observed) -> None:
        item = Item(title="Diary", text_content="private thoughts", is_protected=True)
        session.add(item)
        session.commit()
        assert observed.search(_q("thoughts")) == []
        [result] = observed.search(_q("diary"))
        assert "thoughts" not in (result.snippet or "")

    def test_reindex_all_rebuilds_from_items(self, session, indexer) -> None:
        items = [Item(title="alpha"), Item(title="beta")]
        indexer.index(SearchDocument(id="orphan", title="alpha orphan"))
        indexer.reindex_all(items)
        assert indexer.database.count() == 2
        assert sorted(_ids(indexer.search(_q("alpha")))) == [items[0].id]

    def test_item_deleted_while_rebuilding_is_not_resurrected(self, session, observed) -> None:
        doomed = Item(title="Ghost candidate")
        session.add(doomed)
        session.commit()
        doomed_id = doomed.id

        def load():
            items = [Item(id=doomed_id, title="Ghost candidate")]
            session.delete(doomed)
            session.commit()
            return items

        observed.rebuild(load)
        assert observed.search(_q("ghost")) == []
        assert observed.database.count() == 0
