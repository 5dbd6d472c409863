"""Value types shared by the query parser, query builder and search index."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from trove.models.item import ItemSource, ItemType


class SearchSort(str, Enum):
    RELEVANCE = "relevance"
    RECENCY = "recency"


class SearchFilterKey(str, Enum):
    TYPE = "type"
    TAG = "tag"
    COLLECTION = "collection"
    SOURCE = "source"


@dataclass(frozen=True, slots=True)
class SearchFilter:
    """A single ``key:value`` constraint. The value is trimmed and unquoted."""
    key: SearchFilterKey
    value: str


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """Parsed user query: free text plus filters, all ANDed together."""
    text: str
    filters: tuple[SearchFilter, ...] = ()
    sort: SearchSort = SearchSort.RELEVANCE

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.filters


@dataclass(frozen=True, slots=True)
class SearchResult:
    item_id: str
    title: str
    snippet: str | None = None  # highlighted excerpt, None when nothing printable


@dataclass(frozen=True, slots=True)
class SearchDocument:
    """Searchable projection of one item. One row per ``id`` in the index."""
    id: str
    title: str
    content: str = ""
    tags: tuple[str, ...] = field(default_factory=tuple)
    collection: str | None = None
    ai_summary: str | None = None
    is_protected: bool = False
    type: ItemType | None = None
    source: ItemSource | None = None
