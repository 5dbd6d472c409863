"""Item model: saved links, snippets, notes and documents.

The item table belongs to the primary object store. The search subsystem
only reads point-in-time snapshots of it (see ``ItemSnapshot``).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel

TITLE_MAX_LENGTH = 80


class ItemType(str, Enum):
    NOTE = "note"
    SNIPPET = "snippet"
    LINK = "link"
    DOCUMENT = "document"


class ItemSource(str, Enum):
    MANUAL = "manual"
    SHARE_SHEET = "shareSheet"
    SAFARI_BOOKMARKS = "safariBookmarks"
    IMPORT = "import"


def decode_tags(raw: str | None) -> list[str]:
    """Decode a stored tag list (JSON array or comma/newline separated).

    Labels are trimmed and lowercased; empty labels and repeats are dropped.
    """
    if raw is None:
        return []
    trimmed = raw.strip()
    if not trimmed:
        return []

    parts: list[str] | None = None
    if trimmed.startswith("["):
        try:
            decoded = json.loads(trimmed)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            parts = [str(p) for p in decoded]
    if parts is None:
        parts = trimmed.replace("\n", ",").split(",")

    tags: list[str] = []
    for part in parts:
        tag = part.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def encode_tags(tags: list[str]) -> str | None:
    cleaned = decode_tags(json.dumps(tags))
    if not cleaned:
        return None
    return json.dumps(cleaned)


def title_from_text(text: str) -> str:
    """First line of a body, truncated for display."""
    trimmed = text.strip()
    if not trimmed:
        return "Untitled"
    first_line = trimmed.splitlines()[0]
    if len(first_line) > TITLE_MAX_LENGTH:
        return first_line[:TITLE_MAX_LENGTH] + "..."
    return first_line


class Item(SQLModel, table=True):
    __tablename__ = "items"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    item_type: str = Field(default=ItemType.NOTE.value)
    source: str | None = Field(default=None)
    title: str | None = Field(default=None)
    text_content: str | None = Field(default=None)
    link_url: str | None = Field(default=None)
    link_title: str | None = Field(default=None)
    document_path: str | None = Field(default=None)  # relative to document storage
    tags: str | None = Field(default=None)  # JSON array of labels
    collection_id: str | None = Field(default=None)
    source_folder_path: str | None = Field(default=None)
    ai_summary: str | None = Field(default=None)
    is_protected: bool = Field(default=False)

    @property
    def tag_list(self) -> list[str]:
        return decode_tags(self.tags)

    def set_tag_list(self, tags: list[str]) -> None:
        self.tags = encode_tags(tags)

    @property
    def document_file_name(self) -> str | None:
        if not self.document_path:
            return None
        return PurePosixPath(self.document_path).name or None

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        if self.link_title:
            return self.link_title
        if self.document_file_name:
            return self.document_file_name
        if self.text_content:
            return title_from_text(self.text_content)
        return "Untitled"

    @property
    def collection_display_name(self) -> str | None:
        if self.source_folder_path:
            return self.source_folder_path
        return self.collection_id

    @property
    def item_type_value(self) -> ItemType | None:
        try:
            return ItemType(self.item_type)
        except ValueError:
            return None

    @property
    def source_value(self) -> ItemSource | None:
        if self.source is None:
            return None
        try:
            return ItemSource(self.source)
        except ValueError:
            return None

    def snapshot(self) -> ItemSnapshot:
        """Copy the searchable state of this item as it is right now."""
        return ItemSnapshot(
            id=self.id,
            title=self.display_title,
            text_content=self.text_content,
            link_url=self.link_url,
            link_title=self.link_title,
            document_file_name=self.document_file_name,
            tags=tuple(self.tag_list),
            collection=self.collection_display_name,
            ai_summary=self.ai_summary,
            is_protected=bool(self.is_protected),
            item_type=self.item_type_value,
            source=self.source_value,
        )


@dataclass(frozen=True, slots=True)
class ItemSnapshot:
    """Immutable view of an item, detached from any session."""
    id: str
    title: str
    text_content: str | None = None
    link_url: str | None = None
    link_title: str | None = None
    document_file_name: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    collection: str | None = None
    ai_summary: str | None = None
    is_protected: bool = False
    item_type: ItemType | None = None
    source: ItemSource | None = None


# --- Pydantic schemas for request/response validation ---

class ItemCreate(BaseModel):
    item_type: ItemType = ItemType.NOTE
    source: ItemSource | None = ItemSource.MANUAL
    title: str | None = None
    text_content: str | None = None
    link_url: str | None = None
    link_title: str | None = None
    document_path: str | None = None
    tags: list[str] = []
    collection_id: str | None = None
    source_folder_path: str | None = None
    ai_summary: str | None = None
    is_protected: bool = False


class ItemUpdate(BaseModel):
    item_type: ItemType | None = None
    source: ItemSource | None = None
    title: str | None = None
    text_content: str | None = None
    link_url: str | None = None
    link_title: str | None = None
    document_path: str | None = None
    tags: list[str] | None = None
    collection_id: str | None = None
    source_folder_path: str | None = None
    ai_summary: str | None = None
    is_protected: bool | None = None


class ItemRead(BaseModel):
    id: str
    created_at: datetime
    updated_at: datetime
    item_type: str
    source: str | None
    title: str
    text_content: str | None
    link_url: str | None
    link_title: str | None
    document_path: str | None
    tags: list[str]
    collection: str | None
    ai_summary: str | None
    is_protected: bool

    @classmethod
    def from_item(cls, item: Item) -> ItemRead:
        return cls(
            id=item.id,
            created_at=item.created_at,
            updated_at=item.updated_at,
            item_type=item.item_type,
            source=item.source,
            title=item.display_title,
            text_content=item.text_content,
            link_url=item.link_url,
            link_title=item.link_title,
            document_path=item.document_path,
            tags=item.tag_list,
            collection=item.collection_display_name,
            ai_summary=item.ai_summary,
            is_protected=item.is_protected,
        )
