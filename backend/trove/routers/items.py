"""Item router: minimal CRUD over the item store.

Indexing is not called from here: committed changes reach the search index
through the ChangeFeed attached at startup.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from trove.db import get_session
from trove.models.item import Item, ItemCreate, ItemRead, ItemUpdate

router = APIRouter(prefix="/api/items", tags=["items"])


@router.post("", response_model=ItemRead, status_code=201)
async def create_item(
    body: ItemCreate,
    session: Session = Depends(get_session),
) -> ItemRead:
    data = body.model_dump(exclude={"tags", "item_type", "source"})
    item = Item(
        **data,
        item_type=body.item_type.value,
        source=body.source.value if body.source else None,
    )
    item.set_tag_list(body.tags)
    session.add(item)
    session.commit()
    session.refresh(item)
    return ItemRead.from_item(item)


@router.get("/{item_id}", response_model=ItemRead)
async def get_item(
    item_id: str,
    session: Session = Depends(get_session),
) -> ItemRead:
    item = session.get(Item, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return ItemRead.from_item(item)


@router.put("/{item_id}", response_model=ItemRead)
async def update_item(
    item_id: str,
    body: ItemUpdate,
    session: Session = Depends(get_session),
) -> ItemRead:
    item = session.get(Item, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")

    updates = body.model_dump(exclude_unset=True)
    if "tags" in updates:
        item.set_tag_list(updates.pop("tags") or [])
    if "item_type" in updates:
        item_type = updates.pop("item_type")
        if item_type is None:
            raise HTTPException(status_code=422, detail="item_type cannot be null")
        item.item_type = item_type.value
    if "source" in updates:
        source = updates.pop("source")
        item.source = source.value if source else None
    if updates.get("is_protected", False) is None:
        updates.pop("is_protected")
    for key, value in updates.items():
        setattr(item, key, value)

    item.updated_at = datetime.now(timezone.utc)
    session.add(item)
    session.commit()
    session.refresh(item)
    return ItemRead.from_item(item)


@router.delete("/{item_id}", status_code=204)
async def delete_item(
    item_id: str,
    session: Session = Depends(get_session),
) -> None:
    item = session.get(Item, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    session.delete(item)
    session.commit()
