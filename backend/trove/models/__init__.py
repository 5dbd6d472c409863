from __future__ import annotations

from trove.models.item import Item  # noqa: F401
