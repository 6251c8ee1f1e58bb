"""Durable keyed store with secondary label indexes, backed by a Supabase table.

Table ``kv_items``: ``key`` (primary key), ``value`` (jsonb), ``label1`` and
``label2`` (indexed text columns) and ``updated_at``. Label queries accept an
exact value or a prefix pattern ending in ``*`` and are paginated with an
opaque cursor.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from supabase import Client

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "kv_items"
LABELS = ("label1", "label2")
DEFAULT_WRITE_LIMIT = 25
DEFAULT_PAGE_SIZE = 100


@dataclass
class StoreItem:
    key: str
    value: dict[str, Any]
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class LabelPage:
    items: list[StoreItem]
    next_cursor: str | None = None


def _like_pattern(pattern: str) -> str:
    """Translate a trailing-``*`` prefix pattern to a LIKE pattern."""
    prefix = pattern[:-1]
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


def _row_to_item(row: dict[str, Any]) -> StoreItem:
    return StoreItem(
        key=row["key"],
        value=row.get("value") or {},
        labels={label: row[label] for label in LABELS if row.get(label)},
    )


class KeyValueStore:
    """Async facade over the ``kv_items`` table.

    Blocking client calls run in a worker thread so that every store call is
    a suspension point for the event loop.
    """

    def __init__(
        self,
        client_factory: Callable[[], Client] = get_supabase,
        write_limit: int = DEFAULT_WRITE_LIMIT,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self._client_factory = client_factory
        self.write_limit = write_limit
        self.page_size = page_size

    @property
    def _table(self):
        return self._client_factory().table(TABLE)

    async def get(self, key: str) -> dict[str, Any] | None:
        """Get the value stored under ``key``, or None."""

        def _get():
            return self._table.select("key,value").eq("key", key).limit(1).execute()

        response = await asyncio.to_thread(_get)
        if response.data:
            return response.data[0].get("value")
        return None

    async def set(self, key: str, value: dict[str, Any], labels: dict[str, str] | None = None) -> None:
        """Write ``value`` under ``key``, overwriting any previous value."""
        await self.set_many([StoreItem(key=key, value=value, labels=labels or {})])

    async def set_many(self, items: list[StoreItem]) -> None:
        """Write up to ``write_limit`` items in one call.

        Raises:
            ValueError: If more than ``write_limit`` items are given or a label is unknown
        """
        if not items:
            return
        if len(items) > self.write_limit:
            raise ValueError(
                f"Store write limited to {self.write_limit} items per call, got {len(items)}"
            )

        now = datetime.now(timezone.utc).isoformat()
        rows = []
        for item in items:
            unknown = set(item.labels) - set(LABELS)
            if unknown:
                raise ValueError(f"Unknown labels: {sorted(unknown)}")
            rows.append(
                {
                    "key": item.key,
                    "value": item.value,
                    "label1": item.labels.get("label1"),
                    "label2": item.labels.get("label2"),
                    "updated_at": now,
                }
            )

        def _upsert():
            return self._table.upsert(rows, on_conflict="key").execute()

        try:
            await asyncio.to_thread(_upsert)
        except Exception as e:
            logger.error(f"Failed to write {len(rows)} items: {e}")
            raise

    async def set_if(
        self,
        key: str,
        value: dict[str, Any],
        field: str,
        expected: str,
        labels: dict[str, str] | None = None,
    ) -> bool:
        """Overwrite ``key`` only while its stored ``value[field]`` equals ``expected``.

        The check and the write are one conditional UPDATE, so of several
        writers racing from the same stored state exactly one succeeds.

        Returns:
            True if the row was written
        """
        labels = labels or {}
        unknown = set(labels) - set(LABELS)
        if unknown:
            raise ValueError(f"Unknown labels: {sorted(unknown)}")
        row = {
            "value": value,
            "label1": labels.get("label1"),
            "label2": labels.get("label2"),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        def _update():
            return (
                self._table.update(row)
                .eq("key", key)
                .eq(f"value->>{field}", expected)
                .execute()
            )

        response = await asyncio.to_thread(_update)
        return bool(response.data)

    async def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""

        def _delete():
            return self._table.delete().eq("key", key).execute()

        await asyncio.to_thread(_delete)

    async def get_by_label(
        self, label: str, pattern: str, cursor: str | None = None
    ) -> LabelPage:
        """Query one page of items by a label value or ``prefix*`` pattern."""
        if label not in LABELS:
            raise ValueError(f"Unknown label: {label}")

        def _filter(query):
            if pattern.endswith("*"):
                return query.like(label, _like_pattern(pattern))
            return query.eq(label, pattern)

        return await self._page(_filter, cursor)

    async def list_prefix(self, prefix: str, cursor: str | None = None) -> LabelPage:
        """Query one page of items whose key starts with ``prefix``."""
        return await self._page(lambda query: query.like("key", _like_pattern(f"{prefix}*")), cursor)

    async def _page(self, apply_filter, cursor: str | None) -> LabelPage:
        offset = int(cursor) if cursor else 0

        def _select():
            query = self._table.select("key,value,label1,label2")
            return (
                apply_filter(query)
                .order("key")
                .range(offset, offset + self.page_size - 1)
                .execute()
            )

        response = await asyncio.to_thread(_select)
        rows = response.data or []
        next_cursor = str(offset + len(rows)) if len(rows) == self.page_size else None
        return LabelPage(items=[_row_to_item(row) for row in rows], next_cursor=next_cursor)

    async def iter_label(self, label: str, pattern: str) -> list[StoreItem]:
        """Collect every item matching a label query, following cursors until exhausted."""
        items: list[StoreItem] = []
        cursor: str | None = None
        while True:
            page = await self.get_by_label(label, pattern, cursor=cursor)
            items.extend(page.items)
            if not page.next_cursor:
                return items
            cursor = page.next_cursor

    async def iter_prefix(self, prefix: str) -> list[StoreItem]:
        """Collect every item whose key starts with ``prefix``."""
        items: list[StoreItem] = []
        cursor: str | None = None
        while True:
            page = await self.list_prefix(prefix, cursor=cursor)
            items.extend(page.items)
            if not page.next_cursor:
                return items
            cursor = page.next_cursor
