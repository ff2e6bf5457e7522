"""Read-only content store contract and an in-memory implementation."""

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import orjson

from ..config import SourceDefinition
from ..models.items import AlertEvent, ContentItem, ContentType, item_from_record
from ..utils import clean_text, ensure_utc

TEXT_FIELDS = ("title", "name", "summary", "body", "description")


class ContentStore(Protocol):
    """Queries the pipeline needs from persistence. The pipeline never writes."""

    async def latest_timestamp(self, source: SourceDefinition) -> datetime | None:
        """Timestamp of the newest record belonging to the source."""
        ...

    async def count_since(self, source: SourceDefinition, since: datetime) -> int:
        """Number of the source's records created at or after ``since``."""
        ...

    async def fetch_candidates(
        self,
        content_type: ContentType,
        since: datetime,
        limit: int
    ) -> list[ContentItem]:
        """Newest records of a content type created at or after ``since``."""
        ...


def item_timestamp(item: ContentItem) -> datetime | None:
    timestamp = item.published_at or item.created_at
    return ensure_utc(timestamp) if timestamp else None


class InMemoryContentStore:
    """Content store backed by per-source lists of items."""

    def __init__(self, items_by_source: dict[str, Iterable[ContentItem]] | None = None):
        self._items: dict[str, list[ContentItem]] = {}
        for source_id, items in (items_by_source or {}).items():
            self.extend(source_id, items)

    def add(self, source_id: str, item: ContentItem) -> None:
        self._items.setdefault(source_id, []).append(item)

    def extend(self, source_id: str, items: Iterable[ContentItem]) -> None:
        self._items.setdefault(source_id, []).extend(items)

    def items_for(self, source_id: str) -> list[ContentItem]:
        return list(self._items.get(source_id, []))

    def _source_items(self, source: SourceDefinition) -> list[ContentItem]:
        items = self._items.get(source.id, [])
        return [item for item in items if self._belongs_to(item, source)]

    @staticmethod
    def _belongs_to(item: ContentItem, source: SourceDefinition) -> bool:
        if item.content_type != source.content_type:
            return False
        if isinstance(item, AlertEvent) and source.module and item.module:
            return item.module == source.module
        return True

    async def latest_timestamp(self, source: SourceDefinition) -> datetime | None:
        timestamps = [ts for ts in map(item_timestamp, self._source_items(source)) if ts]
        return max(timestamps, default=None)

    async def count_since(self, source: SourceDefinition, since: datetime) -> int:
        since = ensure_utc(since)
        return sum(
            1 for item in self._source_items(source)
            if (ts := item_timestamp(item)) is not None and ts >= since
        )

    async def fetch_candidates(
        self,
        content_type: ContentType,
        since: datetime,
        limit: int
    ) -> list[ContentItem]:
        since = ensure_utc(since)
        candidates = [
            item
            for items in self._items.values()
            for item in items
            if item.content_type == content_type
            and (ts := item_timestamp(item)) is not None
            and ts >= since
        ]
        candidates.sort(key=item_timestamp, reverse=True)
        return candidates[:limit]

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> "InMemoryContentStore":
        """Build a store from mappings carrying ``source_id`` and ``type`` keys.

        Text fields are whitespace-collapsed and HTML entities decoded.
        """
        store = cls()
        for record in records:
            source_id = record.get("source_id") or record.get("type")
            record = {
                key: clean_text(value) if key in TEXT_FIELDS and isinstance(value, str) else value
                for key, value in record.items()
            }
            store.add(source_id, item_from_record(record))
        return store

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryContentStore":
        """Load a store from a JSON file holding a list of item records."""
        data = orjson.loads(Path(path).read_bytes())
        if isinstance(data, dict):
            data = data.get("items", [])
        return cls.from_records(data)
