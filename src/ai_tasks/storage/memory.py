"""In-memory history backend for tests and single-process deployments."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from ai_tasks.app.errors import NotFound
from ai_tasks.app.models import HistoryItem, HistoryPage
from ai_tasks.storage.base import (
    decode_cursor,
    encode_cursor,
    validate_listing,
    validate_rating,
)


class InMemoryHistoryStore:
    """Thread-safe history store; one lock makes every mutation atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # item_id -> (insertion sequence, item)
        self._items: dict[str, tuple[int, HistoryItem]] = {}
        self._next_seq = 1

    def migrate(self) -> None:
        return None

    def create(
        self,
        owner_id: str,
        *,
        content_type: str,
        payload: dict[str, Any],
        parameters: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> HistoryItem:
        now = datetime.now(UTC)
        item = HistoryItem(
            id=str(uuid4()),
            owner_id=owner_id,
            content_type=content_type,
            payload=dict(payload),
            parameters=dict(parameters or {}),
            task_id=task_id,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._items[item.id] = (self._next_seq, item)
            self._next_seq += 1
        return item.model_copy(deep=True)

    def list(
        self,
        owner_id: str,
        *,
        content_type: str | None = None,
        is_favorite: bool | None = None,
        limit: int = 20,
        cursor: str | None = None,
    ) -> HistoryPage:
        validate_listing(content_type, limit)
        below = decode_cursor(cursor) if cursor else None
        with self._lock:
            rows = sorted(self._items.values(), key=lambda row: row[0], reverse=True)
        matches = [
            (seq, item)
            for seq, item in rows
            if item.owner_id == owner_id
            and (content_type is None or item.content_type == content_type)
            and (is_favorite is None or item.is_favorite == is_favorite)
            and (below is None or seq < below)
        ]
        page = matches[:limit]
        next_cursor = encode_cursor(page[-1][0]) if len(matches) > limit else None
        return HistoryPage(
            items=[item.model_copy(deep=True) for _, item in page],
            next_cursor=next_cursor,
        )

    def get(self, owner_id: str, item_id: str) -> HistoryItem:
        with self._lock:
            _, item = self._owned(owner_id, item_id)
            return item.model_copy(deep=True)

    def toggle_favorite(self, owner_id: str, item_id: str) -> HistoryItem:
        with self._lock:
            seq, item = self._owned(owner_id, item_id)
            updated = item.model_copy(
                update={"is_favorite": not item.is_favorite, "updated_at": datetime.now(UTC)}
            )
            self._items[item_id] = (seq, updated)
            return updated.model_copy(deep=True)

    def rate(self, owner_id: str, item_id: str, rating: Any) -> HistoryItem:
        value = validate_rating(rating)
        with self._lock:
            seq, item = self._owned(owner_id, item_id)
            updated = item.model_copy(update={"rating": value, "updated_at": datetime.now(UTC)})
            self._items[item_id] = (seq, updated)
            return updated.model_copy(deep=True)

    def delete(self, owner_id: str, item_id: str) -> None:
        with self._lock:
            self._owned(owner_id, item_id)
            del self._items[item_id]

    def list_favorites(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        cursor: str | None = None,
    ) -> HistoryPage:
        return self.list(owner_id, is_favorite=True, limit=limit, cursor=cursor)

    def _owned(self, owner_id: str, item_id: str) -> tuple[int, HistoryItem]:
        row = self._items.get(item_id)
        # Foreign items are reported exactly like missing ones.
        if row is None or row[1].owner_id != owner_id:
            raise NotFound(f"History item {item_id} not found", item_id=item_id)
        return row
