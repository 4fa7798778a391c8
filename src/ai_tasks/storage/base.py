"""Storage interface for generation history plus helpers shared by backends."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Protocol

from ai_tasks.app.errors import InvalidArgument
from ai_tasks.app.models import CONTENT_TYPES, HistoryItem, HistoryPage

MAX_PAGE_SIZE = 100


class HistoryStore(Protocol):
    def migrate(self) -> None: ...

    def create(
        self,
        owner_id: str,
        *,
        content_type: str,
        payload: dict[str, Any],
        parameters: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> HistoryItem: ...

    def list(
        self,
        owner_id: str,
        *,
        content_type: str | None = None,
        is_favorite: bool | None = None,
        limit: int = 20,
        cursor: str | None = None,
    ) -> HistoryPage: ...

    def get(self, owner_id: str, item_id: str) -> HistoryItem: ...

    def toggle_favorite(self, owner_id: str, item_id: str) -> HistoryItem: ...

    def rate(self, owner_id: str, item_id: str, rating: Any) -> HistoryItem: ...

    def delete(self, owner_id: str, item_id: str) -> None: ...

    def list_favorites(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        cursor: str | None = None,
    ) -> HistoryPage: ...


def validate_rating(rating: Any) -> int:
    # bool is an int subclass; True must not pass as a rating of 1.
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidArgument("Rating must be an integer between 1 and 5", rating=rating)
    if not 1 <= rating <= 5:
        raise InvalidArgument("Rating must be between 1 and 5", rating=rating)
    return rating


def validate_listing(content_type: str | None, limit: int) -> None:
    if content_type is not None and content_type not in CONTENT_TYPES:
        raise InvalidArgument(f"Unknown content type: {content_type}", content_type=content_type)
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_SIZE}", limit=limit)


def encode_cursor(seq: int) -> str:
    """Opaque cursor pointing just below insertion sequence ``seq``."""
    return base64.urlsafe_b64encode(f"h:{seq}".encode("ascii")).decode("ascii")


def decode_cursor(cursor: str) -> int:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("ascii")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidArgument("Malformed history cursor", cursor=cursor) from exc
    prefix, _, value = raw.partition(":")
    if prefix != "h" or not value.isdigit():
        raise InvalidArgument("Malformed history cursor", cursor=cursor)
    return int(value)
