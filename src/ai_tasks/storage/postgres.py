"""PostgreSQL history backend.

Beginner terms:
- Migration: creating tables/indexes before normal reads/writes.
- Keyset pagination: "give me rows below this sequence number", which stays
  stable when new rows are inserted at the top.
- RETURNING: lets one UPDATE statement both change and read a row atomically.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from ai_tasks.app.errors import NotFound, StorageError
from ai_tasks.app.models import HistoryItem, HistoryPage
from ai_tasks.storage.base import (
    decode_cursor,
    encode_cursor,
    validate_listing,
    validate_rating,
)


class PostgresHistoryStore:
    """Persist history items in PostgreSQL; every mutation is a single statement."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AI_TASKS_DATABASE_URL is required for PostgreSQL history")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS history_items (
                    seq BIGSERIAL UNIQUE,
                    id UUID PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    payload_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    parameters_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    task_id TEXT,
                    is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
                    rating SMALLINT CHECK (rating BETWEEN 1 AND 5),
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_owner_seq
                ON history_items(owner_id, seq DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_owner_favorite
                ON history_items(owner_id, is_favorite)
                """)
            conn.commit()

    def create(
        self,
        owner_id: str,
        *,
        content_type: str,
        payload: dict[str, Any],
        parameters: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> HistoryItem:
        now = datetime.now(tz=UTC)
        with self._session() as conn:
            row = conn.execute(
                """
                INSERT INTO history_items (
                    id,
                    owner_id,
                    content_type,
                    payload_json,
                    parameters_json,
                    task_id,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid.uuid4(),
                    owner_id,
                    content_type,
                    self._json_wrapper(payload),
                    self._json_wrapper(parameters or {}),
                    task_id,
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise StorageError("Failed to persist history item", owner_id=owner_id)
        return self._row_to_item(row)

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
        clauses = ["owner_id = %s"]
        params: list[Any] = [owner_id]
        if content_type is not None:
            clauses.append("content_type = %s")
            params.append(content_type)
        if is_favorite is not None:
            clauses.append("is_favorite = %s")
            params.append(is_favorite)
        if cursor:
            clauses.append("seq < %s")
            params.append(decode_cursor(cursor))
        # One extra row tells us whether another page exists.
        params.append(limit + 1)
        query = (
            "SELECT * FROM history_items WHERE "
            + " AND ".join(clauses)
            + " ORDER BY seq DESC LIMIT %s"
        )
        with self._session() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        page = rows[:limit]
        next_cursor = encode_cursor(int(page[-1]["seq"])) if len(rows) > limit else None
        return HistoryPage(
            items=[self._row_to_item(row) for row in page],
            next_cursor=next_cursor,
        )

    def get(self, owner_id: str, item_id: str) -> HistoryItem:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM history_items WHERE id::text = %s AND owner_id = %s",
                (item_id, owner_id),
            ).fetchone()
        return self._require(row, item_id)

    def toggle_favorite(self, owner_id: str, item_id: str) -> HistoryItem:
        return self._update_returning(
            "is_favorite = NOT is_favorite",
            (),
            owner_id,
            item_id,
        )

    def rate(self, owner_id: str, item_id: str, rating: Any) -> HistoryItem:
        value = validate_rating(rating)
        return self._update_returning("rating = %s", (value,), owner_id, item_id)

    def delete(self, owner_id: str, item_id: str) -> None:
        with self._session() as conn:
            row = conn.execute(
                """
                DELETE FROM history_items
                WHERE id::text = %s AND owner_id = %s
                RETURNING id
                """,
                (item_id, owner_id),
            ).fetchone()
            conn.commit()
        if row is None:
            raise NotFound(f"History item {item_id} not found", item_id=item_id)

    def list_favorites(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        cursor: str | None = None,
    ) -> HistoryPage:
        return self.list(owner_id, is_favorite=True, limit=limit, cursor=cursor)

    def _update_returning(
        self,
        assignment: str,
        values: tuple[Any, ...],
        owner_id: str,
        item_id: str,
    ) -> HistoryItem:
        with self._session() as conn:
            row = conn.execute(
                f"""
                UPDATE history_items
                SET {assignment},
                    updated_at = %s
                WHERE id::text = %s AND owner_id = %s
                RETURNING *
                """,  # noqa: S608
                (*values, datetime.now(tz=UTC), item_id, owner_id),
            ).fetchone()
            conn.commit()
        return self._require(row, item_id)

    def _require(self, row: Any, item_id: str) -> HistoryItem:
        if row is None:
            raise NotFound(f"History item {item_id} not found", item_id=item_id)
        return self._row_to_item(row)

    @contextmanager
    def _session(self) -> Iterator[Any]:
        with self._lock:
            try:
                with self._connect() as conn:
                    yield conn
            except self._psycopg.Error as exc:
                raise StorageError(
                    "History database operation failed", error=type(exc).__name__
                ) from exc

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL history requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_object(raw: Any) -> dict[str, Any]:
        if isinstance(raw, str):
            parsed = json.loads(raw)
        else:
            parsed = raw
        if isinstance(parsed, dict):
            return parsed
        return {}

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_item(cls, row: Any) -> HistoryItem:
        return HistoryItem(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            content_type=row["content_type"],
            payload=cls._parse_json_object(row["payload_json"]),
            parameters=cls._parse_json_object(row["parameters_json"]),
            task_id=row["task_id"],
            is_favorite=bool(row["is_favorite"]),
            rating=row["rating"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
