"""History storage backends."""

from ai_tasks.storage.base import HistoryStore
from ai_tasks.storage.memory import InMemoryHistoryStore
from ai_tasks.storage.postgres import PostgresHistoryStore

__all__ = [
    "HistoryStore",
    "InMemoryHistoryStore",
    "PostgresHistoryStore",
]
