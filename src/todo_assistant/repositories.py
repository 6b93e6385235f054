from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Iterable, List, Optional

from .models import TodoEntity
from .schemas import TodoCreate, TodoUpdate

SORT_FIELDS = {"title", "created_at", "updated_at"}


@dataclass(frozen=True)
class ListQuery:
    """
    Store-level filter, ordering and window for listing todos.
    """
    search: Optional[str] = None
    completed: Optional[bool] = None
    order_by: str = "created_at"  # allowed: title, created_at, updated_at
    descending: bool = True
    offset: int = 0
    limit: Optional[int] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_todo_id() -> str:
    return str(uuid.uuid4())


def next_updated_at(previous: datetime) -> datetime:
    """Timestamp for a write that must land strictly after `previous`."""
    now = utcnow()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for todo storage backends."""

    @abstractmethod
    def create(self, data: TodoCreate) -> TodoEntity:
        """Create and return a new TodoEntity with generated id and timestamps."""

    @abstractmethod
    def get(self, todo_id: str) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    def update(self, todo_id: str, data: TodoUpdate) -> Optional[TodoEntity]:
        """Update provided fields of an existing TodoEntity. Return it, or None if not found."""

    @abstractmethod
    def delete(self, todo_id: str) -> bool:
        """Delete a TodoEntity by id. Return True if deleted, False if not found."""

    @abstractmethod
    def count(self, query: Optional[ListQuery] = None) -> int:
        """Return the number of todos matching the query filters (window ignored)."""

    @abstractmethod
    def list(self, query: Optional[ListQuery] = None) -> List[TodoEntity]:
        """
        Return the ordered window of TodoEntities matching the query.
        - Case-insensitive substring search on title
        - Filter by completion flag
        - Sorting by title/created_at/updated_at, ties broken by id
        - offset/limit window
        """


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: dict[str, TodoEntity] = {}

    def create(self, data: TodoCreate) -> TodoEntity:
        now = utcnow()
        entity: TodoEntity = {
            "id": new_todo_id(),
            "title": data.title,
            "is_completed": False,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._items[entity["id"]] = entity
        return entity.copy()

    def get(self, todo_id: str) -> Optional[TodoEntity]:
        with self._lock:
            item = self._items.get(todo_id)
            return None if item is None else item.copy()

    def update(self, todo_id: str, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None:
                return None

            # Update only provided fields
            updated = existing.copy()
            if data.title is not None:
                updated["title"] = data.title
            if data.is_completed is not None:
                updated["is_completed"] = data.is_completed
            updated["updated_at"] = next_updated_at(existing["updated_at"])

            self._items[todo_id] = updated
            return updated.copy()

    def delete(self, todo_id: str) -> bool:
        with self._lock:
            return self._items.pop(todo_id, None) is not None

    def _filtered(self, q: ListQuery) -> List[TodoEntity]:
        items: Iterable[TodoEntity] = self._items.values()
        if q.completed is not None:
            items = [t for t in items if t["is_completed"] == q.completed]
        if q.search:
            s = q.search.lower()
            items = [t for t in items if s in t["title"].lower()]
        return list(items)

    def count(self, query: Optional[ListQuery] = None) -> int:
        q = query or ListQuery()
        with self._lock:
            return len(self._filtered(q))

    def list(self, query: Optional[ListQuery] = None) -> List[TodoEntity]:
        q = query or ListQuery()
        field = q.order_by if q.order_by in SORT_FIELDS else "created_at"
        with self._lock:
            items = self._filtered(q)
            items_sorted = sorted(items, key=lambda t: (t[field], t["id"]), reverse=q.descending)

            start = max(q.offset, 0)
            end = None if q.limit is None else start + max(q.limit, 0)
            # Return copies to avoid external mutation
            return [t.copy() for t in items_sorted[start:end]]
