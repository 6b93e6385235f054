from __future__ import annotations

from datetime import datetime
from typing import TypedDict


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    Storage-agnostic representation of a Todo row as handed out by repositories.

    Fields:
    - id: UUID string generated by the application at creation, immutable
    - title: Todo title (length validated at the service boundary, not here)
    - is_completed: Completion flag, false at creation
    - created_at: Timezone-aware UTC creation timestamp, immutable
    - updated_at: Timezone-aware UTC timestamp refreshed on every write
    """

    id: str
    title: str
    is_completed: bool
    created_at: datetime
    updated_at: datetime
