from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PAGE_SIZE = 10
TITLE_MIN_LENGTH = 5

TodoStatus = Literal["all", "completed", "pending"]
TodoOrderBy = Literal["title", "createdAt", "updatedAt"]
SortDirection = Literal["asc", "desc"]


class CamelModel(BaseModel):
    """Base model exposing camelCase JSON while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_title(value: str) -> str:
    if len(value) < TITLE_MIN_LENGTH:
        raise ValueError(f"title must be at least {TITLE_MIN_LENGTH} characters")
    return value


# PUBLIC_INTERFACE
def parse_todo_id(value: Any) -> str:
    """
    Normalize a todo id to its canonical UUID string. Only the hyphenated
    8-4-4-4-12 form is accepted (any case); braces, urn:uuid: prefixes and
    bare hex are rejected.

    Raises:
        ValueError if the value is not a well-formed UUID.
    """
    if isinstance(value, str):
        try:
            canonical = str(uuid.UUID(value))
        except ValueError:
            canonical = None
        if canonical is not None and canonical == value.lower():
            return canonical
    raise ValueError("Invalid UUID format for todo ID")


# PUBLIC_INTERFACE
class TodoCreate(CamelModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"title": "Buy groceries"}},
    )

    title: str = Field(..., description=f"Todo title, at least {TITLE_MIN_LENGTH} characters")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Enforce the minimum title length. The title is stored as given.
        """
        return _check_title(v)


# PUBLIC_INTERFACE
class TodoUpdate(CamelModel):
    """
    Schema for updating an existing Todo item.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"title": "Buy groceries and milk", "isCompleted": True}},
    )

    title: Optional[str] = Field(default=None, description="New title for the todo item")
    is_completed: Optional[bool] = Field(default=None, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _check_title(v)


# PUBLIC_INTERFACE
class TodoOut(CamelModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "0b6f5e8e-5d7c-4f43-9d0c-3f1c1b2f9a10",
                "title": "Buy groceries",
                "isCompleted": False,
                "createdAt": "2025-01-25T10:15:30.123456Z",
                "updatedAt": "2025-01-26T09:00:00.000001Z",
            }
        },
    )

    id: str = Field(..., description="Unique identifier of the todo item")
    title: str = Field(..., description="Todo title")
    is_completed: bool = Field(..., description="Completion status flag")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class TodoSummary(CamelModel):
    """Todo without timestamps, as handed to the chat model."""

    id: str
    title: str
    is_completed: bool


# PUBLIC_INTERFACE
class TodoListQuery(CamelModel):
    """
    Query parameters for listing todos. Every clause is optional; an absent
    clause matches everything.
    """

    query: Optional[str] = Field(default=None, description="Case-insensitive substring of the title")
    status: TodoStatus = Field(default="all", description="Filter on completion status")
    order_by: TodoOrderBy = Field(default="createdAt", description="Sort key")
    direction: SortDirection = Field(default="desc", description="Sort direction")
    page: int = Field(default=1, ge=1, description=f"1-based page number, {PAGE_SIZE} items per page")

    @field_validator("query")
    @classmethod
    def empty_query_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class TodoPage(CamelModel):
    """
    Envelope for paginated list responses.
    """

    items: List[TodoOut] = Field(..., description="Todo items on this page")
    total: int = Field(..., description="Total number of items matching the query")
    page: int = Field(..., description="Page number that was returned")
    page_size: int = Field(..., description="Fixed page size")


class TodoCount(BaseModel):
    count: int = Field(..., description="Number of todos matching the query")


class MutationResult(BaseModel):
    """Confirmation returned by create, update and delete."""

    message: str = Field(..., description="Human readable confirmation")
    todo: Optional[TodoOut] = Field(default=None, description="The written todo, absent after delete")


class UserOut(CamelModel):
    id: str
    name: str
    email: str


class SessionOut(CamelModel):
    id: str
    user_id: str
    expires_at: datetime


class SessionInfo(BaseModel):
    """Identity resolved by the auth gate and attached to the request."""

    user: UserOut
    session: SessionOut


class ChatMessage(CamelModel):
    """
    A message of the conversation history as sent by the chat client.

    Assistant messages may carry the tool calls they proposed, tool messages
    the id of the call they answer.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None


class ChatRequest(CamelModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    conversation_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = Field(default=None, description="Extra client data, may carry conversationId")

    def resolved_conversation_id(self) -> Optional[str]:
        if self.conversation_id:
            return self.conversation_id
        if self.data and isinstance(self.data.get("conversationId"), str):
            return self.data["conversationId"]
        return None
