from __future__ import annotations

from typing import Any, Dict, List, Optional


class TodoServiceError(Exception):
    """Base class for failures raised by the todo services and the chat relay."""

    status_code: int = 500
    public_message: str = "Internal server error"


class ValidationError(TodoServiceError):
    """
    Malformed input caught before the store is touched.

    `errors` follows the pydantic error shape ({"loc", "msg", "type"}) so the
    HTTP envelope is identical to the one FastAPI produces for request models.
    """

    status_code = 422
    public_message = "Request validation failed"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or [{"loc": [], "msg": message, "type": "value_error"}]

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, [{"loc": [field], "msg": message, "type": "value_error"}])


class TodoNotFoundError(TodoServiceError):
    status_code = 404
    public_message = "Todo not found"

    def __init__(self, todo_id: str) -> None:
        super().__init__(f'todo with id "{todo_id}" not found')
        self.todo_id = todo_id


class StorageError(TodoServiceError):
    """The persistence layer is unreachable or rejected the operation."""

    status_code = 503
    public_message = "Storage unavailable"


class UpstreamProviderError(TodoServiceError):
    """The chat model provider or a tool implementation failed."""

    status_code = 502
    public_message = "An error occurred"


class ClientClosedError(TodoServiceError):
    """The caller went away before the response was complete."""

    status_code = 499
    public_message = "Client closed request"
