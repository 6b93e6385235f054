from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import TodoNotFoundError, ValidationError
from .models import TodoEntity
from .repositories import ListQuery, Repository
from .schemas import (
    PAGE_SIZE,
    MutationResult,
    TodoCreate,
    TodoListQuery,
    TodoOut,
    TodoPage,
    TodoUpdate,
    parse_todo_id,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_ORDER_COLUMNS = {"title": "title", "createdAt": "created_at", "updatedAt": "updated_at"}


def validate_input(model: Type[M], data: Union[M, Mapping[str, Any], None]) -> M:
    """
    Coerce untrusted input into `model`, turning pydantic failures into the
    service's ValidationError so callers see one error type.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise ValidationError(f"invalid {model.__name__}", errors) from e


def validate_todo_id(value: Any) -> str:
    try:
        return parse_todo_id(value)
    except ValueError as e:
        raise ValidationError.for_field("id", str(e)) from e


def _to_out(entity: TodoEntity) -> TodoOut:
    return TodoOut(**entity)


def to_list_query(query: TodoListQuery, *, paginate: bool = True) -> ListQuery:
    completed: Optional[bool] = None
    if query.status == "completed":
        completed = True
    elif query.status == "pending":
        completed = False
    return ListQuery(
        search=query.query,
        completed=completed,
        order_by=_ORDER_COLUMNS[query.order_by],
        descending=query.direction == "desc",
        offset=(query.page - 1) * PAGE_SIZE if paginate else 0,
        limit=PAGE_SIZE if paginate else None,
    )


# PUBLIC_INTERFACE
class TodoQueryService:
    """
    Read side: turns untrusted list/get requests into bounded store reads.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def list_todos(self, query: Union[TodoListQuery, Mapping[str, Any], None] = None) -> TodoPage:
        """
        Return one page (at most PAGE_SIZE items) of todos matching the query.
        An empty page is a normal result.
        """
        q = validate_input(TodoListQuery, query)
        list_query = to_list_query(q)
        items = self._repo.list(list_query)
        total = self._repo.count(list_query)
        return TodoPage(items=[_to_out(t) for t in items], total=total, page=q.page, page_size=PAGE_SIZE)

    def get_todo(self, todo_id: Any) -> TodoOut:
        """
        Raises:
            ValidationError for a malformed id, TodoNotFoundError if absent.
        """
        tid = validate_todo_id(todo_id)
        entity = self._repo.get(tid)
        if entity is None:
            raise TodoNotFoundError(tid)
        return _to_out(entity)

    def count_todos(self, query: Union[TodoListQuery, Mapping[str, Any], None] = None) -> int:
        q = validate_input(TodoListQuery, query)
        return self._repo.count(to_list_query(q, paginate=False))


# PUBLIC_INTERFACE
class TodoMutationService:
    """
    Write side: validates and applies create/update/delete.

    Validation failures never reach the store. The service keeps no cache;
    callers holding listings refresh them after a mutation.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def create(self, data: Union[TodoCreate, Mapping[str, Any]]) -> MutationResult:
        payload = validate_input(TodoCreate, data)
        created = self._repo.create(payload)
        logger.info("Created todo %s", created["id"])
        return MutationResult(message=f"Created todo with title: {created['title']}", todo=_to_out(created))

    def update(self, todo_id: Any, data: Union[TodoUpdate, Mapping[str, Any]]) -> MutationResult:
        tid = validate_todo_id(todo_id)
        payload = validate_input(TodoUpdate, data)
        if self._repo.get(tid) is None:
            raise TodoNotFoundError(tid)
        updated = self._repo.update(tid, payload)
        if updated is None:
            # Deleted between the lookup and the write
            raise TodoNotFoundError(tid)
        return MutationResult(message=f"Updated todo with id: {tid}", todo=_to_out(updated))

    def delete(self, todo_id: Any) -> MutationResult:
        tid = validate_todo_id(todo_id)
        if self._repo.get(tid) is None:
            raise TodoNotFoundError(tid)
        if not self._repo.delete(tid):
            raise TodoNotFoundError(tid)
        logger.info("Deleted todo %s", tid)
        return MutationResult(message=f"Deleted todo with id: {tid}")
