from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import require_identity
from ..dependencies import get_mutation_service, get_query_service
from ..schemas import (
    MutationResult,
    SortDirection,
    TodoCount,
    TodoCreate,
    TodoListQuery,
    TodoOrderBy,
    TodoOut,
    TodoPage,
    TodoStatus,
    TodoUpdate,
)
from ..services import TodoMutationService, TodoQueryService

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
    dependencies=[Depends(require_identity)],
)


def list_query_params(
    query: Optional[str] = Query(None, description="Case-insensitive search text for the title"),
    todo_status: TodoStatus = Query("all", alias="status", description="all, completed or pending"),
    order_by: TodoOrderBy = Query("createdAt", alias="orderBy", description="title, createdAt or updatedAt"),
    direction: SortDirection = Query("desc", description="asc or desc"),
    page: int = Query(1, ge=1, description="1-based page number, 10 items per page"),
) -> TodoListQuery:
    """
    Collect list query parameters. Invalid values (e.g. page <= 0) are
    rejected with a 422 before the store is reached.
    """
    return TodoListQuery(query=query, status=todo_status, order_by=order_by, direction=direction, page=page)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=TodoPage,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- query: case-insensitive substring of the title\n"
        "- status: all, completed or pending\n"
        "- orderBy: title, createdAt or updatedAt (default createdAt)\n"
        "- direction: asc or desc (default desc)\n"
        "- page: page number >= 1, page size is fixed at 10\n\n"
        "An empty page is a normal response."
    ),
    responses={
        200: {"description": "Page retrieved successfully"},
        422: {"description": "Invalid query parameters"},
    },
)
def list_todos(
    query: TodoListQuery = Depends(list_query_params),
    service: TodoQueryService = Depends(get_query_service),
) -> TodoPage:
    return service.list_todos(query)


# PUBLIC_INTERFACE
@router.get(
    "/count",
    response_model=TodoCount,
    summary="Count Todos",
    description="Number of todos matching the same filters as the list endpoint (page is ignored).",
)
def count_todos(
    query: TodoListQuery = Depends(list_query_params),
    service: TodoQueryService = Depends(get_query_service),
) -> TodoCount:
    return TodoCount(count=service.count_todos(query))


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
        422: {"description": "Malformed todo ID"},
    },
)
def get_todo(todo_id: str, service: TodoQueryService = Depends(get_query_service)) -> TodoOut:
    return service.get_todo(todo_id)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=MutationResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item. The title must be at least 5 characters long.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_todo(payload: TodoCreate, service: TodoMutationService = Depends(get_mutation_service)) -> MutationResult:
    return service.create(payload)


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=MutationResult,
    response_model_exclude_none=True,
    summary="Update Todo",
    description="Partially update the title and/or completion flag of a Todo item.",
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
        422: {"description": "Validation error"},
    },
)
def patch_todo(
    todo_id: str,
    payload: TodoUpdate,
    service: TodoMutationService = Depends(get_mutation_service),
) -> MutationResult:
    return service.update(todo_id, payload)


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    response_model=MutationResult,
    response_model_exclude_none=True,
    summary="Delete Todo",
    description="Delete a Todo item by ID. Deletion is physical and irreversible.",
    responses={
        200: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
        422: {"description": "Malformed todo ID"},
    },
)
def delete_todo(todo_id: str, service: TodoMutationService = Depends(get_mutation_service)) -> MutationResult:
    return service.delete(todo_id)
