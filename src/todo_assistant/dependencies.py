from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from .chat import ChatModel, ChatRelay, build_todo_tools
from .repositories import Repository
from .services import TodoMutationService, TodoQueryService


def get_repository(request: Request) -> Repository:
    """Process-wide repository created by the application lifespan."""
    return request.app.state.repository


def get_query_service(repo: Repository = Depends(get_repository)) -> TodoQueryService:
    return TodoQueryService(repo)


def get_mutation_service(repo: Repository = Depends(get_repository)) -> TodoMutationService:
    return TodoMutationService(repo)


def get_chat_model(request: Request) -> Optional[ChatModel]:
    return request.app.state.chat_model


def get_chat_relay(
    request: Request,
    queries: TodoQueryService = Depends(get_query_service),
    mutations: TodoMutationService = Depends(get_mutation_service),
    model: Optional[ChatModel] = Depends(get_chat_model),
) -> Optional[ChatRelay]:
    """A relay bound to this request's services, or None when no model is configured."""
    if model is None:
        return None
    return ChatRelay(
        model,
        build_todo_tools(queries, mutations),
        max_iterations=request.app.state.settings.chat_max_iterations,
    )
