from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .auth import DatabaseIdentityProvider, IdentityProvider, InMemoryIdentityProvider
from .chat import ChatModel, OpenAIChatModel
from .db import build_repository, init_db, make_engine
from .errors import ClientClosedError, StorageError, TodoNotFoundError, TodoServiceError, ValidationError
from .logging_config import configure_logging
from .repositories import Repository
from .routers import auth as auth_router
from .routers import chat as chat_router
from .routers import todos as todos_router
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "CRUD operations for Todo items with filtering, sorting, and pagination.",
    },
    {"name": "auth", "description": "Session introspection for the authenticated caller."},
    {"name": "chat", "description": "Streaming assistant that manages todos through tools."},
]


def _default_chat_model(settings: Settings) -> Optional[ChatModel]:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; the chat endpoint will answer 503")
        return None
    return OpenAIChatModel(settings.chat_model, settings.openai_api_key, settings.openai_base_url)


def _validation_body(message: str, detail: list) -> dict:
    return {"error": "ValidationError", "message": message, "detail": jsonable_encoder(detail)}


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    *,
    repository: Optional[Repository] = None,
    identity_provider: Optional[IdentityProvider] = None,
    chat_model: Optional[ChatModel] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Shared resources (database engine, repository, identity provider, chat
    model) are created once when the app starts and released on shutdown.
    Any of them can be passed in explicitly, which tests use to inject
    in-memory or scripted collaborators.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = None
        needs_engine = (repository is None and settings.persistence_backend == "sql") or (
            identity_provider is None and settings.auth_backend == "database"
        )
        if needs_engine:
            engine = make_engine(settings)

        app.state.settings = settings
        app.state.repository = repository or build_repository(settings, engine)
        if identity_provider is not None:
            app.state.identity_provider = identity_provider
        elif settings.auth_backend == "database":
            init_db(engine)
            app.state.identity_provider = DatabaseIdentityProvider(engine, settings.auth_session_cookie)
        else:
            app.state.identity_provider = InMemoryIdentityProvider(settings.auth_session_cookie)
        app.state.chat_model = chat_model if chat_model is not None else _default_chat_model(settings)
        logger.info(
            "Started with %s persistence and %s auth",
            settings.persistence_backend,
            settings.auth_backend,
        )
        try:
            yield
        finally:
            if engine is not None:
                engine.dispose()
            logger.info("Shutdown complete")

    app = FastAPI(
        title="Todo Assistant",
        description="Todo CRUD API with session authentication and a tool-calling chat assistant.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": [... pydantic/fastapi error details ...]
            }
        """
        return JSONResponse(status_code=422, content=_validation_body("Request validation failed", exc.errors()))

    @app.exception_handler(ValidationError)
    async def service_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=_validation_body(exc.public_message, exc.errors))

    @app.exception_handler(TodoNotFoundError)
    async def not_found_handler(request: Request, exc: TodoNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})

    @app.exception_handler(ClientClosedError)
    async def client_closed_handler(request: Request, exc: ClientClosedError) -> Response:
        logger.info("Client closed %s %s", request.method, request.url.path)
        return Response(status_code=exc.status_code)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

    @app.exception_handler(TodoServiceError)
    async def service_error_handler(request: Request, exc: TodoServiceError) -> JSONResponse:
        logger.error("Unhandled service error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check(request: Request):
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {
            "message": "Healthy",
            "backend": settings.persistence_backend,
            "chat": request.app.state.chat_model is not None,
        }

    app.include_router(todos_router.router)
    app.include_router(auth_router.router)
    app.include_router(chat_router.router)
    return app


configure_logging()
app = create_app()
