from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sql'
    - DATABASE_URL: SQLAlchemy URL for the sql backend. Default 'sqlite:///./data/todos.db'
    - DB_POOL_SIZE / DB_MAX_OVERFLOW / DB_POOL_TIMEOUT / DB_POOL_RECYCLE: connection pool tuning
    - AUTH_BACKEND: 'database' (default) or 'memory'
    - AUTH_SESSION_COOKIE: cookie carrying the session token
    - AUTH_LOGIN_URL: where unauthenticated page navigations are redirected
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - OPENAI_API_KEY / OPENAI_BASE_URL / CHAT_MODEL: chat model provider
    - CHAT_MAX_ITERATIONS: upper bound on agent loop rounds per chat turn
    """

    persistence_backend: str
    database_url: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    auth_backend: str
    auth_session_cookie: str
    auth_login_url: str
    cors_allow_origins: List[str]
    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    chat_model: str
    chat_max_iterations: int


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sql"}:
        backend = "memory"

    auth_backend = _get_env("AUTH_BACKEND", "database").strip().lower()
    if auth_backend not in {"database", "memory"}:
        auth_backend = "database"

    return Settings(
        persistence_backend=backend,
        database_url=_get_env("DATABASE_URL", "sqlite:///./data/todos.db").strip(),
        db_pool_size=_parse_int(_get_env("DB_POOL_SIZE", "10"), 10, minimum=1),
        db_max_overflow=_parse_int(_get_env("DB_MAX_OVERFLOW", "20"), 20),
        db_pool_timeout=_parse_int(_get_env("DB_POOL_TIMEOUT", "5"), 5, minimum=1),
        db_pool_recycle=_parse_int(_get_env("DB_POOL_RECYCLE", "1800"), 1800),
        auth_backend=auth_backend,
        auth_session_cookie=_get_env("AUTH_SESSION_COOKIE", "better-auth.session_token").strip(),
        auth_login_url=_get_env("AUTH_LOGIN_URL", "/login").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
        chat_model=_get_env("CHAT_MODEL", "gpt-4o-mini").strip(),
        chat_max_iterations=_parse_int(_get_env("CHAT_MAX_ITERATIONS", "5"), 5, minimum=1),
    )
