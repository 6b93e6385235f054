from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from http.cookies import CookieError, SimpleCookie
from threading import RLock
from typing import Dict, Mapping, Optional, Protocol

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import SessionRow, UserRow, as_utc
from .errors import StorageError
from .repositories import utcnow
from .schemas import SessionInfo, SessionOut, UserOut

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class IdentityProvider(Protocol):
    """External collaborator that resolves a session from request headers."""

    def get_session(self, headers: Mapping[str, str]) -> Optional[SessionInfo]:
        ...


def extract_session_token(headers: Mapping[str, str], cookie_name: str) -> Optional[str]:
    """
    Return the session token carried by the request, preferring an
    `Authorization: Bearer` header over the session cookie.
    """
    auth = headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        return token or None

    raw_cookie = headers.get("cookie")
    if not raw_cookie:
        return None
    jar = SimpleCookie()
    try:
        jar.load(raw_cookie)
    except CookieError:
        return None
    morsel = jar.get(cookie_name)
    if morsel is None or not morsel.value:
        return None
    # Signed cookies carry "<token>.<signature>"
    return morsel.value.split(".", 1)[0] or None


class InMemoryIdentityProvider:
    """
    Session table kept in process memory, for development and tests.
    """

    def __init__(self, cookie_name: str = "better-auth.session_token") -> None:
        self._cookie_name = cookie_name
        self._lock = RLock()
        self._sessions: Dict[str, SessionInfo] = {}

    def add_session(
        self,
        user: UserOut,
        token: str,
        expires_at: Optional[datetime] = None,
    ) -> SessionInfo:
        info = SessionInfo(
            user=user,
            session=SessionOut(
                id=str(uuid.uuid4()),
                user_id=user.id,
                expires_at=expires_at or utcnow() + timedelta(days=7),
            ),
        )
        with self._lock:
            self._sessions[token] = info
        return info

    def get_session(self, headers: Mapping[str, str]) -> Optional[SessionInfo]:
        token = extract_session_token(headers, self._cookie_name)
        if token is None:
            return None
        with self._lock:
            return self._sessions.get(token)


class DatabaseIdentityProvider:
    """
    Reads the auth provider's `sessions` and `users` tables. Never writes.
    """

    def __init__(self, engine: Engine, cookie_name: str) -> None:
        self._engine = engine
        self._cookie_name = cookie_name

    def get_session(self, headers: Mapping[str, str]) -> Optional[SessionInfo]:
        token = extract_session_token(headers, self._cookie_name)
        if token is None:
            return None

        stmt = (
            select(SessionRow, UserRow)
            .join(UserRow, UserRow.id == SessionRow.user_id)
            .where(SessionRow.token == token)
        )
        try:
            with Session(self._engine) as session:
                row = session.execute(stmt).first()
        except SQLAlchemyError as e:
            raise StorageError("could not resolve session") from e

        if row is None:
            return None
        session_row, user_row = row
        return SessionInfo(
            user=UserOut(id=user_row.id, name=user_row.name, email=user_row.email),
            session=SessionOut(
                id=session_row.id,
                user_id=session_row.user_id,
                expires_at=as_utc(session_row.expires_at),
            ),
        )


def get_identity_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


# PUBLIC_INTERFACE
def require_identity(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
) -> SessionInfo:
    """
    Resolve the caller's session and attach it to `request.state.identity`.

    Authentication only, no authorization. Unauthenticated callers are
    short-circuited: browser navigations (Accept: text/html) are redirected
    to the login page, API calls get 401.

    Usage:
        router = APIRouter(dependencies=[Depends(require_identity)])
    """
    info = provider.get_session(request.headers)
    if info is not None and as_utc(info.session.expires_at) <= utcnow():
        logger.debug("Rejecting expired session %s", info.session.id)
        info = None

    if info is None:
        if _wants_html(request):
            raise HTTPException(
                status_code=status.HTTP_303_SEE_OTHER,
                detail="Login required",
                headers={"Location": request.app.state.settings.auth_login_url},
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.identity = info
    return info
