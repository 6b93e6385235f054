from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import TEST_TOKEN, TEST_USER, make_settings
from todo_assistant.auth import DatabaseIdentityProvider, InMemoryIdentityProvider, extract_session_token
from todo_assistant.db import SessionRow, UserRow, init_db, make_engine
from todo_assistant.repositories import utcnow
from todo_assistant.schemas import UserOut

COOKIE = "better-auth.session_token"


class TestExtractSessionToken:
    def test_bearer_header(self):
        assert extract_session_token({"authorization": "Bearer abc123"}, COOKIE) == "abc123"

    def test_signed_cookie(self):
        headers = {"cookie": f"theme=dark; {COOKIE}=abc123.c2lnbmF0dXJl"}
        assert extract_session_token(headers, COOKIE) == "abc123"

    def test_bearer_wins_over_cookie(self):
        headers = {"authorization": "Bearer from-header", "cookie": f"{COOKIE}=from-cookie"}
        assert extract_session_token(headers, COOKIE) == "from-header"

    @pytest.mark.parametrize(
        "headers",
        [{}, {"authorization": "Basic dXNlcjpwYXNz"}, {"authorization": "Bearer "}, {"cookie": "other=1"}],
    )
    def test_missing_token(self, headers):
        assert extract_session_token(headers, COOKIE) is None


class TestGate:
    def test_session_endpoint_returns_identity(self, client):
        res = client.get("/api/v1/auth/session")
        assert res.status_code == 200
        body = res.json()
        assert body["user"] == {"id": "user-1", "name": "Ada", "email": "ada@example.com"}
        assert body["session"]["userId"] == "user-1"

    def test_cookie_session_is_accepted(self, app_factory):
        with TestClient(app_factory()) as c:
            res = c.get("/api/v1/todos", headers={"Cookie": f"{COOKIE}={TEST_TOKEN}.sig"})
        assert res.status_code == 200

    def test_unknown_token_is_unauthorized(self, app_factory):
        with TestClient(app_factory()) as c:
            res = c.get("/api/v1/todos", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401
        assert res.headers["www-authenticate"] == "Bearer"

    def test_expired_session_is_unauthorized(self, app_factory):
        provider = InMemoryIdentityProvider()
        provider.add_session(TEST_USER, "stale", expires_at=utcnow() - timedelta(minutes=1))
        with TestClient(app_factory(identity_provider=provider)) as c:
            res = c.get("/api/v1/auth/session", headers={"Authorization": "Bearer stale"})
        assert res.status_code == 401

    def test_page_navigation_redirects_to_login(self, app_factory):
        settings = make_settings(auth_login_url="/sign-in")
        with TestClient(app_factory(settings=settings)) as c:
            res = c.get("/api/v1/todos", headers={"Accept": "text/html"}, follow_redirects=False)
        assert res.status_code == 303
        assert res.headers["location"] == "/sign-in"

    def test_health_needs_no_session(self, app_factory):
        with TestClient(app_factory()) as c:
            assert c.get("/").status_code == 200


@pytest.fixture
def session_db():
    engine = make_engine(make_settings(database_url="sqlite://"))
    init_db(engine)
    with Session(engine) as session:
        session.add(UserRow(id="user-9", name="Grace", email="grace@example.com"))
        session.flush()
        session.add_all(
            [
                SessionRow(id="s-live", token="live-token", user_id="user-9", expires_at=utcnow() + timedelta(days=1)),
                SessionRow(id="s-old", token="old-token", user_id="user-9", expires_at=utcnow() - timedelta(days=1)),
            ]
        )
        session.commit()
    yield engine
    engine.dispose()


class TestDatabaseIdentityProvider:
    def test_resolves_session_and_user(self, session_db):
        provider = DatabaseIdentityProvider(session_db, COOKIE)
        info = provider.get_session({"cookie": f"{COOKIE}=live-token.sig"})
        assert info.user == UserOut(id="user-9", name="Grace", email="grace@example.com")
        assert info.session.id == "s-live"
        assert info.session.expires_at.tzinfo is not None

    def test_unknown_token(self, session_db):
        provider = DatabaseIdentityProvider(session_db, COOKIE)
        assert provider.get_session({"authorization": "Bearer missing"}) is None
        assert provider.get_session({}) is None

    def test_gate_over_database_sessions(self, app_factory, session_db):
        provider = DatabaseIdentityProvider(session_db, COOKIE)
        with TestClient(app_factory(identity_provider=provider)) as c:
            live = c.get("/api/v1/auth/session", headers={"Authorization": "Bearer live-token"})
            old = c.get("/api/v1/auth/session", headers={"Authorization": "Bearer old-token"})
        assert live.status_code == 200
        assert live.json()["user"]["email"] == "grace@example.com"
        assert old.status_code == 401
