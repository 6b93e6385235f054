import asyncio
from dataclasses import replace
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from todo_assistant.auth import InMemoryIdentityProvider
from todo_assistant.chat import ModelFinish, TextDelta, ToolCallRequest
from todo_assistant.main import create_app
from todo_assistant.schemas import UserOut
from todo_assistant.settings import get_settings

TEST_TOKEN = "test-session-token"
TEST_USER = UserOut(id="user-1", name="Ada", email="ada@example.com")


def make_settings(**overrides):
    base = replace(
        get_settings(),
        persistence_backend="memory",
        database_url="sqlite://",
        auth_backend="memory",
        openai_api_key=None,
        chat_max_iterations=5,
    )
    return replace(base, **overrides)


class ScriptedChatModel:
    """
    Chat model double. Each call to `stream` plays the next scripted turn;
    a turn is a list of events. Received message lists are recorded.
    """

    def __init__(self, turns: List[List[Any]], repeat_last: bool = False) -> None:
        self.turns = turns
        self.repeat_last = repeat_last
        self.calls: List[List[Dict[str, Any]]] = []
        self.tools_seen: List[List[Dict[str, Any]]] = []
        self.closed = 0

    async def stream(self, messages, tools):
        index = len(self.calls)
        self.calls.append(list(messages))
        self.tools_seen.append(list(tools))
        if index >= len(self.turns):
            if not self.repeat_last:
                raise AssertionError("model called more often than scripted")
            index = len(self.turns) - 1
        try:
            for event in self.turns[index]:
                if isinstance(event, Exception):
                    raise event
                yield event
        finally:
            self.closed += 1


def text_turn(text: str) -> List[Any]:
    return [TextDelta(text), ModelFinish("stop")]


def tool_turn(*calls: ToolCallRequest) -> List[Any]:
    return [*calls, ModelFinish("tool_calls")]


def collect(events) -> List[Dict[str, Any]]:
    async def _drain():
        return [e async for e in events]

    return asyncio.run(_drain())


@pytest.fixture
def identity_provider():
    provider = InMemoryIdentityProvider()
    provider.add_session(TEST_USER, TEST_TOKEN)
    return provider


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def app_factory(identity_provider):
    def _factory(**kwargs):
        settings = kwargs.pop("settings", None) or make_settings()
        return create_app(settings, identity_provider=kwargs.pop("identity_provider", identity_provider), **kwargs)

    return _factory


@pytest.fixture
def client(app_factory, auth_headers):
    with TestClient(app_factory()) as c:
        c.headers.update(auth_headers)
        yield c
