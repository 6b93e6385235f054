import dataclasses
import json

import pytest
from pydantic import BaseModel

from conftest import ScriptedChatModel, collect, text_turn, tool_turn
from todo_assistant.chat import ChatContext, ChatRelay, ModelFinish, TextDelta, ToolCallRequest, build_todo_tools
from todo_assistant.chat.relay import SYSTEM_PROMPT
from todo_assistant.chat.sse import DONE_MARKER, encode_event, to_server_sent_events
from todo_assistant.chat.tools import NoArguments, ToolDefinition
from todo_assistant.errors import UpstreamProviderError
from todo_assistant.repositories import InMemoryRepository
from todo_assistant.services import TodoMutationService, TodoQueryService


@pytest.fixture
def services():
    repo = InMemoryRepository()
    return TodoQueryService(repo), TodoMutationService(repo)


@pytest.fixture
def tools(services):
    return build_todo_tools(*services)


def context(text="How many todos do I have?"):
    return ChatContext(conversation_id="conv-1", messages=({"role": "user", "content": text},))


def cancel_after(checks):
    seen = {"n": 0}

    async def is_cancelled():
        seen["n"] += 1
        return seen["n"] > checks

    return is_cancelled


def of_type(events, kind):
    return [e for e in events if e["type"] == kind]


class TestAgentLoop:
    def test_plain_answer(self, tools):
        model = ScriptedChatModel([[TextDelta("Hello"), TextDelta(" there"), ModelFinish("stop")]])
        events = collect(ChatRelay(model, tools).run(context("Hi")))

        assert events[0] == {"type": "start", "conversationId": "conv-1"}
        assert [e["delta"] for e in of_type(events, "text")] == ["Hello", " there"]
        assert events[-1] == {"type": "done", "finishReason": "stop", "iterations": 1}
        assert model.calls[0][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert model.calls[0][1] == {"role": "user", "content": "Hi"}

    def test_declares_all_tools(self, tools):
        model = ScriptedChatModel([text_turn("ok")])
        collect(ChatRelay(model, tools).run(context()))
        names = [t["function"]["name"] for t in model.tools_seen[0]]
        assert names == ["get_todos_count", "show_todos", "add_todo", "save_to_local_storage"]

    def test_count_tool_matches_service(self, services, tools):
        queries, mutations = services
        mutations.create({"title": "Buy milk"})
        mutations.create({"title": "Call mom"})
        model = ScriptedChatModel(
            [
                tool_turn(ToolCallRequest("call-1", "get_todos_count", "{}")),
                text_turn("You have 2 todos."),
            ]
        )
        events = collect(ChatRelay(model, tools).run(context()))

        (result,) = of_type(events, "tool_result")
        assert result == {"type": "tool_result", "id": "call-1", "name": "get_todos_count", "result": 2}
        assert result["result"] == queries.count_todos()
        assert events[-1]["finishReason"] == "stop"
        assert events[-1]["iterations"] == 2

        second_call = model.calls[1]
        assert second_call[-2]["role"] == "assistant"
        assert second_call[-2]["tool_calls"][0]["function"]["name"] == "get_todos_count"
        assert second_call[-1] == {"role": "tool", "tool_call_id": "call-1", "content": "2"}

    def test_show_todos_filters(self, services, tools):
        _, mutations = services
        mutations.create({"title": "Buy milk"})
        mutations.create({"title": "Call mom"})
        model = ScriptedChatModel(
            [tool_turn(ToolCallRequest("call-1", "show_todos", '{"query": "milk"}')), text_turn("done")]
        )
        events = collect(ChatRelay(model, tools).run(context("Show milk todos")))

        (result,) = of_type(events, "tool_result")
        assert [t["title"] for t in result["result"]] == ["Buy milk"]
        assert set(result["result"][0]) == {"id", "title", "isCompleted"}

    def test_add_todo_writes_through_services(self, services, tools):
        queries, _ = services
        model = ScriptedChatModel(
            [tool_turn(ToolCallRequest("call-1", "add_todo", '{"title": "Water plants"}')), text_turn("Added")]
        )
        events = collect(ChatRelay(model, tools).run(context("Add water plants")))

        (result,) = of_type(events, "tool_result")
        assert result["result"]["message"] == "Created todo with title: Water plants"
        assert result["result"]["todo"]["isCompleted"] is False
        assert queries.count_todos() == 1

    def test_invalid_arguments_are_fed_back(self, services, tools):
        queries, _ = services
        model = ScriptedChatModel(
            [
                tool_turn(ToolCallRequest("call-1", "add_todo", '{"title": "abc"}')),
                text_turn("That title is too short."),
            ]
        )
        events = collect(ChatRelay(model, tools).run(context("Add abc")))

        (result,) = of_type(events, "tool_result")
        assert "error" in result["result"]
        assert result["result"]["detail"][0]["loc"] == ["title"]
        assert queries.count_todos() == 0
        assert json.loads(model.calls[1][-1]["content"])["error"] == result["result"]["error"]
        assert events[-1]["finishReason"] == "stop"

    def test_unknown_tool_is_reported_to_model(self, tools):
        model = ScriptedChatModel(
            [tool_turn(ToolCallRequest("call-1", "delete_everything", "{}")), text_turn("I cannot do that.")]
        )
        events = collect(ChatRelay(model, tools).run(context()))
        (result,) = of_type(events, "tool_result")
        assert result["result"] == {"error": "unknown tool delete_everything"}
        assert len(model.calls) == 2

    def test_client_tool_ends_turn(self, tools):
        call = ToolCallRequest("call-1", "save_to_local_storage", '{"key": "theme", "value": "dark"}')
        model = ScriptedChatModel([tool_turn(call)])
        events = collect(ChatRelay(model, tools).run(context("Remember dark mode")))

        assert of_type(events, "tool_result") == []
        (forwarded,) = of_type(events, "client_tool_call")
        assert forwarded["name"] == "save_to_local_storage"
        assert json.loads(forwarded["arguments"]) == {"key": "theme", "value": "dark"}
        assert events[-1] == {"type": "done", "finishReason": "client_tool", "iterations": 1}
        assert len(model.calls) == 1

    def test_iteration_cap(self, tools):
        model = ScriptedChatModel(
            [tool_turn(ToolCallRequest("call-1", "get_todos_count", "{}"))],
            repeat_last=True,
        )
        events = collect(ChatRelay(model, tools, max_iterations=3).run(context()))

        assert len(model.calls) == 3
        assert len(of_type(events, "tool_result")) == 3
        assert events[-1] == {"type": "done", "finishReason": "max_iterations", "iterations": 3}

    def test_max_iterations_must_be_positive(self, tools):
        with pytest.raises(ValueError):
            ChatRelay(ScriptedChatModel([]), tools, max_iterations=0)


class TestFailures:
    def test_provider_failure_becomes_generic_error(self, tools):
        model = ScriptedChatModel([[TextDelta("Hel"), UpstreamProviderError("rate limited")]])
        events = collect(ChatRelay(model, tools).run(context()))

        assert [e["type"] for e in events] == ["start", "text", "error"]
        assert events[-1] == {"type": "error", "error": "An error occurred"}
        assert model.closed == 1

    def test_unexpected_tool_failure_ends_turn(self):
        def explode(_: BaseModel) -> int:
            raise RuntimeError("disk on fire")

        broken = ToolDefinition(
            name="get_todos_count",
            description="Get the number of todos",
            input_model=NoArguments,
            output_type=int,
            handler=explode,
        )
        model = ScriptedChatModel([tool_turn(ToolCallRequest("call-1", "get_todos_count", "{}"))])
        events = collect(ChatRelay(model, [broken]).run(context()))

        assert events[-1] == {"type": "error", "error": "An error occurred"}
        assert "disk on fire" not in json.dumps(events)


class TestCancellation:
    def test_closed_before_model_call(self, tools):
        model = ScriptedChatModel([text_turn("never sent")])
        events = collect(ChatRelay(model, tools).run(context(), is_cancelled=cancel_after(0)))

        assert events == [{"type": "start", "conversationId": "conv-1"}, {"type": "closed", "status": 499}]
        assert model.calls == []

    def test_closed_mid_stream_closes_model(self, tools):
        model = ScriptedChatModel([[TextDelta("a"), TextDelta("b"), ModelFinish("stop")]])
        events = collect(ChatRelay(model, tools).run(context(), is_cancelled=cancel_after(2)))

        assert [e["type"] for e in events] == ["start", "text", "closed"]
        assert model.closed == 1

    def test_closed_before_tool_runs(self, services, tools):
        queries, _ = services
        model = ScriptedChatModel(
            [tool_turn(ToolCallRequest("call-1", "add_todo", '{"title": "Never added"}'))]
        )
        # one check before the call, one per streamed event (call + finish), then the tool check
        events = collect(ChatRelay(model, tools).run(context(), is_cancelled=cancel_after(3)))

        assert events[-1] == {"type": "closed", "status": 499}
        assert of_type(events, "tool_result") == []
        assert queries.count_todos() == 0


class TestChatContext:
    def test_with_message_returns_new_context(self):
        original = context()
        extended = original.with_message({"role": "assistant", "content": "Hi"})

        assert len(original.messages) == 1
        assert len(extended.messages) == 2
        assert extended.conversation_id == original.conversation_id
        with pytest.raises(dataclasses.FrozenInstanceError):
            original.iteration = 3


class TestServerSentEvents:
    def test_frames_and_done_marker(self):
        async def events():
            yield {"type": "start", "conversationId": "c"}
            yield {"type": "done", "finishReason": "stop", "iterations": 1}

        frames = collect(to_server_sent_events(events()))
        assert frames[0] == encode_event({"type": "start", "conversationId": "c"})
        assert frames[0].startswith("data: ") and frames[0].endswith("\n\n")
        assert frames[-1] == DONE_MARKER

    def test_no_done_marker_after_close(self):
        async def events():
            yield {"type": "start", "conversationId": "c"}
            yield {"type": "closed", "status": 499}

        frames = collect(to_server_sent_events(events()))
        assert DONE_MARKER not in frames
        assert len(frames) == 2
