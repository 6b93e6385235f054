from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from starlette.concurrency import run_in_threadpool

from ..errors import TodoNotFoundError, UpstreamProviderError, ValidationError
from ..schemas import SessionInfo
from .model import ChatModel, ModelFinish, ReasoningDelta, TextDelta, ToolCallRequest
from .tools import ToolDefinition

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are a helpful assistant that can help the user manage their todos.

Tools:
1- get_todos_count: Get the number of todos
2- show_todos: List the user todos
3- add_todo: Add a new todo (title of at least 5 characters)

Example workflow:
User: "How many todos do I have?"
Step 1: Call get_todos_count()
Step 2: Answer with the number you got back
""".strip()

CancelCheck = Callable[[], Awaitable[bool]]


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ChatContext:
    """
    Immutable state of one chat turn. Each stage of the loop produces a new
    context instead of mutating the previous one.
    """

    conversation_id: str
    messages: Tuple[Dict[str, Any], ...]
    identity: Optional[SessionInfo] = None
    iteration: int = 0

    def with_message(self, message: Dict[str, Any]) -> "ChatContext":
        return replace(self, messages=self.messages + (message,))


@dataclass
class _ModelTurn:
    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    finish_reason: Optional[str] = None

    def as_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": c.arguments}}
                for c in self.tool_calls
            ]
        return message


async def _never_cancelled() -> bool:
    return False


def _closed_event() -> Dict[str, Any]:
    return {"type": "closed", "status": 499}


# PUBLIC_INTERFACE
class ChatRelay:
    """
    Runs the bounded agent loop between a chat model and the declared tools,
    yielding events for the caller as they become available.

    Event types: start, text, reasoning, tool_call, tool_result,
    client_tool_call, done, error, closed.
    """

    def __init__(
        self,
        model: ChatModel,
        tools: Sequence[ToolDefinition],
        max_iterations: int = 5,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._model = model
        self._tools = {t.name: t for t in tools}
        self._tool_specs = [t.to_openai() for t in tools]
        self._max_iterations = max_iterations
        self._system_prompt = system_prompt

    def _provider_messages(self, context: ChatContext) -> List[Dict[str, Any]]:
        return [{"role": "system", "content": self._system_prompt}, *context.messages]

    async def _execute(self, tool: ToolDefinition, call: ToolCallRequest) -> Any:
        """
        Run a server tool off the event loop. Expected outcomes go back to
        the model as an error payload; anything else ends the turn.
        """
        try:
            return await run_in_threadpool(tool.invoke, call.arguments)
        except ValidationError as e:
            return {"error": str(e), "detail": e.errors}
        except TodoNotFoundError as e:
            return {"error": str(e)}
        except Exception as e:
            raise UpstreamProviderError(f"tool {tool.name} failed: {e}") from e

    async def run(
        self,
        context: ChatContext,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        cancelled = is_cancelled or _never_cancelled
        cid = context.conversation_id
        yield {"type": "start", "conversationId": cid}

        try:
            for iteration in range(1, self._max_iterations + 1):
                context = replace(context, iteration=iteration)
                if await cancelled():
                    logger.info("Client closed conversation %s", cid)
                    yield _closed_event()
                    return

                turn = _ModelTurn()
                events = self._model.stream(self._provider_messages(context), self._tool_specs)
                async with aclosing(events):
                    async for event in events:
                        if await cancelled():
                            logger.info("Client closed conversation %s during model call", cid)
                            yield _closed_event()
                            return
                        if isinstance(event, TextDelta):
                            turn.text += event.text
                            yield {"type": "text", "delta": event.text}
                        elif isinstance(event, ReasoningDelta):
                            yield {"type": "reasoning", "delta": event.text}
                        elif isinstance(event, ToolCallRequest):
                            turn.tool_calls.append(event)
                            yield {"type": "tool_call", "id": event.id, "name": event.name, "arguments": event.arguments}
                        elif isinstance(event, ModelFinish):
                            turn.finish_reason = event.reason

                context = context.with_message(turn.as_message())
                if not turn.tool_calls:
                    yield {"type": "done", "finishReason": "stop", "iterations": iteration}
                    return

                client_calls: List[ToolCallRequest] = []
                for call in turn.tool_calls:
                    tool = self._tools.get(call.name)
                    if tool is not None and tool.location == "client":
                        client_calls.append(call)
                        continue

                    if await cancelled():
                        logger.info("Client closed conversation %s before tool %s", cid, call.name)
                        yield _closed_event()
                        return

                    if tool is None:
                        result: Any = {"error": f"unknown tool {call.name}"}
                    else:
                        result = await self._execute(tool, call)
                    yield {"type": "tool_result", "id": call.id, "name": call.name, "result": result}
                    context = context.with_message(
                        {"role": "tool", "tool_call_id": call.id, "content": json.dumps(result)}
                    )

                if client_calls:
                    for call in client_calls:
                        yield {
                            "type": "client_tool_call",
                            "id": call.id,
                            "name": call.name,
                            "arguments": call.arguments,
                        }
                    yield {"type": "done", "finishReason": "client_tool", "iterations": iteration}
                    return

            logger.warning("Conversation %s hit the %d iteration cap", cid, self._max_iterations)
            yield {"type": "done", "finishReason": "max_iterations", "iterations": self._max_iterations}
        except asyncio.CancelledError:
            logger.info("Client closed conversation %s", cid)
            raise
        except UpstreamProviderError as e:
            logger.error("Chat turn %s failed: %s", cid, e, exc_info=True)
            yield {"type": "error", "error": UpstreamProviderError.public_message}
        except Exception:
            logger.exception("Unexpected failure in chat turn %s", cid)
            yield {"type": "error", "error": UpstreamProviderError.public_message}
