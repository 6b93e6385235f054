from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

import openai
from openai import AsyncOpenAI

from ..errors import UpstreamProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ModelFinish:
    reason: str
    usage: Dict[str, Any] = field(default_factory=dict)


ModelEvent = Union[TextDelta, ReasoningDelta, ToolCallRequest, ModelFinish]


# PUBLIC_INTERFACE
class ChatModel(Protocol):
    """
    A chat-completion provider. `stream` yields text and reasoning deltas as
    they arrive, then every complete tool call, then one ModelFinish.
    Closing the iterator early aborts the provider request.
    """

    def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        ...


class OpenAIChatModel:
    """
    ChatModel backed by the OpenAI chat completions API (or any endpoint
    speaking it, selected with `base_url`).
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        kwargs: Dict[str, Any] = {"model": self._model, "messages": messages, "stream": True}
        if tools:
            kwargs["tools"] = tools

        # Tool call fragments arrive spread over chunks, keyed by index
        calls: Dict[int, Dict[str, str]] = {}
        finish_reason = "stop"
        usage: Dict[str, Any] = {}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise UpstreamProviderError(f"chat completion request failed: {e}") from e

        try:
            async for chunk in response:
                if getattr(chunk, "usage", None) is not None:
                    usage = chunk.usage.model_dump()
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta

                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    yield ReasoningDelta(reasoning)
                if delta.content:
                    yield TextDelta(delta.content)

                for tc in delta.tool_calls or []:
                    state = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        state["id"] = tc.id
                    if tc.function is not None:
                        if tc.function.name:
                            state["name"] += tc.function.name
                        if tc.function.arguments:
                            state["arguments"] += tc.function.arguments

                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.OpenAIError as e:
            raise UpstreamProviderError(f"chat completion stream failed: {e}") from e
        finally:
            await response.close()

        for index in sorted(calls):
            state = calls[index]
            yield ToolCallRequest(
                id=state["id"] or f"call_{index}",
                name=state["name"],
                arguments=state["arguments"] or "{}",
            )
        logger.debug("Model finished: %s (%d tool calls)", finish_reason, len(calls))
        yield ModelFinish(reason=finish_reason, usage=usage)
