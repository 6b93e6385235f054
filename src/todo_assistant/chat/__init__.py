"""
Chat tool relay: exposes the todo services to a chat model as tools and
streams the agent loop back to the caller.
"""

from .model import ChatModel, ModelFinish, OpenAIChatModel, ReasoningDelta, TextDelta, ToolCallRequest
from .relay import ChatContext, ChatRelay
from .tools import ToolDefinition, build_todo_tools

__all__ = [
    "ChatContext",
    "ChatModel",
    "ChatRelay",
    "ModelFinish",
    "OpenAIChatModel",
    "ReasoningDelta",
    "TextDelta",
    "ToolCallRequest",
    "ToolDefinition",
    "build_todo_tools",
]
