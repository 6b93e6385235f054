from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict

DONE_MARKER = "data: [DONE]\n\n"


def encode_event(event: Dict[str, Any]) -> str:
    """Serialize one relay event as a server-sent event frame."""
    return f"data: {json.dumps(event, default=str)}\n\n"


async def to_server_sent_events(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    """
    Frame relay events for a `text/event-stream` response. The completion
    marker is only written when the stream ended normally.
    """
    closed = False
    async for event in events:
        closed = closed or event.get("type") == "closed"
        yield encode_event(event)
    if not closed:
        yield DONE_MARKER
