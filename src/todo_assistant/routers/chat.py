from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..auth import require_identity
from ..chat import ChatContext, ChatRelay
from ..chat.sse import to_server_sent_events
from ..dependencies import get_chat_relay
from ..errors import ClientClosedError
from ..schemas import ChatRequest, SessionInfo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


# PUBLIC_INTERFACE
@router.post(
    "",
    summary="Chat",
    description=(
        "Run one assistant turn over the given message history. The response is a "
        "text/event-stream of JSON events (start, text, reasoning, tool_call, tool_result, "
        "client_tool_call, done, error, closed) terminated by `data: [DONE]`."
    ),
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Event stream"},
        401: {"description": "No valid session"},
        499: {"description": "Client closed the request"},
        503: {"description": "Chat model not configured"},
    },
)
async def chat(
    payload: ChatRequest,
    request: Request,
    identity: SessionInfo = Depends(require_identity),
    relay: Optional[ChatRelay] = Depends(get_chat_relay),
):
    if await request.is_disconnected():
        raise ClientClosedError("client disconnected before the chat turn started")
    if relay is None:
        return JSONResponse(status_code=503, content={"error": "Chat model is not configured"})

    conversation_id = payload.resolved_conversation_id() or str(uuid.uuid4())
    context = ChatContext(
        conversation_id=conversation_id,
        messages=tuple(m.model_dump(exclude_none=True) for m in payload.messages),
        identity=identity,
    )
    logger.info("Chat turn %s for user %s", conversation_id, identity.user.id)

    events = relay.run(context, is_cancelled=request.is_disconnected)
    return StreamingResponse(
        to_server_sent_events(events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Conversation-Id": conversation_id,
        },
    )
