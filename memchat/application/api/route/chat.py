from typing import AsyncIterator
import structlog

from fastapi import APIRouter, Request, status
from fastapi.responses import StreamingResponse

from memchat.application.api.dependencies import Container, OwnerId
from memchat.application.schema.chat import (
    ConversationView, CreateConversationRequest, ExchangeView,
    SendMessageRequest, TurnView, envelope
)
from memchat.domain.streaming.event_channel import EventChannel

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/conversations", status_code=status.HTTP_201_CREATED)
async def create_conversation(body: CreateConversationRequest, container: Container, owner_id: OwnerId):
    conversation = await container.conversations.create_conversation(owner_id, body.title, body.persona)
    return envelope(ConversationView.from_conversation(conversation), message="Conversation created")


@router.get("/conversations")
async def list_conversations(container: Container, owner_id: OwnerId):
    conversations = await container.conversations.list_conversations(owner_id)
    views = [ConversationView.from_conversation(c) for c in conversations]
    return envelope(views, count=len(views))


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, container: Container, owner_id: OwnerId):
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)
    conversation = await container.conversations.get_conversation(conversation_id, owner_id)
    return envelope(ConversationView.from_conversation(conversation))


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, container: Container, owner_id: OwnerId):
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)
    await container.conversations.delete_conversation(conversation_id, owner_id)
    return envelope(message="Conversation deleted")


@router.get("/conversations/{conversation_id}/messages")
async def get_messages(conversation_id: str, container: Container, owner_id: OwnerId):
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)
    turns = await container.conversations.get_messages(conversation_id, owner_id)
    views = [TurnView.from_turn(turn) for turn in turns]
    return envelope(views, count=len(views))


@router.post("/conversations/{conversation_id}/messages")
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    request: Request,
    container: Container,
    owner_id: OwnerId
):
    """Buffered JSON exchange, or server-sent events when `stream` is true"""

    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)

    result = await container.controller.run_exchange(
        conversation_id,
        owner_id,
        body.message,
        stream=body.stream
    )

    if isinstance(result, EventChannel):
        return StreamingResponse(
            sse_stream(request, result),
            media_type="text/event-stream",
            headers=SSE_HEADERS
        )

    return envelope(ExchangeView.from_result(result))


async def sse_stream(request: Request, channel: EventChannel) -> AsyncIterator[str]:
    """Relay channel events as SSE frames until a terminal event or disconnect"""

    finished = False
    try:
        async for event in channel:
            if await request.is_disconnected():
                logger.info("Client disconnected during stream")
                break
            yield event.to_sse()
            if event.terminal:
                finished = True
                break
    finally:
        if not finished:
            await channel.cancel()
