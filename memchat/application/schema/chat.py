from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from memchat.domain.models.conversation import Conversation, ExchangeResult, Turn


class CreateConversationRequest(BaseModel):
    """Body of POST /conversations"""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    persona: Optional[str] = Field(default=None, alias="chatRole")


class SendMessageRequest(BaseModel):
    """Body of POST /conversations/{id}/messages"""
    message: Any = None
    stream: bool = False


class TurnView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    conversation_id: str = Field(alias="conversationId")
    origin: str
    body: str
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnView":
        return cls(
            id=turn.id,
            conversation_id=turn.conversation_id,
            origin=turn.origin.value,
            body=turn.body,
            created_at=turn.created_at
        )


class ConversationView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    persona: str
    turn_count: int = Field(alias="turnCount")
    archived_once: bool = Field(alias="archivedOnce")
    last_activity: datetime = Field(alias="lastActivity")
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationView":
        return cls(
            id=conversation.id,
            title=conversation.title,
            persona=conversation.persona.value,
            turn_count=conversation.turn_count,
            archived_once=conversation.archived_once,
            last_activity=conversation.last_activity,
            created_at=conversation.created_at
        )


class ExchangeView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requester_turn: TurnView = Field(alias="requesterTurn")
    generator_turn: TurnView = Field(alias="generatorTurn")

    @classmethod
    def from_result(cls, result: ExchangeResult) -> "ExchangeView":
        return cls(
            requester_turn=TurnView.from_turn(result.requester_turn),
            generator_turn=TurnView.from_turn(result.generator_turn)
        )


def envelope(data: Any = None, message: Optional[str] = None, count: Optional[int] = None) -> Dict[str, Any]:
    """Standard `{success: true, ...}` response body"""

    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if count is not None:
        body["count"] = count
    if data is not None:
        body["data"] = _dump(data)
    return body


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [_dump(item) for item in data]
    return data


def error_body(message: str, error_code: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if error_code:
        body["error_code"] = error_code
    return body
