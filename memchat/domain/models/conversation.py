from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Persona(str, Enum):
    """Named presets controlling the generator's system instruction"""
    GENERAL_ASSISTANT = "general-assistant"
    PROGRAMMING_EXPERT = "programming-expert"
    PATIENT_EDUCATOR = "patient-educator"
    CREATIVE_COLLABORATOR = "creative-collaborator"


class TurnOrigin(str, Enum):
    """Who produced a turn"""
    REQUESTER = "requester"
    GENERATOR = "generator"


class Conversation(BaseModel):
    """A conversation owned by a single user"""
    id: str = Field(description="Unique conversation identifier")
    owner_id: str = Field(description="Owning user identity")
    title: str = Field(default="New Conversation")
    persona: Persona = Field(default=Persona.GENERAL_ASSISTANT)
    turn_count: int = Field(default=0, ge=0, description="Number of persisted turns")
    last_activity: datetime = Field(default_factory=utcnow)
    archived_once: bool = Field(default=False, description="Long-term memory has been written at least once")
    archived_turn_count: int = Field(
        default=0,
        ge=0,
        description="Oldest turns already rolled into long-term memory"
    )
    created_at: datetime = Field(default_factory=utcnow)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the conversation"""
        return {
            "id": self.id,
            "title": self.title,
            "persona": self.persona.value,
            "turn_count": self.turn_count,
            "archived_once": self.archived_once,
            "last_activity": self.last_activity.isoformat()
        }


class Turn(BaseModel):
    """One immutable message in a conversation"""
    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    origin: TurnOrigin
    body: str
    created_at: datetime = Field(default_factory=utcnow)
    sequence: int = Field(default=0, description="Store-assigned insertion order")

    @property
    def sort_key(self):
        return (self.created_at, self.sequence)


class ArchiveRecord(BaseModel):
    """Write-once unit of long-term memory"""
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    conversation_id: str
    owner_id: str
    archived_at: datetime = Field(default_factory=utcnow)
    vector: List[float]
    kind: str = "conversation_memory"

    def to_metadata(self) -> Dict[str, Any]:
        """Metadata stored next to the vector in the index"""
        return {
            "text": self.text,
            "conversation_id": self.conversation_id,
            "owner_id": self.owner_id,
            "timestamp": self.archived_at.isoformat(),
            "kind": self.kind
        }


class VectorMatch(BaseModel):
    """A single nearest-neighbour hit returned by a vector index"""
    id: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetrievedFragment(BaseModel):
    """Transient long-term memory fragment produced per retrieval"""
    text: str
    score: float = Field(ge=0.0, le=1.0)
    conversation_id: Optional[str] = None
    timestamp: Optional[str] = None


class ExchangeResult(BaseModel):
    """Both turns of a completed buffered exchange"""
    requester_turn: Turn
    generator_turn: Turn
