from typing import Any, Dict, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
import json


class EventType(str, Enum):
    """Incremental exchange event types"""
    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


class BaseEvent(BaseModel):
    """Base event model for all stream messages"""
    model_config = ConfigDict(populate_by_name=True)

    type: EventType

    @property
    def terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_sse(self) -> str:
        """Server-sent events frame"""
        return f"data: {json.dumps(self.to_wire())}\n\n"


class ChunkEvent(BaseEvent):
    """A fragment of generated text"""
    type: Literal[EventType.CHUNK] = EventType.CHUNK
    content: str


class DoneEvent(BaseEvent):
    """Generation finished and the generator turn was persisted"""
    type: Literal[EventType.DONE] = EventType.DONE
    id: str
    full_content: str = Field(alias="fullContent")


class ErrorEvent(BaseEvent):
    """Generation failed; no generator turn was persisted"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    message: str


StreamEvent = Union[ChunkEvent, DoneEvent, ErrorEvent]
