from abc import ABC, abstractmethod
from typing import Dict, List
import asyncio
import uuid
from collections import defaultdict

from memchat.domain.models.conversation import Turn, TurnOrigin, utcnow


class TurnStore(ABC):
    """Append-only log of conversation turns (short-term memory)"""

    @abstractmethod
    async def append_turn(self, conversation_id: str, origin: TurnOrigin, body: str) -> Turn:
        """Persist a new turn and return it"""
        pass

    @abstractmethod
    async def list_turns(self, conversation_id: str) -> List[Turn]:
        """All turns of a conversation, oldest first"""
        pass

    @abstractmethod
    async def recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        """The newest `limit` turns of a conversation, oldest first"""
        pass

    @abstractmethod
    async def count_turns(self, conversation_id: str) -> int:
        """Number of persisted turns for a conversation"""
        pass

    @abstractmethod
    async def delete_turns(self, conversation_id: str) -> int:
        """Remove every turn of a conversation and return how many were removed"""
        pass


class InMemoryTurnStore(TurnStore):
    """Process-local turn store"""

    def __init__(self):
        self.turns: Dict[str, List[Turn]] = defaultdict(list)
        self._sequence = 0
        self._lock = asyncio.Lock()

    async def append_turn(self, conversation_id: str, origin: TurnOrigin, body: str) -> Turn:
        async with self._lock:
            self._sequence += 1
            turn = Turn(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                origin=origin,
                body=body,
                created_at=utcnow(),
                sequence=self._sequence
            )
            self.turns[conversation_id].append(turn)
            return turn

    async def list_turns(self, conversation_id: str) -> List[Turn]:
        async with self._lock:
            # Stable sort keeps insertion order for equal timestamps
            return sorted(self.turns.get(conversation_id, []), key=lambda t: t.sort_key)

    async def recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []

        turns = await self.list_turns(conversation_id)
        return turns[-limit:]

    async def count_turns(self, conversation_id: str) -> int:
        async with self._lock:
            return len(self.turns.get(conversation_id, []))

    async def delete_turns(self, conversation_id: str) -> int:
        async with self._lock:
            removed = self.turns.pop(conversation_id, [])
            return len(removed)
