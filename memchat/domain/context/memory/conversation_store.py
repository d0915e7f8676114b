from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import asyncio
import uuid

from memchat.domain.models.conversation import Conversation, Persona, utcnow


class ConversationStore(ABC):
    """Conversation records: mutable counters and flags"""

    @abstractmethod
    async def create(self, owner_id: str, title: str, persona: Persona) -> Conversation:
        """Create a new conversation"""
        pass

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """Get a conversation regardless of owner"""
        pass

    @abstractmethod
    async def find_owned(self, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        """Get a conversation only when it belongs to owner_id"""
        pass

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> List[Conversation]:
        """All conversations of an owner, most recent activity first"""
        pass

    @abstractmethod
    async def record_exchange(self, conversation_id: str) -> Optional[Conversation]:
        """Atomically add 2 to turn_count and refresh last_activity"""
        pass

    @abstractmethod
    async def mark_archived(self, conversation_id: str, archived_turn_count: int) -> Optional[Conversation]:
        """Set archived_once and advance the archived-turn watermark"""
        pass

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation record"""
        pass


class InMemoryConversationStore(ConversationStore):
    """Process-local conversation store"""

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self._lock = asyncio.Lock()

    async def create(self, owner_id: str, title: str, persona: Persona) -> Conversation:
        async with self._lock:
            conversation = Conversation(
                id=uuid.uuid4().hex,
                owner_id=owner_id,
                title=title,
                persona=persona
            )
            self.conversations[conversation.id] = conversation
            return conversation.model_copy()

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        async with self._lock:
            conversation = self.conversations.get(conversation_id)
            return conversation.model_copy() if conversation else None

    async def find_owned(self, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        conversation = await self.get(conversation_id)
        if conversation is None or conversation.owner_id != owner_id:
            return None
        return conversation

    async def list_for_owner(self, owner_id: str) -> List[Conversation]:
        async with self._lock:
            owned = [c.model_copy() for c in self.conversations.values() if c.owner_id == owner_id]

        owned.sort(key=lambda c: c.last_activity, reverse=True)
        return owned

    async def record_exchange(self, conversation_id: str) -> Optional[Conversation]:
        async with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return None

            conversation.turn_count += 2
            conversation.last_activity = utcnow()
            return conversation.model_copy()

    async def mark_archived(self, conversation_id: str, archived_turn_count: int) -> Optional[Conversation]:
        async with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return None

            conversation.archived_once = True
            # Watermark never moves backwards
            conversation.archived_turn_count = max(conversation.archived_turn_count, archived_turn_count)
            return conversation.model_copy()

    async def delete(self, conversation_id: str) -> bool:
        async with self._lock:
            return self.conversations.pop(conversation_id, None) is not None
