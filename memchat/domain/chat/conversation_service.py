from typing import List, Optional
import structlog

from memchat.domain.context.memory.conversation_store import ConversationStore
from memchat.domain.context.memory.turn_store import TurnStore
from memchat.domain.errors import ConversationNotFoundError, MessageValidationError
from memchat.domain.models.conversation import Conversation, Persona, Turn
from memchat.domain.providers.base import VectorIndex
from memchat.infrastructure.config.settings import ChatConfig, MemoryConfig

logger = structlog.get_logger(__name__)


def parse_persona(value: Optional[str]) -> Persona:
    """Resolve a persona name, defaulting to the general assistant"""

    if value is None or value == "":
        return Persona.GENERAL_ASSISTANT
    if isinstance(value, Persona):
        return value
    try:
        return Persona(value)
    except ValueError:
        allowed = ", ".join(p.value for p in Persona)
        raise MessageValidationError(f"Unknown persona '{value}'. Expected one of: {allowed}")


class ConversationService:
    """Owner-scoped conversation management"""

    MAX_TITLE_CHARS = 200

    def __init__(
        self,
        conversation_store: ConversationStore,
        turn_store: TurnStore,
        vector_index: VectorIndex,
        memory_config: MemoryConfig,
        chat_config: ChatConfig
    ):
        self.conversation_store = conversation_store
        self.turn_store = turn_store
        self.vector_index = vector_index
        self.memory_config = memory_config
        self.chat_config = chat_config

    async def create_conversation(
        self,
        owner_id: str,
        title: Optional[str] = None,
        persona: Optional[str] = None
    ) -> Conversation:
        if not owner_id or not owner_id.strip():
            raise MessageValidationError("Invalid requester identifier")

        title = (title or "").strip() or self.chat_config.default_title
        if len(title) > self.MAX_TITLE_CHARS:
            raise MessageValidationError(f"Title exceeds {self.MAX_TITLE_CHARS} characters")

        conversation = await self.conversation_store.create(owner_id, title, parse_persona(persona))

        logger.info("Conversation created",
                   conversation_id=conversation.id,
                   persona=conversation.persona.value)
        return conversation

    async def list_conversations(self, owner_id: str) -> List[Conversation]:
        """Owner's conversations, most recent activity first"""
        return await self.conversation_store.list_for_owner(owner_id)

    async def get_conversation(self, conversation_id: str, owner_id: str) -> Conversation:
        conversation = await self.conversation_store.find_owned(conversation_id, owner_id)
        if conversation is None:
            raise ConversationNotFoundError()
        return conversation

    async def get_messages(self, conversation_id: str, owner_id: str) -> List[Turn]:
        """All turns of an owned conversation, chronologically"""

        await self.get_conversation(conversation_id, owner_id)
        return await self.turn_store.list_turns(conversation_id)

    async def delete_conversation(self, conversation_id: str, owner_id: str) -> bool:
        """Delete turns, then the conversation record.

        Long-term memory records are left in place unless
        `purge_archive_on_delete` is enabled.
        """

        await self.get_conversation(conversation_id, owner_id)

        removed_turns = await self.turn_store.delete_turns(conversation_id)
        deleted = await self.conversation_store.delete(conversation_id)

        purged = 0
        if self.memory_config.purge_archive_on_delete:
            namespace = self.memory_config.namespace_for(owner_id)
            try:
                purged = await self.vector_index.delete_by_conversation(namespace, conversation_id)
            except Exception as e:
                logger.warning("Archive purge failed",
                              conversation_id=conversation_id,
                              error=str(e))

        logger.info("Conversation deleted",
                   conversation_id=conversation_id,
                   turns=removed_turns,
                   purged_records=purged)
        return deleted
