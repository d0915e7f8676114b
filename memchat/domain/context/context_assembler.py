from typing import List, Optional
import structlog

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, ConfigDict, Field

from memchat.domain.models.conversation import Persona, RetrievedFragment, Turn, TurnOrigin
from memchat.infrastructure.config.settings import MemoryConfig
from .memory.turn_store import TurnStore
from .personas import MEMORY_PREAMBLE, MEMORY_SEPARATOR, instruction_for
from .retrieval_engine import RetrievalEngine

logger = structlog.get_logger(__name__)


class AssembledContext(BaseModel):
    """System instruction plus the short-term window handed to the generator"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    system_instruction: str
    history: List[BaseMessage] = Field(default_factory=list)
    fragments: List[RetrievedFragment] = Field(default_factory=list)

    def to_messages(self, inbound_text: str) -> List[BaseMessage]:
        """Window followed by the inbound message as the final entry"""
        return [*self.history, HumanMessage(content=inbound_text)]


def turn_to_message(turn: Turn) -> BaseMessage:
    if turn.origin == TurnOrigin.REQUESTER:
        return HumanMessage(content=turn.body)
    return AIMessage(content=turn.body)


class ContextAssembler:
    """Assembles generator context from short-term and long-term memory"""

    def __init__(self, turn_store: TurnStore, retrieval_engine: RetrievalEngine, config: MemoryConfig):
        self.turn_store = turn_store
        self.retrieval_engine = retrieval_engine
        self.config = config

    async def assemble(
        self,
        conversation_id: str,
        owner_id: str,
        inbound_text: str,
        persona: Persona,
        exclude_turn_id: Optional[str] = None
    ) -> AssembledContext:
        """Build the system instruction and short-term window for one exchange.

        The inbound text is used only as the retrieval query; appending it to
        the window is the caller's job. `exclude_turn_id` drops the
        just-persisted inbound turn from the window so it is not sent twice.
        """

        window = await self.load_window(conversation_id, exclude_turn_id)
        fragments = await self.retrieval_engine.search(inbound_text, owner_id)

        system_instruction = self.build_instruction(persona, fragments)

        logger.info("Assembled context",
                   conversation_id=conversation_id,
                   window=len(window),
                   fragments=len(fragments))

        return AssembledContext(
            system_instruction=system_instruction,
            history=[turn_to_message(turn) for turn in window],
            fragments=fragments
        )

    async def load_window(self, conversation_id: str, exclude_turn_id: Optional[str] = None) -> List[Turn]:
        """Most recent turns, oldest first, capped at the short-term limit"""

        limit = self.config.short_term_limit
        if exclude_turn_id is None:
            return await self.turn_store.recent_turns(conversation_id, limit)

        turns = await self.turn_store.recent_turns(conversation_id, limit + 1)
        turns = [turn for turn in turns if turn.id != exclude_turn_id]
        return turns[-limit:]

    def build_instruction(self, persona: Persona, fragments: List[RetrievedFragment]) -> str:
        """Persona instruction, with long-term memory appended as one block"""

        instruction = instruction_for(persona)
        if not fragments:
            return instruction

        memory_context = MEMORY_SEPARATOR.join(fragment.text for fragment in fragments)
        return f"{instruction}\n\n{MEMORY_PREAMBLE}\n\n{memory_context}"
