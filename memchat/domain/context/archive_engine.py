from typing import List, Sequence, Set
import uuid
import structlog

from memchat.domain.errors import ConfigurationError
from memchat.domain.models.conversation import ArchiveRecord, Turn, TurnOrigin, utcnow
from memchat.domain.providers.base import Embedder, VectorIndex
from memchat.infrastructure.config.settings import MemoryConfig
from memchat.infrastructure.observability.logging import memory_logger, metrics
from .memory.conversation_store import ConversationStore
from .memory.turn_store import TurnStore

logger = structlog.get_logger(__name__)


ORIGIN_LABELS = {
    TurnOrigin.REQUESTER: "Requester",
    TurnOrigin.GENERATOR: "Generator",
}


def format_chunk(turns: Sequence[Turn]) -> str:
    """Flatten consecutive turns into "Requester: ..." / "Generator: ..." lines"""

    return "\n".join(f"{ORIGIN_LABELS[turn.origin]}: {turn.body}" for turn in turns)


def chunk_turns(turns: Sequence[Turn], size: int) -> List[List[Turn]]:
    """Split turns into consecutive groups of `size`; the last may be shorter"""

    return [list(turns[i:i + size]) for i in range(0, len(turns), size)]


class ArchiveEngine:
    """Rolls turns that aged out of the short-term window into long-term memory.

    Eligibility is recomputed on every run: everything older than the most
    recent `short_term_limit` turns that is not already below the
    conversation's archived-turn watermark. Archival is best-effort; failures
    are logged and swallowed so the next qualifying exchange retries, except
    configuration errors, which are raised.
    """

    def __init__(
        self,
        turn_store: TurnStore,
        conversation_store: ConversationStore,
        embedder: Embedder,
        vector_index: VectorIndex,
        config: MemoryConfig
    ):
        self.turn_store = turn_store
        self.conversation_store = conversation_store
        self.embedder = embedder
        self.vector_index = vector_index
        self.config = config
        self._in_flight: Set[str] = set()

    async def archive(self, conversation_id: str, owner_id: str) -> int:
        """Archive eligible turns and return the number of records written"""

        if conversation_id in self._in_flight:
            logger.info("Archive already running, skipping", conversation_id=conversation_id)
            return 0

        self._in_flight.add(conversation_id)
        try:
            return await self._archive(conversation_id, owner_id)
        except ConfigurationError:
            metrics.increment_counter("archive.failures")
            raise
        except Exception as e:
            logger.error("Archive failed",
                        conversation_id=conversation_id,
                        error=str(e),
                        exc_info=True)
            metrics.increment_counter("archive.failures")
            return 0
        finally:
            self._in_flight.discard(conversation_id)

    async def _archive(self, conversation_id: str, owner_id: str) -> int:
        turns = await self.turn_store.list_turns(conversation_id)

        # Nothing has aged out of the short-term window yet
        if len(turns) <= self.config.short_term_limit:
            return 0

        conversation = await self.conversation_store.get(conversation_id)
        if conversation is None or conversation.owner_id != owner_id:
            logger.info("Conversation gone before archival", conversation_id=conversation_id)
            return 0

        cutoff = len(turns) - self.config.short_term_limit
        start = min(conversation.archived_turn_count, cutoff)
        eligible = turns[start:cutoff]
        if not eligible:
            return 0

        chunks = [format_chunk(group) for group in chunk_turns(eligible, self.config.archive_chunk_size)]

        logger.info("Archiving chunks",
                   conversation_id=conversation_id,
                   chunks=len(chunks),
                   turns=len(eligible))

        vectors = await self.embedder.embed_batch(chunks)
        if len(vectors) != len(chunks):
            raise ValueError(f"Expected {len(chunks)} embeddings, got {len(vectors)}")

        archived_at = utcnow()
        records = [
            ArchiveRecord(
                id=f"memory_{conversation_id}_{uuid.uuid4().hex}",
                text=text,
                conversation_id=conversation_id,
                owner_id=owner_id,
                archived_at=archived_at,
                vector=vector,
                kind=self.config.record_kind
            )
            for text, vector in zip(chunks, vectors)
        ]

        namespace = self.config.namespace_for(owner_id)
        await self.vector_index.upsert(namespace, records)

        await self.conversation_store.mark_archived(conversation_id, archived_turn_count=cutoff)

        memory_logger.log_archive(
            conversation_id=conversation_id,
            chunks=len(records),
            archived_turns=len(eligible),
            namespace=namespace
        )
        metrics.increment_counter("archive.chunks", len(records))

        return len(records)
