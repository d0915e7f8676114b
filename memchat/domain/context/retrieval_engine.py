from typing import List
import time
import structlog

from memchat.domain.errors import ConfigurationError
from memchat.domain.models.conversation import RetrievedFragment, VectorMatch
from memchat.domain.providers.base import Embedder, VectorIndex
from memchat.infrastructure.config.settings import MemoryConfig
from memchat.infrastructure.observability.logging import memory_logger, metrics

logger = structlog.get_logger(__name__)


class RetrievalEngine:
    """Finds long-term memory fragments relevant to an inbound message.

    Retrieval never fails the enclosing exchange: any embedder or index error
    degrades to an empty result. A configuration error, such as an embedder
    whose vectors do not fit the index, is raised instead.
    """

    def __init__(self, embedder: Embedder, vector_index: VectorIndex, config: MemoryConfig):
        self.embedder = embedder
        self.vector_index = vector_index
        self.config = config

    async def search(self, query: str, owner_id: str) -> List[RetrievedFragment]:
        """Return ranked fragments from the owner's namespace"""

        if not query or not query.strip():
            return []

        namespace = self.config.namespace_for(owner_id)
        started = time.perf_counter()

        try:
            vector = await self.embedder.embed(query)
            matches = await self.vector_index.query(
                namespace,
                vector,
                top_k=self.config.retrieval_top_k
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning("Long-term memory search failed",
                          namespace=namespace,
                          error=str(e),
                          exc_info=True)
            metrics.increment_counter("retrieval.failures")
            return []

        fragments = self.rank(matches, owner_id)

        metrics.record_latency("retrieval", (time.perf_counter() - started) * 1000)
        if fragments:
            memory_logger.log_retrieval(
                namespace=namespace,
                candidates=len(matches),
                kept=len(fragments),
                scores=[round(f.score, 3) for f in fragments]
            )

        return fragments

    def rank(self, matches: List[VectorMatch], owner_id: str) -> List[RetrievedFragment]:
        """Filter matches by threshold and ownership, best first"""

        kept = []
        for match in matches:
            metadata = match.metadata or {}

            # Below the threshold is noise, not weak signal
            if match.score < self.config.relevance_threshold:
                continue

            if metadata.get("owner_id") != owner_id:
                logger.warning("Dropping match from foreign owner", match_id=match.id)
                continue

            if metadata.get("kind", self.config.record_kind) != self.config.record_kind:
                continue

            text = metadata.get("text")
            if not text:
                continue

            kept.append(RetrievedFragment(
                text=text,
                score=min(max(match.score, 0.0), 1.0),
                conversation_id=metadata.get("conversation_id"),
                timestamp=metadata.get("timestamp")
            ))

        # sorted() is stable, so equal scores keep the index order
        kept = sorted(kept, key=lambda f: f.score, reverse=True)
        return kept[:self.config.retrieval_top_k]
