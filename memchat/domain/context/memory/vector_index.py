from typing import Dict, List, Any, Sequence
import asyncio

import numpy as np
import structlog

from memchat.domain.models.conversation import ArchiveRecord, VectorMatch
from memchat.domain.providers.base import VectorIndex

logger = structlog.get_logger(__name__)


class InMemoryVectorIndex(VectorIndex):
    """Process-local vector index with per-namespace cosine similarity search"""

    def __init__(self, dimension: int):
        self._dimension = dimension
        self.namespaces: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> int:
        return self._dimension

    def _check(self, vector: Sequence[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.shape != (self._dimension,):
            raise ValueError(
                f"Vector has shape {array.shape}, index expects ({self._dimension},)"
            )
        return array

    async def upsert(self, namespace: str, records: Sequence[ArchiveRecord]) -> int:
        """Insert or replace records by id within a namespace"""

        entries = [
            {"id": record.id, "vector": self._check(record.vector), "metadata": record.to_metadata()}
            for record in records
        ]

        async with self._lock:
            bucket = self.namespaces.setdefault(namespace, [])
            positions = {entry["id"]: idx for idx, entry in enumerate(bucket)}

            for entry in entries:
                if entry["id"] in positions:
                    bucket[positions[entry["id"]]] = entry
                else:
                    positions[entry["id"]] = len(bucket)
                    bucket.append(entry)

        logger.debug("Upserted vectors", namespace=namespace, count=len(entries))
        return len(entries)

    async def query(self, namespace: str, vector: Sequence[float], top_k: int) -> List[VectorMatch]:
        """Return the top_k most similar records of a namespace"""

        query_vector = self._check(vector)

        async with self._lock:
            bucket = list(self.namespaces.get(namespace, []))

        if not bucket or top_k <= 0:
            return []

        matrix = np.stack([entry["vector"] for entry in bucket])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vector)
        norms[norms == 0] = 1.0
        similarities = matrix @ query_vector / norms

        # Negative cosine is clipped so scores stay within [0, 1]
        scores = np.clip(similarities, 0.0, 1.0)
        order = np.argsort(-scores, kind="stable")[:top_k]

        return [
            VectorMatch(
                id=bucket[idx]["id"],
                score=float(scores[idx]),
                metadata=dict(bucket[idx]["metadata"])
            )
            for idx in order
        ]

    async def delete_by_conversation(self, namespace: str, conversation_id: str) -> int:
        async with self._lock:
            bucket = self.namespaces.get(namespace, [])
            kept = [e for e in bucket if e["metadata"].get("conversation_id") != conversation_id]
            self.namespaces[namespace] = kept
            return len(bucket) - len(kept)

    async def count(self, namespace: str) -> int:
        """Number of records stored in a namespace"""

        async with self._lock:
            return len(self.namespaces.get(namespace, []))
