from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Sequence

from langchain_core.messages import BaseMessage

from memchat.domain.models.conversation import ArchiveRecord, VectorMatch


class Generator(ABC):
    """Turns a system instruction plus ordered turns into response text"""

    @abstractmethod
    async def generate(self, system_instruction: str, turns: Sequence[BaseMessage]) -> str:
        """Return the complete response text"""
        pass

    @abstractmethod
    def generate_incremental(
        self,
        system_instruction: str,
        turns: Sequence[BaseMessage]
    ) -> AsyncIterator[str]:
        """Yield response text fragments as they are produced"""
        pass


class Embedder(ABC):
    """Turns text into fixed-length vectors"""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Configured output dimensionality"""
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text"""
        pass

    @abstractmethod
    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed several texts in one call, preserving order"""
        pass


class VectorIndex(ABC):
    """Stores (vector, metadata) pairs partitioned by namespace"""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Configured vector dimensionality"""
        pass

    @abstractmethod
    async def upsert(self, namespace: str, records: Sequence[ArchiveRecord]) -> int:
        """Write records into a namespace and return how many were written"""
        pass

    @abstractmethod
    async def query(self, namespace: str, vector: Sequence[float], top_k: int) -> List[VectorMatch]:
        """Return up to top_k matches from a namespace, best first"""
        pass

    @abstractmethod
    async def delete_by_conversation(self, namespace: str, conversation_id: str) -> int:
        """Remove every record of a conversation from a namespace"""
        pass
