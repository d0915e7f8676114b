from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional, Sequence

from langchain_core.messages import BaseMessage

from memchat.domain.models.conversation import Conversation, TurnOrigin
from memchat.domain.providers.base import Embedder, Generator
from memchat.domain.context.memory.vector_index import InMemoryVectorIndex
from memchat.infrastructure.config.settings import Settings
from memchat.infrastructure.container import ServiceContainer, build_container


VOCABULARY = ["closure", "python", "garden", "tomato", "invoice", "tax", "music", "guitar"]


class ScriptedGenerator(Generator):
    """Generator that replays canned replies and records every call"""

    def __init__(
        self,
        replies: Optional[List[str]] = None,
        chunks: Optional[List[str]] = None,
        fail: bool = False,
        fail_after: Optional[int] = None,
        block_after: Optional[int] = None
    ) -> None:
        self.replies = list(replies or [])
        self.chunks = chunks
        self.fail = fail
        self.fail_after = fail_after
        self.block_after = block_after
        self.calls: List[dict] = []
        self.released = asyncio.Event()
        self.counter = 0

    def _record(self, system_instruction: str, turns: Sequence[BaseMessage]) -> None:
        self.calls.append({"system": system_instruction, "messages": list(turns)})

    def _next_reply(self) -> str:
        self.counter += 1
        if self.replies:
            return self.replies.pop(0)
        return f"reply {self.counter}"

    async def generate(self, system_instruction: str, turns: Sequence[BaseMessage]) -> str:
        self._record(system_instruction, turns)
        if self.fail:
            raise RuntimeError("model unavailable")
        return self._next_reply()

    async def generate_incremental(
        self, system_instruction: str, turns: Sequence[BaseMessage]
    ) -> AsyncIterator[str]:
        self._record(system_instruction, turns)
        if self.fail:
            raise RuntimeError("model unavailable")

        chunks = self.chunks if self.chunks is not None else [self._next_reply()]
        for idx, chunk in enumerate(chunks):
            if self.fail_after is not None and idx == self.fail_after:
                raise RuntimeError("stream interrupted")
            if self.block_after is not None and idx == self.block_after:
                await self.released.wait()
            yield chunk


class KeywordEmbedder(Embedder):
    """Deterministic embedder: one dimension per vocabulary word plus a bias term"""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches: List[List[str]] = []
        self.queries: List[str] = []

    @property
    def dimension(self) -> int:
        return len(VOCABULARY) + 1

    def vector(self, text: str) -> List[float]:
        lowered = text.lower()
        values = [float(lowered.count(word)) for word in VOCABULARY]
        values.append(0.1)
        return values

    async def embed(self, text: str) -> List[float]:
        self.queries.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        return self.vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.batches.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service down")
        return [self.vector(text) for text in texts]


def make_container(
    generator: Optional[Generator] = None,
    embedder: Optional[Embedder] = None,
    settings: Optional[Settings] = None,
    **overrides
) -> ServiceContainer:
    embedder = embedder or KeywordEmbedder()
    settings = settings or Settings(auth_tokens={"token-alice": "alice", "token-bob": "bob"})
    return build_container(
        settings,
        generator=generator or ScriptedGenerator(),
        embedder=embedder,
        vector_index=overrides.pop("vector_index", InMemoryVectorIndex(embedder.dimension)),
        **overrides
    )


async def seed_turns(container: ServiceContainer, conversation: Conversation, count: int, topic: str = "turn") -> None:
    """Append `count` alternating turns and keep the counter in step"""

    for idx in range(count):
        origin = TurnOrigin.REQUESTER if idx % 2 == 0 else TurnOrigin.GENERATOR
        await container.turn_store.append_turn(conversation.id, origin, f"{topic} {idx}")
        if origin == TurnOrigin.GENERATOR:
            await container.conversation_store.record_exchange(conversation.id)
