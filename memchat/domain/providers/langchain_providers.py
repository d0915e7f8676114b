"""
LangChain adapters for the generator and embedder capabilities.

Any chat model implementing ``BaseChatModel`` and any ``Embeddings``
implementation can back the service; Gemini is wired in by
``build_gemini_providers``.
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
import structlog

from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, SystemMessage

from memchat.domain.errors import EmbeddingDimensionError, GenerationError
from .base import Embedder, Generator

logger = structlog.get_logger(__name__)


def message_text(message: BaseMessage) -> str:
    """Extract plain text from a message whose content may be a list of parts"""

    content = message.content
    if isinstance(content, str):
        return content

    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class LangChainGenerator(Generator):
    """Generator backed by a LangChain chat model"""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    def _build_messages(self, system_instruction: str, turns: Sequence[BaseMessage]) -> List[BaseMessage]:
        return [SystemMessage(content=system_instruction), *turns]

    async def generate(self, system_instruction: str, turns: Sequence[BaseMessage]) -> str:
        messages = self._build_messages(system_instruction, turns)

        try:
            response = await self.chat_model.ainvoke(messages)
        except Exception as e:
            raise GenerationError(f"Generation failed: {e}") from e

        return message_text(response)

    async def generate_incremental(
        self,
        system_instruction: str,
        turns: Sequence[BaseMessage]
    ) -> AsyncIterator[str]:
        messages = self._build_messages(system_instruction, turns)

        try:
            async for chunk in self.chat_model.astream(messages):
                text = message_text(chunk)
                if text:
                    yield text
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Streaming generation failed: {e}") from e


class LangChainEmbedder(Embedder):
    """Embedder backed by a LangChain ``Embeddings`` implementation.

    Every returned vector is checked against the configured dimension; a
    mismatch is a configuration error, not something to recover from.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        dimension: int,
        embed_kwargs: Optional[Dict[str, Any]] = None
    ):
        self.embeddings = embeddings
        self._dimension = dimension
        self.embed_kwargs = embed_kwargs or {}

    @property
    def dimension(self) -> int:
        return self._dimension

    def _check(self, vector: Sequence[float]) -> List[float]:
        if len(vector) != self._dimension:
            raise EmbeddingDimensionError(self._dimension, len(vector))
        return [float(v) for v in vector]

    async def embed(self, text: str) -> List[float]:
        vector = await self.embeddings.aembed_query(text, **self.embed_kwargs)
        return self._check(vector)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        items = list(texts)
        if not items:
            return []

        vectors = await self.embeddings.aembed_documents(items, **self.embed_kwargs)
        if len(vectors) != len(items):
            raise ValueError(
                f"Embedder returned {len(vectors)} vectors for {len(items)} texts"
            )

        return [self._check(vector) for vector in vectors]


def build_gemini_providers(
    api_key: Optional[str],
    chat_model: str,
    embedding_model: str,
    dimension: int,
    temperature: float = 0.7
) -> tuple:
    """Create the Gemini-backed generator and embedder"""

    from langchain_google_genai import ChatGoogleGenerativeAI, GoogleGenerativeAIEmbeddings

    logger.info("Initializing Gemini providers",
               chat_model=chat_model,
               embedding_model=embedding_model,
               dimension=dimension)

    llm = ChatGoogleGenerativeAI(
        model=chat_model,
        temperature=temperature,
        google_api_key=api_key
    )
    embeddings = GoogleGenerativeAIEmbeddings(
        model=embedding_model,
        google_api_key=api_key
    )

    generator = LangChainGenerator(llm)
    embedder = LangChainEmbedder(
        embeddings,
        dimension=dimension,
        embed_kwargs={"output_dimensionality": dimension}
    )
    return generator, embedder
