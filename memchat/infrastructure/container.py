"""
Service wiring.

Builds every component once from `Settings`. Tests pass their own
generator, embedder, index or stores to replace the configured ones.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

from memchat.domain.chat.background import BackgroundTaskRunner
from memchat.domain.chat.conversation_service import ConversationService
from memchat.domain.chat.turn_controller import TurnLifecycleController
from memchat.domain.context.archive_engine import ArchiveEngine
from memchat.domain.context.context_assembler import ContextAssembler
from memchat.domain.context.memory.conversation_store import ConversationStore, InMemoryConversationStore
from memchat.domain.context.memory.turn_store import InMemoryTurnStore, TurnStore
from memchat.domain.context.memory.vector_index import InMemoryVectorIndex
from memchat.domain.context.retrieval_engine import RetrievalEngine
from memchat.domain.errors import ConfigurationError
from memchat.domain.providers.base import Embedder, Generator, VectorIndex
from memchat.domain.providers.langchain_providers import build_gemini_providers
from memchat.infrastructure.config.settings import Settings
from memchat.infrastructure.security.identity import IdentityService, StaticTokenIdentityService

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    conversation_store: ConversationStore
    turn_store: TurnStore
    generator: Generator
    embedder: Embedder
    vector_index: VectorIndex
    retrieval_engine: RetrievalEngine
    archive_engine: ArchiveEngine
    context_assembler: ContextAssembler
    background: BackgroundTaskRunner
    controller: TurnLifecycleController
    conversations: ConversationService
    identity: IdentityService

    async def start(self):
        """Verify the embedder against the index, then prepare external resources"""

        await verify_embedder(self.embedder, self.vector_index)

        ensure_index = getattr(self.vector_index, "ensure_index", None)
        if ensure_index is not None:
            await ensure_index()

    async def close(self):
        """Let archival finish, then release backends"""

        await self.background.shutdown()

        for resource in (self.vector_index, self.turn_store, self.conversation_store):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            result = close()
            if hasattr(result, "__await__"):
                await result


def check_dimensions(embedder: Embedder, vector_index: VectorIndex):
    """Embedder output must fit the index; anything else is fatal"""

    if embedder.dimension != vector_index.dimension:
        raise ConfigurationError(
            f"Embedder dimension {embedder.dimension} does not match "
            f"vector index dimension {vector_index.dimension}",
            error_code="embedding_dimension_mismatch"
        )


async def verify_embedder(embedder: Embedder, vector_index: VectorIndex):
    """Embed one sample text and check its length against the index"""

    try:
        vector = await embedder.embed("dimension check")
    except ConfigurationError:
        raise
    except Exception as e:
        logger.warning("Embedder unreachable at startup, dimension not verified",
                      error=str(e))
        return

    if len(vector) != vector_index.dimension:
        raise ConfigurationError(
            f"Embedder produced {len(vector)}-dimensional vectors, "
            f"vector index expects {vector_index.dimension}",
            error_code="embedding_dimension_mismatch"
        )


def build_vector_index(settings: Settings) -> VectorIndex:
    config = settings.vector_index
    dimension = settings.memory.embedding_dimension

    if config.backend == "opensearch":
        from memchat.domain.context.memory.opensearch_index import OpenSearchVectorIndex

        return OpenSearchVectorIndex.from_config(
            host=config.host,
            port=config.port,
            index_name=config.index_name,
            dimension=dimension,
            username=config.username,
            password=config.password,
            use_ssl=config.use_ssl
        )
    return InMemoryVectorIndex(dimension)


def build_stores(settings: Settings):
    if settings.store.backend == "sqlite":
        from memchat.domain.context.memory.sqlite_store import SQLiteStore

        store = SQLiteStore(settings.store.sqlite_path)
        return store, store
    return InMemoryConversationStore(), InMemoryTurnStore()


def build_container(
    settings: Settings,
    generator: Optional[Generator] = None,
    embedder: Optional[Embedder] = None,
    vector_index: Optional[VectorIndex] = None,
    conversation_store: Optional[ConversationStore] = None,
    turn_store: Optional[TurnStore] = None,
    identity: Optional[IdentityService] = None
) -> ServiceContainer:
    """Wire the service graph"""

    if generator is None or embedder is None:
        if not settings.providers.google_api_key:
            raise ConfigurationError("GOOGLE_API_KEY is required when no providers are injected")
        gemini_generator, gemini_embedder = build_gemini_providers(
            api_key=settings.providers.google_api_key,
            chat_model=settings.providers.chat_model,
            embedding_model=settings.providers.embedding_model,
            dimension=settings.memory.embedding_dimension,
            temperature=settings.providers.temperature
        )
        generator = generator or gemini_generator
        embedder = embedder or gemini_embedder

    if vector_index is None:
        vector_index = build_vector_index(settings)

    check_dimensions(embedder, vector_index)

    if conversation_store is None or turn_store is None:
        default_conversations, default_turns = build_stores(settings)
        conversation_store = conversation_store or default_conversations
        turn_store = turn_store or default_turns

    memory = settings.memory
    background = BackgroundTaskRunner()
    retrieval_engine = RetrievalEngine(embedder, vector_index, memory)
    archive_engine = ArchiveEngine(turn_store, conversation_store, embedder, vector_index, memory)
    context_assembler = ContextAssembler(turn_store, retrieval_engine, memory)

    controller = TurnLifecycleController(
        conversation_store=conversation_store,
        turn_store=turn_store,
        context_assembler=context_assembler,
        generator=generator,
        archive_engine=archive_engine,
        background=background,
        memory_config=memory,
        chat_config=settings.chat
    )
    conversations = ConversationService(
        conversation_store=conversation_store,
        turn_store=turn_store,
        vector_index=vector_index,
        memory_config=memory,
        chat_config=settings.chat
    )

    logger.info("Service container built",
               store=settings.store.backend,
               vector_index=type(vector_index).__name__,
               dimension=vector_index.dimension)

    return ServiceContainer(
        settings=settings,
        conversation_store=conversation_store,
        turn_store=turn_store,
        generator=generator,
        embedder=embedder,
        vector_index=vector_index,
        retrieval_engine=retrieval_engine,
        archive_engine=archive_engine,
        context_assembler=context_assembler,
        background=background,
        controller=controller,
        conversations=conversations,
        identity=identity or StaticTokenIdentityService(settings.auth_tokens)
    )
