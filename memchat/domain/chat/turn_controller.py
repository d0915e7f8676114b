"""
Turn lifecycle: the per-message protocol.

    validate -> verify ownership -> persist requester turn -> assemble context
      -> generate (buffered or incremental) -> persist generator turn
      -> record exchange (+2 turns) -> maybe submit archival (not awaited)
"""

from typing import Tuple, Union
import asyncio
import time
import structlog

from memchat.application.schema.events import ChunkEvent, DoneEvent, ErrorEvent
from memchat.domain.context.archive_engine import ArchiveEngine
from memchat.domain.context.context_assembler import AssembledContext, ContextAssembler
from memchat.domain.context.memory.conversation_store import ConversationStore
from memchat.domain.context.memory.turn_store import TurnStore
from memchat.domain.errors import ConversationNotFoundError, GenerationError, MessageValidationError
from memchat.domain.models.conversation import Conversation, ExchangeResult, Turn, TurnOrigin
from memchat.domain.providers.base import Generator
from memchat.domain.streaming.event_channel import EventChannel
from memchat.infrastructure.config.settings import ChatConfig, MemoryConfig
from memchat.infrastructure.observability.logging import memory_logger, metrics
from .background import BackgroundTaskRunner

logger = structlog.get_logger(__name__)


class TurnLifecycleController:
    """Executes exactly one exchange per call"""

    def __init__(
        self,
        conversation_store: ConversationStore,
        turn_store: TurnStore,
        context_assembler: ContextAssembler,
        generator: Generator,
        archive_engine: ArchiveEngine,
        background: BackgroundTaskRunner,
        memory_config: MemoryConfig,
        chat_config: ChatConfig
    ):
        self.conversation_store = conversation_store
        self.turn_store = turn_store
        self.context_assembler = context_assembler
        self.generator = generator
        self.archive_engine = archive_engine
        self.background = background
        self.memory_config = memory_config
        self.chat_config = chat_config

    async def run_exchange(
        self,
        conversation_id: str,
        owner_id: str,
        message: str,
        stream: bool = False
    ) -> Union[ExchangeResult, EventChannel]:
        """Run a buffered exchange, or open an incremental one when `stream` is set"""

        if stream:
            return await self.stream_message(conversation_id, owner_id, message)
        return await self.send_message(conversation_id, owner_id, message)

    # ------------------------------------------------------------------
    # Buffered
    # ------------------------------------------------------------------
    async def send_message(self, conversation_id: str, owner_id: str, message: str) -> ExchangeResult:
        """Generate the full response, persist it and return both turns"""

        conversation, requester_turn, context = await self._begin(conversation_id, owner_id, message)
        started = time.perf_counter()

        try:
            text = await self.generator.generate(
                context.system_instruction,
                context.to_messages(requester_turn.body)
            )
        except Exception as e:
            memory_logger.log_exchange(
                conversation_id=conversation_id,
                mode="buffered",
                turn_count=conversation.turn_count,
                success=False,
                error=str(e)
            )
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(f"Generation failed: {e}") from e

        metrics.record_latency("generation.buffered", (time.perf_counter() - started) * 1000)

        if not text or not text.strip():
            text = self.chat_config.fallback_response

        generator_turn, updated = await asyncio.shield(self._complete(conversation, owner_id, text))

        memory_logger.log_exchange(
            conversation_id=conversation_id,
            mode="buffered",
            turn_count=updated.turn_count,
            duration_ms=(time.perf_counter() - started) * 1000
        )

        return ExchangeResult(requester_turn=requester_turn, generator_turn=generator_turn)

    # ------------------------------------------------------------------
    # Incremental
    # ------------------------------------------------------------------
    async def stream_message(self, conversation_id: str, owner_id: str, message: str) -> EventChannel:
        """Open a channel that receives chunk events and exactly one terminal event.

        Validation, ownership and context errors are raised here, before the
        channel exists. Everything after that is reported on the channel.
        """

        conversation, requester_turn, context = await self._begin(conversation_id, owner_id, message)

        channel = EventChannel()
        task = asyncio.create_task(
            self._produce(channel, conversation, owner_id, requester_turn, context),
            name=f"stream-{conversation_id}"
        )
        channel.attach_producer(task)
        return channel

    async def _produce(
        self,
        channel: EventChannel,
        conversation: Conversation,
        owner_id: str,
        requester_turn: Turn,
        context: AssembledContext
    ):
        fragments = []
        started = time.perf_counter()

        try:
            stream = self.generator.generate_incremental(
                context.system_instruction,
                context.to_messages(requester_turn.body)
            )
            streaming = False
            try:
                async for fragment in stream:
                    if not fragment:
                        continue
                    fragments.append(fragment)
                    if not streaming:
                        # Leading whitespace is held until real text arrives
                        if not fragment.strip():
                            continue
                        streaming = True
                        fragment = "".join(fragments)
                    await channel.send(ChunkEvent(content=fragment))
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            metrics.record_latency("generation.incremental", (time.perf_counter() - started) * 1000)

            full_text = "".join(fragments)
            if not full_text.strip():
                full_text = self.chat_config.fallback_response
                await channel.send(ChunkEvent(content=full_text))

            generator_turn, updated = await asyncio.shield(
                self._complete(conversation, owner_id, full_text)
            )

            await channel.send(DoneEvent(id=generator_turn.id, full_content=full_text))

            memory_logger.log_exchange(
                conversation_id=conversation.id,
                mode="incremental",
                turn_count=updated.turn_count,
                duration_ms=(time.perf_counter() - started) * 1000
            )

        except asyncio.CancelledError:
            # Consumer went away; the partial text is abandoned, not persisted
            logger.info("Stream abandoned before completion",
                       conversation_id=conversation.id,
                       fragments=len(fragments))
            raise

        except Exception as e:
            message = e.message if isinstance(e, GenerationError) else str(e)
            logger.error("Stream failed",
                        conversation_id=conversation.id,
                        error=message,
                        exc_info=True)
            memory_logger.log_exchange(
                conversation_id=conversation.id,
                mode="incremental",
                turn_count=conversation.turn_count,
                success=False,
                error=message
            )
            await channel.send(ErrorEvent(message=message or "Generation failed"))

        finally:
            channel.close()

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------
    def validate(self, conversation_id: str, owner_id: str, message: str) -> str:
        """Reject unusable input before any side effect"""

        if not isinstance(conversation_id, str) or not conversation_id.strip():
            raise MessageValidationError("Invalid conversation identifier")
        if not isinstance(owner_id, str) or not owner_id.strip():
            raise MessageValidationError("Invalid requester identifier")
        if not isinstance(message, str) or not message.strip():
            raise MessageValidationError("Message cannot be empty")
        if len(message) > self.chat_config.max_message_chars:
            raise MessageValidationError(
                f"Message exceeds {self.chat_config.max_message_chars} characters"
            )
        return message

    async def _begin(
        self,
        conversation_id: str,
        owner_id: str,
        message: str
    ) -> Tuple[Conversation, Turn, AssembledContext]:
        self.validate(conversation_id, owner_id, message)

        conversation = await self.conversation_store.find_owned(conversation_id, owner_id)
        if conversation is None:
            raise ConversationNotFoundError()

        # The requester turn is stored before generation so it survives a failure
        requester_turn = await self.turn_store.append_turn(conversation_id, TurnOrigin.REQUESTER, message)

        context = await self.context_assembler.assemble(
            conversation_id,
            owner_id,
            message,
            conversation.persona,
            exclude_turn_id=requester_turn.id
        )
        return conversation, requester_turn, context

    async def _complete(self, conversation: Conversation, owner_id: str, text: str):
        generator_turn = await self.turn_store.append_turn(conversation.id, TurnOrigin.GENERATOR, text)

        updated = await self.conversation_store.record_exchange(conversation.id)
        if updated is None:
            # Deleted while generating; drop turns written after the delete
            removed = await self.turn_store.delete_turns(conversation.id)
            logger.warning("Conversation deleted during exchange",
                          conversation_id=conversation.id,
                          removed_turns=removed)
            raise ConversationNotFoundError()

        metrics.increment_counter("exchanges")

        if updated.turn_count > self.memory_config.short_term_limit:
            self.background.submit(
                self.archive_engine.archive(conversation.id, owner_id),
                name=f"archive-{conversation.id}"
            )

        return generator_turn, updated
