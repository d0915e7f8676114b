import asyncio

from memchat.application.schema.events import ChunkEvent, DoneEvent, ErrorEvent, EventType
from memchat.domain.context.personas import PERSONA_INSTRUCTIONS
from memchat.domain.models.conversation import Persona, TurnOrigin
from memchat.domain.streaming.event_channel import EventChannel

from fakes import ScriptedGenerator, make_container


def test_explain_closures_streams_chunks_then_done():
    generator = ScriptedGenerator(chunks=["A closure ", "captures ", "its scope."])

    async def scenario():
        container = make_container(generator=generator)
        conversation = await container.conversations.create_conversation(
            "alice", persona="programming-expert"
        )
        channel = await container.controller.run_exchange(
            conversation.id, "alice", "Explain closures", stream=True
        )
        events = await channel.collect()
        await channel.wait_closed()
        turns = await container.turn_store.list_turns(conversation.id)
        stored = await container.conversation_store.get(conversation.id)
        return channel, events, turns, stored

    channel, events, turns, stored = asyncio.run(scenario())

    assert [e.type for e in events] == [EventType.CHUNK] * 3 + [EventType.DONE]
    assert [e.content for e in events[:3]] == ["A closure ", "captures ", "its scope."]

    done = events[-1]
    assert isinstance(done, DoneEvent)
    assert done.full_content == "A closure captures its scope."
    assert done.to_wire() == {"type": "done", "id": done.id, "fullContent": "A closure captures its scope."}

    assert channel.closed
    assert [t.origin for t in turns] == [TurnOrigin.REQUESTER, TurnOrigin.GENERATOR]
    assert turns[1].id == done.id
    assert turns[1].body == done.full_content
    assert stored.turn_count == 2

    system = generator.calls[0]["system"]
    assert system == PERSONA_INSTRUCTIONS[Persona.PROGRAMMING_EXPERT]
    assert generator.calls[0]["messages"][-1].content == "Explain closures"


def test_generator_failure_mid_stream_emits_error_and_closes():
    generator = ScriptedGenerator(chunks=["partial ", "never"], fail_after=1)

    async def scenario():
        container = make_container(generator=generator)
        conversation = await container.conversations.create_conversation("alice")
        channel = await container.controller.stream_message(conversation.id, "alice", "Hello")
        events = await channel.collect()
        turns = await container.turn_store.list_turns(conversation.id)
        stored = await container.conversation_store.get(conversation.id)
        return channel, events, turns, stored

    channel, events, turns, stored = asyncio.run(scenario())

    assert isinstance(events[0], ChunkEvent)
    assert isinstance(events[-1], ErrorEvent)
    assert "stream interrupted" in events[-1].message
    assert sum(1 for e in events if e.terminal) == 1
    assert channel.closed
    assert [t.origin for t in turns] == [TurnOrigin.REQUESTER]
    assert stored.turn_count == 0


def test_generator_failure_before_first_chunk():
    async def scenario():
        container = make_container(generator=ScriptedGenerator(fail=True))
        conversation = await container.conversations.create_conversation("alice")
        channel = await container.controller.stream_message(conversation.id, "alice", "Hello")
        return await channel.collect()

    events = asyncio.run(scenario())

    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)


def test_empty_stream_sends_fallback_chunk():
    async def scenario():
        container = make_container(generator=ScriptedGenerator(chunks=["", " "]))
        conversation = await container.conversations.create_conversation("alice")
        channel = await container.controller.stream_message(conversation.id, "alice", "Hello")
        events = await channel.collect()
        return events, container.settings.chat.fallback_response

    events, fallback = asyncio.run(scenario())

    assert [e.type for e in events] == [EventType.CHUNK, EventType.DONE]
    assert events[0].content == fallback
    assert events[-1].full_content == fallback


def test_chunks_concatenate_to_full_content():
    async def scenario():
        container = make_container(generator=ScriptedGenerator(chunks=[" ", "Hi", " ", "there"]))
        conversation = await container.conversations.create_conversation("alice")
        channel = await container.controller.stream_message(conversation.id, "alice", "Hello")
        return await channel.collect()

    events = asyncio.run(scenario())

    chunks = [e.content for e in events if e.type == EventType.CHUNK]
    assert chunks == [" Hi", " ", "there"]
    assert "".join(chunks) == events[-1].full_content == " Hi there"


def test_cancelled_stream_persists_nothing():
    generator = ScriptedGenerator(chunks=["one ", "two ", "three"], block_after=1)

    async def scenario():
        container = make_container(generator=generator)
        conversation = await container.conversations.create_conversation("alice")
        channel = await container.controller.stream_message(conversation.id, "alice", "Hello")

        first = None
        async for event in channel:
            first = event
            break
        await channel.cancel()

        turns = await container.turn_store.list_turns(conversation.id)
        stored = await container.conversation_store.get(conversation.id)
        return channel, first, turns, stored

    channel, first, turns, stored = asyncio.run(scenario())

    assert first.content == "one "
    assert channel.closed
    assert [t.origin for t in turns] == [TurnOrigin.REQUESTER]
    assert stored.turn_count == 0


def test_channel_close_is_idempotent_and_rejects_late_sends():
    async def scenario():
        channel = EventChannel()
        assert await channel.send(ChunkEvent(content="a"))
        channel.close()
        channel.close()
        accepted = await channel.send(ChunkEvent(content="b"))
        return accepted, await channel.collect()

    accepted, events = asyncio.run(scenario())

    assert accepted is False
    assert [e.content for e in events] == ["a"]


def test_sse_frame_format():
    frame = ChunkEvent(content="hi").to_sse()
    assert frame == 'data: {"type": "chunk", "content": "hi"}\n\n'
