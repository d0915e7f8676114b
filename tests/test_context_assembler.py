import asyncio

from langchain_core.messages import AIMessage, HumanMessage

from memchat.domain.context.personas import MEMORY_PREAMBLE, PERSONA_INSTRUCTIONS
from memchat.domain.models.conversation import ArchiveRecord, Persona, RetrievedFragment, TurnOrigin

from fakes import make_container, seed_turns


def test_instruction_without_memories_is_the_persona_text():
    container = make_container()
    for persona in Persona:
        assert container.context_assembler.build_instruction(persona, []) == PERSONA_INSTRUCTIONS[persona]


def test_instruction_appends_preamble_and_joined_fragments():
    container = make_container()
    fragments = [
        RetrievedFragment(text="Requester: I use FastAPI", score=0.9),
        RetrievedFragment(text="Requester: deploys run on k8s", score=0.8),
    ]

    instruction = container.context_assembler.build_instruction(Persona.PATIENT_EDUCATOR, fragments)

    assert instruction == (
        PERSONA_INSTRUCTIONS[Persona.PATIENT_EDUCATOR]
        + "\n\n" + MEMORY_PREAMBLE + "\n\n"
        + "Requester: I use FastAPI\n---\nRequester: deploys run on k8s"
    )
    assert "remember" in MEMORY_PREAMBLE


def test_assemble_returns_chronological_window_without_inbound_turn():
    async def scenario():
        container = make_container()
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 30)
        inbound = await container.turn_store.append_turn(conversation.id, TurnOrigin.REQUESTER, "latest")
        return await container.context_assembler.assemble(
            conversation.id, "alice", "latest", conversation.persona, exclude_turn_id=inbound.id
        )

    context = asyncio.run(scenario())

    assert len(context.history) == 20
    assert context.history[0].content == "turn 10"
    assert context.history[-1].content == "turn 29"
    assert isinstance(context.history[0], HumanMessage)
    assert isinstance(context.history[1], AIMessage)
    assert all(m.content != "latest" for m in context.history)

    messages = context.to_messages("latest")
    assert messages[-1].content == "latest"
    assert len(messages) == 21


def test_assemble_short_conversation_returns_all_turns():
    async def scenario():
        container = make_container()
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 3)
        return await container.context_assembler.assemble(conversation.id, "alice", "hi", conversation.persona)

    context = asyncio.run(scenario())

    assert [m.content for m in context.history] == ["turn 0", "turn 1", "turn 2"]


def test_assemble_injects_relevant_memories():
    async def scenario():
        container = make_container()
        conversation = await container.conversations.create_conversation("alice", persona="general-assistant")
        embedder = container.embedder
        text = "Requester: my guitar needs new strings\nGenerator: try light gauge"
        await container.vector_index.upsert("user_alice", [
            ArchiveRecord(
                id="memory_old_1",
                text=text,
                conversation_id="old",
                owner_id="alice",
                vector=await embedder.embed(text),
            )
        ])
        return await container.context_assembler.assemble(
            conversation.id, "alice", "which guitar strings again?", conversation.persona
        ), text

    context, text = asyncio.run(scenario())

    assert [f.text for f in context.fragments] == [text]
    assert context.system_instruction.endswith(MEMORY_PREAMBLE + "\n\n" + text)
