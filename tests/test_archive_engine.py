import asyncio

from memchat.domain.context.archive_engine import chunk_turns, format_chunk
from memchat.domain.models.conversation import Turn, TurnOrigin

from fakes import KeywordEmbedder, make_container, seed_turns


def _records(container, owner_id="alice"):
    return container.vector_index.namespaces.get(f"user_{owner_id}", [])


def test_format_chunk_labels_each_turn():
    turns = [
        Turn(id="1", conversation_id="c", origin=TurnOrigin.REQUESTER, body="How do I water tomatoes?"),
        Turn(id="2", conversation_id="c", origin=TurnOrigin.GENERATOR, body="Deeply, twice a week."),
    ]
    assert format_chunk(turns) == "Requester: How do I water tomatoes?\nGenerator: Deeply, twice a week."


def test_chunk_turns_keeps_short_tail():
    assert [len(c) for c in chunk_turns(list(range(10)), 4)] == [4, 4, 2]
    assert chunk_turns([], 4) == []


def test_twenty_four_turns_archive_one_full_chunk():
    async def scenario():
        container = make_container()
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 24)
        written = await container.archive_engine.archive(conversation.id, "alice")
        stored = await container.conversation_store.get(conversation.id)
        return written, _records(container), stored

    written, records, stored = asyncio.run(scenario())

    assert written == 1
    assert len(records) == 1
    assert records[0]["metadata"]["text"] == (
        "Requester: turn 0\nGenerator: turn 1\nRequester: turn 2\nGenerator: turn 3"
    )
    assert records[0]["metadata"]["kind"] == "conversation_memory"
    assert records[0]["id"].startswith(f"memory_{stored.id}_")
    assert stored.archived_once is True
    assert stored.archived_turn_count == 4


def test_twenty_one_turns_archive_single_line_chunk():
    async def scenario():
        container = make_container()
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 21)
        await container.archive_engine.archive(conversation.id, "alice")
        return _records(container)

    records = asyncio.run(scenario())

    assert len(records) == 1
    assert records[0]["metadata"]["text"] == "Requester: turn 0"


def test_window_sized_conversation_is_a_no_op():
    embedder = KeywordEmbedder()

    async def scenario():
        container = make_container(embedder=embedder)
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 20)
        written = await container.archive_engine.archive(conversation.id, "alice")
        stored = await container.conversation_store.get(conversation.id)
        return written, stored

    written, stored = asyncio.run(scenario())

    assert written == 0
    assert stored.archived_once is False
    assert embedder.batches == []


def test_rerunning_archival_never_duplicates_chunks():
    embedder = KeywordEmbedder()

    async def scenario():
        container = make_container(embedder=embedder)
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 28)

        first = await container.archive_engine.archive(conversation.id, "alice")
        second = await container.archive_engine.archive(conversation.id, "alice")

        # Four more turns push exactly one more chunk out of the window
        for idx in range(28, 32):
            origin = TurnOrigin.REQUESTER if idx % 2 == 0 else TurnOrigin.GENERATOR
            await container.turn_store.append_turn(conversation.id, origin, f"turn {idx}")
        third = await container.archive_engine.archive(conversation.id, "alice")

        return first, second, third, _records(container)

    first, second, third, records = asyncio.run(scenario())

    assert (first, second, third) == (2, 0, 1)
    texts = [r["metadata"]["text"] for r in records]
    assert len(texts) == len(set(texts)) == 3
    assert texts[-1].startswith("Requester: turn 8\n")
    assert len(embedder.batches) == 2
    assert len({r["id"] for r in records}) == 3


def test_embedder_failure_is_swallowed_and_retried_later():
    embedder = KeywordEmbedder(fail=True)

    async def scenario():
        container = make_container(embedder=embedder)
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 24)

        failed = await container.archive_engine.archive(conversation.id, "alice")
        stored = await container.conversation_store.get(conversation.id)

        embedder.fail = False
        retried = await container.archive_engine.archive(conversation.id, "alice")
        return failed, stored, retried, _records(container)

    failed, stored, retried, records = asyncio.run(scenario())

    assert failed == 0
    assert stored.archived_once is False
    assert stored.archived_turn_count == 0
    assert retried == 1
    assert len(records) == 1


def test_index_failure_is_swallowed():
    class BrokenIndex:
        dimension = KeywordEmbedder().dimension

        async def upsert(self, namespace, records):
            raise RuntimeError("index offline")

        async def query(self, namespace, vector, top_k):
            return []

        async def delete_by_conversation(self, namespace, conversation_id):
            return 0

    async def scenario():
        container = make_container(vector_index=BrokenIndex())
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 24)
        written = await container.archive_engine.archive(conversation.id, "alice")
        stored = await container.conversation_store.get(conversation.id)
        return written, stored

    written, stored = asyncio.run(scenario())

    assert written == 0
    assert stored.archived_once is False


def test_archival_of_foreign_owner_is_a_no_op():
    async def scenario():
        container = make_container()
        conversation = await container.conversations.create_conversation("alice")
        await seed_turns(container, conversation, 24)
        written = await container.archive_engine.archive(conversation.id, "bob")
        return written, container.vector_index.namespaces

    written, namespaces = asyncio.run(scenario())

    assert written == 0
    assert namespaces == {}
