import pytest

from conftest import FakeKnowledgeStore, make_chunk, vector
from rag_core.services.retrieval_service import UNRANKED_SCORE, RetrievalService


def _service(store, index, embeddings, **kwargs):
    return RetrievalService(store=store, index=index, embeddings=embeddings, **kwargs)


@pytest.mark.asyncio
async def test_vector_search_returns_agent_chunks_by_descending_score(vector_index, embeddings):
    mine_low = make_chunk(id="a", embedding=vector())
    mine_high = make_chunk(id="b", embedding=vector())
    store = FakeKnowledgeStore([mine_low, mine_high])
    vector_index.hits = [("a", 0.4), ("b", 0.9)]

    results = await _service(store, vector_index, embeddings).retrieve("agent-1", "refunds", limit=5)

    assert [r.chunk.id for r in results] == ["b", "a"]
    assert [r.score for r in results] == [0.9, 0.4]


@pytest.mark.asyncio
async def test_other_agents_chunks_never_returned(vector_index, embeddings):
    store = FakeKnowledgeStore(
        [
            make_chunk(id="mine", agent_id="agent-a", embedding=vector()),
            make_chunk(id="theirs", agent_id="agent-b", embedding=vector()),
        ]
    )
    vector_index.hits = [("theirs", 0.99), ("mine", 0.5)]

    results = await _service(store, vector_index, embeddings).retrieve("agent-a", "q", limit=5)

    assert [r.chunk.id for r in results] == ["mine"]


@pytest.mark.asyncio
async def test_over_fetches_candidates_before_filtering(vector_index, embeddings):
    await _service(FakeKnowledgeStore(), vector_index, embeddings, overfetch_factor=3).retrieve(
        "agent-1", "q", limit=5
    )
    assert vector_index.requested_limits == [15]


@pytest.mark.asyncio
async def test_falls_back_to_text_search_when_embedding_fails(vector_index, embeddings):
    store = FakeKnowledgeStore(
        [
            make_chunk(id="1", content="Refunds take five days"),
            make_chunk(id="2", content="Shipping is free"),
            make_chunk(id="3", title="REFUND policy", content="See terms"),
        ]
    )
    embeddings.fail_always = True

    results = await _service(store, vector_index, embeddings).retrieve("agent-1", "refund", limit=5)

    assert [r.chunk.id for r in results] == ["1", "3"]
    assert all(r.score == UNRANKED_SCORE and r.is_unranked for r in results)


@pytest.mark.asyncio
async def test_falls_back_when_index_fails(vector_index, embeddings):
    store = FakeKnowledgeStore([make_chunk(id="1", content="refund window")])
    vector_index.error = RuntimeError("index unavailable")

    results = await _service(store, vector_index, embeddings).retrieve("agent-1", "refund")

    assert [r.chunk.id for r in results] == ["1"]


@pytest.mark.asyncio
async def test_falls_back_when_no_agent_chunk_is_embedded(vector_index, embeddings):
    store = FakeKnowledgeStore([make_chunk(id="1", content="Refund window is 30 days")])
    vector_index.hits = []

    results = await _service(store, vector_index, embeddings).retrieve("agent-1", "refund")

    assert [r.score for r in results] == [0.0]


@pytest.mark.asyncio
async def test_text_search_truncates_in_storage_order(vector_index, embeddings):
    store = FakeKnowledgeStore([make_chunk(id=str(i), content="refund") for i in range(8)])
    embeddings.fail_always = True

    results = await _service(store, vector_index, embeddings).retrieve("agent-1", "refund", limit=3)

    assert [r.chunk.id for r in results] == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_retrieval_never_raises(vector_index, embeddings):
    store = FakeKnowledgeStore()
    store.fail_list = True
    embeddings.fail_always = True

    assert await _service(store, vector_index, embeddings).retrieve("agent-1", "q") == []


@pytest.mark.asyncio
async def test_query_embedding_is_cached(vector_index, embeddings):
    service = _service(FakeKnowledgeStore(), vector_index, embeddings)

    await service.retrieve("agent-1", "same question")
    await service.retrieve("agent-1", "same question")

    assert len(embeddings.calls) == 1


class UnscopedKnowledgeStore(FakeKnowledgeStore):
    """Returns every tenant's chunks from list_for_agent."""

    async def list_for_agent(self, agent_id, limit=1000):
        return list(self.chunks.values())[:limit]


@pytest.mark.asyncio
async def test_text_fallback_drops_other_agents_chunks(vector_index, embeddings):
    store = UnscopedKnowledgeStore(
        [
            make_chunk(id="b", agent_id="agent-b", content="Our refund policy is strict"),
            make_chunk(id="a", agent_id="agent-a", content="Refund policy: 30 days"),
        ]
    )
    embeddings.fail_always = True

    results = await _service(store, vector_index, embeddings).retrieve("agent-a", "refund policy")

    assert [r.chunk.id for r in results] == ["a"]
