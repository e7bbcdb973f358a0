import pytest

from conftest import FakeKnowledgeStore, FakeQuota, make_chunk, vector
from rag_core.models.conversation import MessageRole, StreamingCompletion
from rag_core.models.turn import TurnState
from rag_core.services.orchestration_service import (
    APOLOGY_MESSAGE,
    ERROR_MODEL_TAG,
    ResponseOrchestrator,
)
from rag_core.services.retrieval_service import RetrievalService
from rag_core.utils.error_handling import NotFoundError, QuotaExceededError, ValidationError


@pytest.fixture
def knowledge():
    return FakeKnowledgeStore(
        [make_chunk(id="k1", title="Refunds", content="Refunds within 30 days", embedding=vector())]
    )


@pytest.fixture
def orchestrator(conversation_store, quota, knowledge, vector_index, embeddings, completions):
    vector_index.hits = [("k1", 0.87)]
    retriever = RetrievalService(store=knowledge, index=vector_index, embeddings=embeddings)
    return ResponseOrchestrator(
        conversations=conversation_store,
        quota=quota,
        retriever=retriever,
        completions=completions,
    )


@pytest.mark.asyncio
async def test_successful_turn_persists_both_messages(orchestrator, conversation_store, quota):
    result = await orchestrator.generate_response("conv-1", "What is the refund window?", "user-9")

    assert result.content == "Here is your answer."
    assert not result.degraded
    assert result.knowledge_used == 1
    assert result.trace.state == TurnState.DONE

    user, assistant = conversation_store.messages
    assert user.role == MessageRole.USER
    assert user.metadata == {"user_id": "user-9"}
    assert assistant.id == result.message_id
    assert assistant.metadata["model"] == "anthropic.claude-3-haiku-20240307-v1:0"
    assert assistant.metadata["knowledge_used"] == 1
    assert quota.recorded == [1]


@pytest.mark.asyncio
async def test_prompt_carries_knowledge_and_agent_language(orchestrator, completions):
    await orchestrator.generate_response("conv-1", "Refund?", "user-9")

    messages, options = completions.requests[0]
    assert messages[0].role == "system"
    assert "[1] Refunds: Refunds within 30 days" in messages[0].content
    assert "You MUST respond in German" in messages[0].content
    assert options.stream is False


@pytest.mark.asyncio
async def test_request_locale_overrides_agent_language(orchestrator, completions):
    await orchestrator.generate_response("conv-1", "Refund?", "user-9", locale="fr")

    messages, _ = completions.requests[0]
    assert "You MUST respond in French" in messages[0].content


@pytest.mark.asyncio
async def test_history_excludes_current_message(orchestrator, conversation_store, completions):
    await conversation_store.append_message("conv-1", MessageRole.USER, "earlier question")
    await conversation_store.append_message("conv-1", MessageRole.ASSISTANT, "earlier answer")

    await orchestrator.generate_response("conv-1", "new question", "user-9")

    messages, _ = completions.requests[0]
    assert [m.content for m in messages[1:]] == ["earlier question", "earlier answer", "new question"]


@pytest.mark.asyncio
async def test_exhausted_quota_rejects_before_any_write(
    conversation_store, knowledge, vector_index, embeddings, completions
):
    orchestrator = ResponseOrchestrator(
        conversations=conversation_store,
        quota=FakeQuota(current=100, limit=100),
        retriever=RetrievalService(store=knowledge, index=vector_index, embeddings=embeddings),
        completions=completions,
    )

    with pytest.raises(QuotaExceededError) as excinfo:
        await orchestrator.generate_response("conv-1", "hello", "user-9")

    assert excinfo.value.current == 100
    assert excinfo.value.limit == 100
    assert conversation_store.messages == []
    assert completions.requests == []


@pytest.mark.asyncio
async def test_unknown_conversation_is_not_found(orchestrator, conversation_store):
    with pytest.raises(NotFoundError):
        await orchestrator.generate_response("missing", "hello", "user-9")
    assert conversation_store.messages == []


@pytest.mark.asyncio
async def test_empty_message_is_rejected(orchestrator, conversation_store):
    with pytest.raises(ValidationError):
        await orchestrator.generate_response("conv-1", "   ", "user-9")
    assert conversation_store.messages == []


@pytest.mark.asyncio
async def test_completion_failure_degrades_to_apology(orchestrator, conversation_store, completions, quota):
    completions.error = RuntimeError("model timeout")

    result = await orchestrator.generate_response("conv-1", "hello", "user-9")

    assert result.degraded
    assert result.content == APOLOGY_MESSAGE
    assert result.trace.state == TurnState.DEGRADED
    assert result.trace.failed_state == TurnState.GENERATING
    user = conversation_store.messages[0]
    assert user.role == MessageRole.USER
    assert user.content == "hello"
    assert result.user_message_id == user.id
    apology = conversation_store.messages[-1]
    assert apology.role == MessageRole.ASSISTANT
    assert apology.metadata["model"] == ERROR_MODEL_TAG
    assert "model timeout" in apology.metadata["error"]
    assert quota.recorded == []


@pytest.mark.asyncio
async def test_streaming_response_is_treated_as_malformed(orchestrator, conversation_store, completions):
    completions.response = StreamingCompletion(stream=iter(()))

    result = await orchestrator.generate_response("conv-1", "hello", "user-9")

    assert result.degraded
    assert conversation_store.messages[-1].metadata["model"] == ERROR_MODEL_TAG


@pytest.mark.asyncio
async def test_usage_recording_failure_does_not_fail_turn(orchestrator, quota):
    quota.record_error = RuntimeError("db down")

    result = await orchestrator.generate_response("conv-1", "hello", "user-9")

    assert not result.degraded
    assert result.content == "Here is your answer."
