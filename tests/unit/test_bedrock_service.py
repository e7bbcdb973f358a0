import io
import json

import pytest

from conftest import vector
from rag_core.models.conversation import (
    ChatMessage,
    CompletionOptions,
    CompletionResult,
    StreamingCompletion,
)
from rag_core.services.bedrock_service import BedrockCompletionService, BedrockEmbeddingService
from rag_core.utils.error_handling import UpstreamServiceError


class FakeRuntime:
    def __init__(self, embedding=None, converse_response=None, error=None):
        self.embedding = embedding if embedding is not None else vector()
        self.converse_response = converse_response or {}
        self.error = error
        self.invocations = []
        self.converse_requests = []

    def invoke_model(self, modelId, contentType, accept, body):
        if self.error:
            raise self.error
        self.invocations.append(json.loads(body)["inputText"])
        return {"body": io.BytesIO(json.dumps({"embedding": self.embedding}).encode())}

    def converse(self, **request):
        if self.error:
            raise self.error
        self.converse_requests.append(request)
        return self.converse_response

    def converse_stream(self, **request):
        self.converse_requests.append(request)
        return {"stream": ["event"]}


@pytest.mark.asyncio
async def test_embed_texts_preserves_order_and_count():
    client = FakeRuntime()
    service = BedrockEmbeddingService(client=client, max_concurrency=2)

    vectors = await service.embed_texts(["a", "b", "c"])

    assert len(vectors) == 3
    assert sorted(client.invocations) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_embed_texts_empty_input_makes_no_call():
    client = FakeRuntime()
    assert await BedrockEmbeddingService(client=client).embed_texts([]) == []
    assert client.invocations == []


@pytest.mark.asyncio
async def test_wrong_dimension_raises_upstream_error():
    service = BedrockEmbeddingService(client=FakeRuntime(embedding=[0.1, 0.2]))
    with pytest.raises(UpstreamServiceError):
        await service.embed_text("hello")


@pytest.mark.asyncio
async def test_provider_failure_raises_upstream_error():
    service = BedrockEmbeddingService(client=FakeRuntime(error=RuntimeError("throttled")))
    with pytest.raises(UpstreamServiceError):
        await service.embed_texts(["hello"])


@pytest.mark.asyncio
async def test_complete_parses_converse_response():
    client = FakeRuntime(
        converse_response={
            "output": {"message": {"content": [{"text": "Hello "}, {"text": "there"}]}},
            "usage": {"inputTokens": 10, "outputTokens": 3},
        }
    )
    messages = [
        ChatMessage(role="system", content="Be nice"),
        ChatMessage(role="assistant", content="orphan greeting"),
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="user", content="anyone?"),
    ]

    result = await BedrockCompletionService(client=client).complete(
        messages, CompletionOptions(model="model-x", temperature=0.2, max_tokens=50)
    )

    assert isinstance(result, CompletionResult)
    assert result.first_content() == "Hello there"
    assert (result.input_tokens, result.output_tokens) == (10, 3)
    request = client.converse_requests[0]
    assert request["system"] == [{"text": "Be nice"}]
    assert request["messages"] == [
        {"role": "user", "content": [{"text": "hi"}, {"text": "anyone?"}]}
    ]
    assert request["inferenceConfig"] == {"maxTokens": 50, "temperature": 0.2}


@pytest.mark.asyncio
async def test_empty_converse_output_has_no_choices():
    client = FakeRuntime(converse_response={"output": {"message": {"content": []}}})
    result = await BedrockCompletionService(client=client).complete(
        [ChatMessage(role="user", content="hi")], CompletionOptions(model="m")
    )
    assert result.first_content() is None


@pytest.mark.asyncio
async def test_stream_option_returns_streaming_shape():
    result = await BedrockCompletionService(client=FakeRuntime()).complete(
        [ChatMessage(role="user", content="hi")], CompletionOptions(model="m", stream=True)
    )
    assert isinstance(result, StreamingCompletion)


@pytest.mark.asyncio
async def test_completion_failure_raises_upstream_error():
    service = BedrockCompletionService(client=FakeRuntime(error=RuntimeError("boom")))
    with pytest.raises(UpstreamServiceError):
        await service.complete([ChatMessage(role="user", content="hi")], CompletionOptions(model="m"))
