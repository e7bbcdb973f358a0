"""
Amazon Bedrock embedding and completion services.

Embeddings use Titan Text Embeddings v1 (1536 dimensions); completions use the
Converse API so any chat model on Bedrock can sit behind the same contract.
boto3 is synchronous, so calls run in worker threads to keep turns awaitable.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, List, Optional, Sequence

import boto3

from rag_core.models.conversation import (
    ChatMessage,
    CompletionChoice,
    CompletionMessage,
    CompletionOptions,
    CompletionResponse,
    CompletionResult,
    StreamingCompletion,
)
from rag_core.utils.error_handling import UpstreamServiceError
from rag_core.utils.logging_config import get_logger
from rag_core.utils.validators import ensure_embedding_dimensions

logger = get_logger(__name__)


def _resolve_region(region: Optional[str]) -> str:
    return (
        region
        or os.environ.get("BEDROCK_REGION")
        or os.environ.get("AWS_REGION")
        or "eu-west-2"
    )


class BedrockEmbeddingService:
    """Embed knowledge and queries with a Titan embedding model."""

    def __init__(
        self,
        model_id: str = "amazon.titan-embed-text-v1",
        region: Optional[str] = None,
        dimensions: int = 1536,
        max_concurrency: int = 5,
        client: Any = None,
    ):
        self.model_id = model_id
        self.dimensions = dimensions
        self.client = client or boto3.client(
            "bedrock-runtime", region_name=_resolve_region(region)
        )
        self.max_concurrency = max_concurrency

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed a batch of texts, preserving input order.

        Titan accepts one input per request, so the batch fans out under a
        concurrency cap; any single failure fails the whole batch.
        """
        if not texts:
            return []
        try:
            semaphore = asyncio.Semaphore(self.max_concurrency)
            vectors = await asyncio.gather(
                *(self._embed_one(text, semaphore) for text in texts)
            )
        except UpstreamServiceError:
            raise
        except Exception as exc:
            logger.error(
                "Embedding request failed",
                extra={"batch_size": len(texts), "error": str(exc)},
            )
            raise UpstreamServiceError(f"Failed to generate embeddings: {exc}") from exc

        logger.info(
            "Embeddings generated",
            extra={"count": len(vectors), "model_id": self.model_id},
        )
        return list(vectors)

    async def embed_text(self, text: str) -> List[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def _embed_one(self, text: str, semaphore: asyncio.Semaphore) -> List[float]:
        async with semaphore:
            response = await asyncio.to_thread(
                self.client.invoke_model,
                modelId=self.model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps({"inputText": text}),
            )
        payload = json.loads(response["body"].read())
        vector = payload.get("embedding")
        if vector is None:
            raise UpstreamServiceError("Embedding response did not contain a vector")
        try:
            ensure_embedding_dimensions(vector, self.dimensions)
        except ValueError as exc:
            raise UpstreamServiceError(str(exc)) from exc
        return vector


class BedrockCompletionService:
    """Chat completions through the Bedrock Converse API."""

    def __init__(self, region: Optional[str] = None, client: Any = None):
        self.client = client or boto3.client(
            "bedrock-runtime", region_name=_resolve_region(region)
        )

    async def complete(
        self, messages: Sequence[ChatMessage], options: CompletionOptions
    ) -> CompletionResponse:
        """Run a completion and normalise it into the shared result shapes."""
        system, conversation = self._to_converse_messages(messages)
        request: Dict[str, Any] = {
            "modelId": options.model,
            "messages": conversation,
            "inferenceConfig": {
                "maxTokens": options.max_tokens,
                "temperature": options.temperature,
            },
        }
        if system:
            request["system"] = system

        try:
            if options.stream:
                response = await asyncio.to_thread(self.client.converse_stream, **request)
                return StreamingCompletion(stream=response.get("stream"), model=options.model)
            response = await asyncio.to_thread(self.client.converse, **request)
        except Exception as exc:
            logger.error(
                "Completion request failed",
                extra={"model_id": options.model, "error": str(exc)},
            )
            raise UpstreamServiceError(f"Failed to generate chat completion: {exc}") from exc

        return self._parse_converse(response, options.model)

    def _to_converse_messages(
        self, messages: Sequence[ChatMessage]
    ) -> tuple[List[Dict[str, str]], List[Dict[str, Any]]]:
        """
        Split out system prompts and shape the rest for Converse.

        Converse needs a user message first and strictly alternating roles,
        so leading assistant turns are dropped and same-role runs are merged.
        """
        system: List[Dict[str, str]] = []
        conversation: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                system.append({"text": message.content})
                continue
            if not conversation and message.role == "assistant":
                continue
            if conversation and conversation[-1]["role"] == message.role:
                conversation[-1]["content"].append({"text": message.content})
                continue
            conversation.append({"role": message.role, "content": [{"text": message.content}]})
        return system, conversation

    def _parse_converse(self, response: Dict[str, Any], model: str) -> CompletionResult:
        content_blocks = response.get("output", {}).get("message", {}).get("content", [])
        text = "".join(block.get("text", "") for block in content_blocks) or None
        usage = response.get("usage", {})
        choices = [CompletionChoice(message=CompletionMessage(content=text))] if content_blocks else []
        return CompletionResult(
            choices=choices,
            model=model,
            input_tokens=usage.get("inputTokens"),
            output_tokens=usage.get("outputTokens"),
        )
