"""
Pytest configuration and in-memory collaborators shared by the unit tests.

The fakes implement the protocols in ``rag_core.repositories.base`` so the
pipeline services run without AWS, OpenSearch or a database.
"""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
import pytest


def _ensure_repo_on_sys_path() -> None:
    """Add repository root to sys.path if missing."""
    repo_root = str(Path(__file__).resolve().parents[1])
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


_ensure_repo_on_sys_path()

# Ensure boto3 has offline-friendly defaults so tests do not require AWS access.
os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_SESSION_TOKEN", "test")
os.environ.setdefault("ENVIRONMENT", "dev")
os.environ.setdefault("BEDROCK_REGION", "eu-west-2")
os.environ.setdefault("MODEL_ID", "anthropic.claude-3-haiku-20240307-v1:0")

boto3.setup_default_session(region_name="eu-west-2")

from rag_core.models.conversation import (  # noqa: E402
    Agent,
    CompletionChoice,
    CompletionMessage,
    CompletionResult,
    Conversation,
    Message,
    MessageRole,
)
from rag_core.models.knowledge import KnowledgeChunk, KnowledgeSource  # noqa: E402
from rag_core.models.usage import QuotaStatus  # noqa: E402

DIMS = 1536


def vector(value: float = 0.1) -> List[float]:
    return [value] * DIMS


def make_chunk(agent_id: str = "agent-1", content: str = "Some content", **kwargs) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=kwargs.pop("id", str(uuid.uuid4())),
        agent_id=agent_id,
        content=content,
        source=kwargs.pop("source", KnowledgeSource.TEXT),
        **kwargs,
    )


class FakeKnowledgeStore:
    """Insertion-ordered chunk store."""

    def __init__(self, chunks=None):
        self.chunks: Dict[str, KnowledgeChunk] = {}
        self.patched: List[str] = []
        self.fail_list = False
        for chunk in chunks or []:
            self.chunks[chunk.id] = chunk

    async def get_pending(self, agent_id=None, limit=100):
        pending = [
            c for c in self.chunks.values()
            if c.embedding is None and (agent_id is None or c.agent_id == agent_id)
        ]
        return pending[:limit]

    async def get(self, chunk_id):
        return self.chunks.get(chunk_id)

    async def patch_embedding(self, chunk_id, vector):
        self.chunks[chunk_id] = self.chunks[chunk_id].model_copy(update={"embedding": vector})
        self.patched.append(chunk_id)

    async def insert(self, chunk):
        self.chunks[chunk.id] = chunk
        return chunk.id

    async def update(self, chunk):
        self.chunks[chunk.id] = chunk

    async def delete(self, chunk_id):
        self.chunks.pop(chunk_id, None)

    async def list_for_agent(self, agent_id, limit=1000):
        if self.fail_list:
            raise RuntimeError("store unavailable")
        return [c for c in self.chunks.values() if c.agent_id == agent_id][:limit]

    async def count_for_agent(self, agent_id):
        owned = [c for c in self.chunks.values() if c.agent_id == agent_id]
        return len(owned), sum(1 for c in owned if c.embedding is not None)


class FakeVectorIndex:
    """Returns the configured (id, score) hits, or raises when ``error`` is set."""

    def __init__(self, hits=None):
        self.hits = hits or []
        self.error: Optional[Exception] = None
        self.requested_limits: List[int] = []

    async def nearest_neighbors(self, vector, limit):
        self.requested_limits.append(limit)
        if self.error:
            raise self.error
        return self.hits[:limit]


class FakeEmbeddings:
    """Deterministic embeddings; ``fail_on_calls`` lists 1-based failing calls."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.fail_on_calls: List[int] = []
        self.fail_always = False

    async def embed_texts(self, texts):
        self.calls.append(list(texts))
        if self.fail_always or len(self.calls) in self.fail_on_calls:
            raise RuntimeError("embedding provider throttled")
        return [vector(0.01 * (i + 1)) for i in range(len(texts))]

    async def embed_text(self, text):
        return (await self.embed_texts([text]))[0]


class FakeCompletions:
    def __init__(self, content: Optional[str] = "Here is your answer."):
        self.response: Any = CompletionResult(
            choices=[CompletionChoice(message=CompletionMessage(content=content))],
            model="anthropic.claude-3-haiku-20240307-v1:0",
            input_tokens=120,
            output_tokens=30,
        )
        self.error: Optional[Exception] = None
        self.requests: List[Any] = []

    async def complete(self, messages, options):
        self.requests.append((list(messages), options))
        if self.error:
            raise self.error
        return self.response


class FakeConversationStore:
    def __init__(self):
        self.agents: Dict[str, Agent] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[Message] = []
        self._clock = datetime(2024, 5, 1, tzinfo=timezone.utc)

    async def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    async def get_agent(self, agent_id):
        return self.agents.get(agent_id)

    async def list_recent_messages(self, conversation_id, limit):
        owned = [m for m in self.messages if m.conversation_id == conversation_id]
        return owned[-limit:] if limit > 0 else []

    async def append_message(self, conversation_id, role, content, metadata=None):
        self._clock += timedelta(seconds=1)
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata or {},
            created_at=self._clock,
        )
        self.messages.append(message)
        return message


class FakeQuota:
    def __init__(self, current: int = 0, limit: int = 100):
        self.current = current
        self.limit = limit
        self.recorded: List[int] = []
        self.record_error: Optional[Exception] = None

    async def check(self, scope_id):
        return QuotaStatus.from_usage(self.current, self.limit)

    async def record_usage(self, scope_id, units):
        if self.record_error:
            raise self.record_error
        self.current += units
        self.recorded.append(units)
        return QuotaStatus.from_usage(self.current, self.limit)

    async def check_and_consume(self, scope_id, unit_cost):
        if self.current + unit_cost > self.limit:
            return QuotaStatus.from_usage(self.current, self.limit, allowed=False)
        return await self.record_usage(scope_id, unit_cost)


@pytest.fixture
def knowledge_store():
    return FakeKnowledgeStore()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def completions():
    return FakeCompletions()


@pytest.fixture
def quota():
    return FakeQuota()


@pytest.fixture
def conversation_store():
    store = FakeConversationStore()
    store.agents["agent-1"] = Agent(
        id="agent-1",
        organization_id="org-1",
        name="Ava",
        description="Support assistant for Acme.",
        language="de",
    )
    store.conversations["conv-1"] = Conversation(id="conv-1", agent_id="agent-1")
    return store
