"""
Collaborator contracts injected into the pipeline services.

Each service takes these through its constructor so tests can pass fakes and
deployments can pass the AWS-backed adapters.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from rag_core.models.conversation import (
    Agent,
    ChatMessage,
    CompletionOptions,
    CompletionResponse,
    Conversation,
    Message,
    MessageRole,
)
from rag_core.models.knowledge import KnowledgeChunk
from rag_core.models.usage import QuotaStatus


class EmbeddingService(Protocol):
    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed many texts in one logical call; empty input returns []."""
        ...

    async def embed_text(self, text: str) -> List[float]:
        ...


class CompletionService(Protocol):
    async def complete(
        self, messages: Sequence[ChatMessage], options: CompletionOptions
    ) -> CompletionResponse:
        ...


class KnowledgeStore(Protocol):
    async def get_pending(
        self, agent_id: Optional[str] = None, limit: int = 100
    ) -> List[KnowledgeChunk]:
        ...

    async def get(self, chunk_id: str) -> Optional[KnowledgeChunk]:
        ...

    async def patch_embedding(self, chunk_id: str, vector: List[float]) -> None:
        ...

    async def insert(self, chunk: KnowledgeChunk) -> str:
        ...

    async def update(self, chunk: KnowledgeChunk) -> None:
        ...

    async def delete(self, chunk_id: str) -> None:
        ...

    async def list_for_agent(self, agent_id: str, limit: int = 1000) -> List[KnowledgeChunk]:
        """Agent's chunks in storage (creation) order."""
        ...

    async def count_for_agent(self, agent_id: str) -> Tuple[int, int]:
        """Return (total, embedded) chunk counts."""
        ...


class VectorIndex(Protocol):
    async def nearest_neighbors(
        self, vector: List[float], limit: int
    ) -> List[Tuple[str, float]]:
        """Return (chunk_id, score) pairs; not agent-scoped."""
        ...


class ConversationStore(Protocol):
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        ...

    async def list_recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        """Most recent messages, oldest first."""
        ...

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        ...


class QuotaService(Protocol):
    async def check(self, scope_id: str) -> QuotaStatus:
        ...

    async def record_usage(self, scope_id: str, units: int) -> QuotaStatus:
        ...

    async def check_and_consume(self, scope_id: str, unit_cost: int) -> QuotaStatus:
        """Atomically consume ``unit_cost`` when it fits under the limit."""
        ...
