"""
Batch embedding of pending knowledge chunks.

Pending chunks are embedded in fixed-size batches with a fixed pause between
batches to stay under the embedding provider's rate limits. A failed batch is
counted and skipped; the run always returns a summary.
"""

from __future__ import annotations

import asyncio
import time
from functools import reduce
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from rag_core.models.knowledge import KnowledgeChunk
from rag_core.models.usage import BatchOutcome, EmbeddingRunSummary
from rag_core.repositories.base import EmbeddingService, KnowledgeStore
from rag_core.utils.error_handling import UpstreamServiceError, ValidationError
from rag_core.utils.logging_config import get_logger
from rag_core.utils.validators import EMBEDDING_DIMENSIONS, ensure_embedding_dimensions

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _batches(items: Sequence[KnowledgeChunk], size: int) -> List[Sequence[KnowledgeChunk]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class EmbeddingBatchCoordinator:
    """Find unembedded chunks and embed them under a fixed request pace."""

    def __init__(
        self,
        store: KnowledgeStore,
        embeddings: EmbeddingService,
        page_size: int = 100,
        batch_delay_seconds: float = 1.0,
        dimensions: int = EMBEDDING_DIMENSIONS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store
        self.embeddings = embeddings
        self.page_size = page_size
        self.batch_delay_seconds = batch_delay_seconds
        self.dimensions = dimensions
        self._sleep = sleep

    async def run(
        self, agent_id: Optional[str] = None, batch_size: int = 10
    ) -> EmbeddingRunSummary:
        """Embed up to one page of pending chunks, optionally for one agent."""
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")

        start = time.perf_counter()
        pending = await self.store.get_pending(agent_id=agent_id, limit=self.page_size)
        if not pending:
            logger.info("No pending knowledge chunks", extra={"agent_id": agent_id})
            return EmbeddingRunSummary()

        batches = _batches(pending, batch_size)
        outcomes: List[BatchOutcome] = []
        for index, batch in enumerate(batches):
            outcomes.append(await self.embed_chunks(batch))
            if index < len(batches) - 1:
                await self._sleep(self.batch_delay_seconds)

        total = reduce(lambda acc, outcome: acc + outcome, outcomes, BatchOutcome())
        summary = EmbeddingRunSummary(
            processed=total.processed,
            errors=total.errors,
            batches=len(batches),
            agents=1 if agent_id else 0,
        )
        logger.info(
            "Embedding run complete",
            extra={
                "agent_id": agent_id,
                "processed": summary.processed,
                "errors": summary.errors,
                "batches": summary.batches,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return summary

    async def run_for_agents(
        self, agent_ids: Iterable[str], batch_size: int = 10
    ) -> EmbeddingRunSummary:
        """Run per agent and aggregate the totals."""
        summaries: List[EmbeddingRunSummary] = []
        for agent_id in agent_ids:
            summary = await self.run(agent_id=agent_id, batch_size=batch_size)
            summaries.append(summary.model_copy(update={"agents": 1}))
        return reduce(lambda acc, summary: acc + summary, summaries, EmbeddingRunSummary())

    async def embed_chunks(self, chunks: Sequence[KnowledgeChunk]) -> BatchOutcome:
        """Embed one batch with a single embedding call and patch every chunk."""
        if not chunks:
            return BatchOutcome()

        texts = [chunk.embedding_input() for chunk in chunks]
        try:
            vectors = await self.embeddings.embed_texts(texts)
            if len(vectors) != len(chunks):
                raise UpstreamServiceError(
                    f"expected {len(chunks)} embeddings, got {len(vectors)}"
                )
            for vector in vectors:
                ensure_embedding_dimensions(vector, self.dimensions)
            await asyncio.gather(
                *(
                    self.store.patch_embedding(chunk.id, vector)
                    for chunk, vector in zip(chunks, vectors)
                )
            )
        except Exception as exc:
            logger.warning(
                "Embedding batch failed",
                extra={"batch_size": len(chunks), "error": str(exc)},
            )
            return BatchOutcome(errors=len(chunks))

        return BatchOutcome(processed=len(chunks))
