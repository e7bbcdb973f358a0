"""
Knowledge retrieval for a user query.

Vector similarity is the primary path. When the embedding service or index
fails, or no embedded chunk of the agent matches, retrieval falls back to a
case-insensitive substring scan whose hits carry the unranked score 0.
Retrieval never raises to its caller.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional

from rag_core.models.knowledge import KnowledgeChunk, RetrievalResult
from rag_core.repositories.base import EmbeddingService, KnowledgeStore, VectorIndex
from rag_core.utils.cache_service import LRUCache, make_cache_key
from rag_core.utils.logging_config import get_logger

logger = get_logger(__name__)

UNRANKED_SCORE = 0.0


class RetrievalService:
    """Return an agent's most relevant knowledge chunks for a query."""

    def __init__(
        self,
        store: KnowledgeStore,
        index: VectorIndex,
        embeddings: EmbeddingService,
        overfetch_factor: int = 3,
        scan_limit: int = 1000,
        cache: Optional[LRUCache] = None,
    ):
        self.store = store
        self.index = index
        self.embeddings = embeddings
        self.overfetch_factor = max(1, overfetch_factor)
        self.scan_limit = scan_limit
        self.cache = cache if cache is not None else LRUCache(max_size=100, ttl_seconds=300)

    async def retrieve(self, agent_id: str, query: str, limit: int = 5) -> List[RetrievalResult]:
        """Vector search with substring fallback, restricted to ``agent_id``."""
        start = time.perf_counter()
        path = "vector"
        try:
            results = await self.semantic_search(agent_id, query, limit)
            if not results:
                path = "text"
                results = await self.search_text(agent_id, query, limit)
        except Exception as exc:
            logger.warning(
                "Vector search failed, falling back to text search",
                extra={"agent_id": agent_id, "error": str(exc)},
            )
            path = "text"
            results = await self.search_text(agent_id, query, limit)

        logger.info(
            "Knowledge retrieved",
            extra={
                "agent_id": agent_id,
                "path": path,
                "results_count": len(results),
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return results

    async def semantic_search(
        self, agent_id: str, query: str, limit: int
    ) -> List[RetrievalResult]:
        """
        Nearest-neighbour search, post-filtered to the agent.

        The index is shared by every agent, so candidates are over-fetched
        and foreign chunks dropped before truncating to ``limit``.
        """
        vector = await self._embed_query(query)
        candidates = await self.index.nearest_neighbors(vector, limit * self.overfetch_factor)
        if not candidates:
            return []

        chunks = await asyncio.gather(*(self.store.get(chunk_id) for chunk_id, _ in candidates))
        results = [
            RetrievalResult(chunk=chunk, score=score)
            for chunk, (_, score) in zip(chunks, candidates)
            if chunk is not None and chunk.agent_id == agent_id
        ]
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]

    async def search_text(self, agent_id: str, query: str, limit: int) -> List[RetrievalResult]:
        """Case-insensitive substring match over content and title, storage order."""
        try:
            chunks = await self.store.list_for_agent(agent_id, limit=self.scan_limit)
        except Exception as exc:
            logger.error(
                "Text search failed",
                extra={"agent_id": agent_id, "error": str(exc)},
            )
            return []

        needle = query.lower()
        matches = [chunk for chunk in chunks if _matches(chunk, needle, agent_id)]
        return [RetrievalResult(chunk=chunk, score=UNRANKED_SCORE) for chunk in matches[:limit]]

    async def _embed_query(self, query: str) -> List[float]:
        key = make_cache_key("query", query)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        vector = await self.embeddings.embed_text(query)
        self.cache.set(key, vector)
        return vector


def _matches(chunk: KnowledgeChunk, needle: str, agent_id: str) -> bool:
    if chunk.agent_id != agent_id:
        return False
    if needle in chunk.content.lower():
        return True
    return bool(chunk.title) and needle in chunk.title.lower()
