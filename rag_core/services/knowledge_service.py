"""
Knowledge ingestion and maintenance.

Turns extracted document text, crawled page text and manual entries into
unembedded knowledge chunks. Editing a chunk's text clears its embedding so
the next embedding run picks it up again.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from rag_core.models.knowledge import (
    DocumentMeta,
    KnowledgeChunk,
    KnowledgeSource,
    KnowledgeStats,
    QnAMeta,
    SourceMetadata,
    TextMeta,
    UrlMeta,
)
from rag_core.repositories.base import KnowledgeStore
from rag_core.services.chunking_service import build_chunk_title, chunk_text
from rag_core.services.embedding_batch_service import EmbeddingBatchCoordinator
from rag_core.utils.error_handling import NotFoundError, ValidationError
from rag_core.utils.logging_config import get_logger
from rag_core.utils.validators import ensure_present

logger = get_logger(__name__)


class KnowledgeService:
    """Create, edit and delete an agent's knowledge chunks."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Optional[EmbeddingBatchCoordinator] = None,
        max_chunk_size: int = 1000,
        chunk_overlap: int = 100,
    ):
        self.store = store
        self.embedder = embedder
        self.max_chunk_size = max_chunk_size
        self.chunk_overlap = chunk_overlap

    async def ingest_text(
        self,
        agent_id: str,
        text: str,
        source: KnowledgeSource = KnowledgeSource.TEXT,
        base_title: Optional[str] = None,
        filename: Optional[str] = None,
        url: Optional[str] = None,
        file_id: Optional[str] = None,
        file_size: Optional[int] = None,
        embed_now: bool = False,
    ) -> List[str]:
        """Chunk ``text`` and store one unembedded chunk per piece; return the ids."""
        ensure_present(agent_id, "agent_id")
        pieces = chunk_text(text, self.max_chunk_size, self.chunk_overlap)
        if not pieces:
            raise ValidationError("No text content to ingest")

        total = len(pieces)
        base = base_title or filename or url
        chunks = [
            KnowledgeChunk(
                id=str(uuid.uuid4()),
                agent_id=agent_id,
                title=build_chunk_title(base, index, total),
                content=piece,
                source=source,
                source_metadata=_metadata_for(
                    source, index, total, filename=filename, url=url,
                    file_id=file_id, file_size=file_size,
                ),
                file_id=file_id,
            )
            for index, piece in enumerate(pieces)
        ]
        ids = [await self.store.insert(chunk) for chunk in chunks]

        logger.info(
            "Knowledge ingested",
            extra={
                "agent_id": agent_id,
                "source": source.value,
                "chunks": total,
                "text_length": len(text),
            },
        )

        if embed_now and self.embedder is not None:
            outcome = await self.embedder.embed_chunks(chunks)
            if outcome.errors:
                logger.warning(
                    "Chunks stored without embeddings; next embedding run will retry",
                    extra={"agent_id": agent_id, "errors": outcome.errors},
                )
        return ids

    async def add_entry(
        self,
        agent_id: str,
        content: str,
        source: KnowledgeSource = KnowledgeSource.TEXT,
        title: Optional[str] = None,
        source_metadata: Optional[SourceMetadata] = None,
    ) -> str:
        """Store a single manual entry without chunking."""
        ensure_present(agent_id, "agent_id")
        ensure_present(content, "content")
        chunk = KnowledgeChunk(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            title=title,
            content=content.strip(),
            source=source,
            source_metadata=source_metadata,
        )
        return await self.store.insert(chunk)

    async def add_qna(self, agent_id: str, question: str, answer: str) -> str:
        ensure_present(question, "question")
        ensure_present(answer, "answer")
        return await self.add_entry(
            agent_id,
            content=answer,
            source=KnowledgeSource.QNA,
            title=question.strip(),
            source_metadata=QnAMeta(question=question.strip()),
        )

    async def update_entry(
        self,
        chunk_id: str,
        content: Optional[str] = None,
        title: Optional[str] = None,
    ) -> KnowledgeChunk:
        """Edit a chunk; any change to embedded text clears the stale vector."""
        chunk = await self.store.get(chunk_id)
        if chunk is None:
            raise NotFoundError("Knowledge entry not found")

        changes = {}
        if content is not None:
            ensure_present(content, "content")
            changes["content"] = content.strip()
        if title is not None:
            changes["title"] = title.strip() or None

        if not any(getattr(chunk, field) != value for field, value in changes.items()):
            return chunk

        changes["embedding"] = None
        changes["updated_at"] = datetime.now(timezone.utc)
        updated = chunk.model_copy(update=changes)
        await self.store.update(updated)
        logger.info("Knowledge entry updated", extra={"chunk_id": chunk_id, "agent_id": chunk.agent_id})
        return updated

    async def delete_entry(self, chunk_id: str) -> None:
        chunk = await self.store.get(chunk_id)
        if chunk is None:
            raise NotFoundError("Knowledge entry not found")
        await self.store.delete(chunk_id)
        logger.info("Knowledge entry deleted", extra={"chunk_id": chunk_id, "agent_id": chunk.agent_id})

    async def stats(self, agent_id: str) -> KnowledgeStats:
        total, embedded = await self.store.count_for_agent(agent_id)
        return KnowledgeStats.from_counts(total, embedded)


def _metadata_for(
    source: KnowledgeSource,
    index: int,
    total: int,
    filename: Optional[str] = None,
    url: Optional[str] = None,
    file_id: Optional[str] = None,
    file_size: Optional[int] = None,
) -> Optional[SourceMetadata]:
    """Build source metadata; chunk position is recorded only for multi-chunk sources."""
    position = {"chunk_index": index, "total_chunks": total} if total > 1 else {}
    if source is KnowledgeSource.DOCUMENT:
        if not filename:
            raise ValidationError("filename is required for document knowledge")
        return DocumentMeta(filename=filename, file_id=file_id, file_size=file_size, **position)
    if source is KnowledgeSource.URL:
        if not url:
            raise ValidationError("url is required for url knowledge")
        return UrlMeta(url=url, **position)
    if source is KnowledgeSource.QNA:
        raise ValidationError("Q&A entries are added with add_qna")
    return TextMeta()
