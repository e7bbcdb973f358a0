"""Knowledge chunk models and the retrieval result shape."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from rag_core.utils.validators import ensure_embedding_dimensions


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeSource(str, Enum):
    """Where a knowledge chunk came from."""

    TEXT = "text"
    DOCUMENT = "document"
    URL = "url"
    QNA = "qna"


class TextMeta(BaseModel):
    source: Literal["text"] = "text"


class DocumentMeta(BaseModel):
    """Uploaded file; chunk fields are set only for multi-chunk documents."""

    source: Literal["document"] = "document"
    filename: str
    file_id: Optional[str] = None
    file_size: Optional[int] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None


class UrlMeta(BaseModel):
    source: Literal["url"] = "url"
    url: str
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None


class QnAMeta(BaseModel):
    source: Literal["qna"] = "qna"
    question: str


SourceMetadata = Annotated[
    Union[TextMeta, DocumentMeta, UrlMeta, QnAMeta],
    Field(discriminator="source"),
]


class KnowledgeChunk(BaseModel):
    """Unit of embedding and retrieval, owned by exactly one agent."""

    id: str
    agent_id: str
    title: Optional[str] = None
    content: str
    source: KnowledgeSource
    source_metadata: Optional[SourceMetadata] = None
    file_id: Optional[str] = None
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("embedding")
    @classmethod
    def validate_embedding(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        """A chunk is either pending (None) or carries a full 1536-d vector."""
        if value is not None:
            ensure_embedding_dimensions(value)
        return value

    @model_validator(mode="after")
    def validate_metadata_source(self) -> "KnowledgeChunk":
        if self.source_metadata is not None and self.source_metadata.source != self.source.value:
            raise ValueError(
                f"source_metadata is tagged {self.source_metadata.source!r} "
                f"but chunk source is {self.source.value!r}"
            )
        return self

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def embedding_input(self) -> str:
        """Text sent to the embedding model: title and content when titled."""
        if self.title:
            return f"{self.title}\n\n{self.content}"
        return self.content


class KnowledgeProjection(BaseModel):
    """Minimal view of a chunk handed to the prompt layer."""

    id: str
    title: Optional[str] = None
    content: str
    source: KnowledgeSource
    score: float


class RetrievalResult(BaseModel):
    """
    A retrieved chunk and its similarity score.

    ``score == 0`` marks an unranked hit from the substring fallback.
    """

    chunk: KnowledgeChunk
    score: float = 0.0

    @property
    def is_unranked(self) -> bool:
        return self.score == 0

    def project(self) -> KnowledgeProjection:
        return KnowledgeProjection(
            id=self.chunk.id,
            title=self.chunk.title,
            content=self.chunk.content,
            source=self.chunk.source,
            score=self.score,
        )


class KnowledgeStats(BaseModel):
    """Embedding coverage for one agent's knowledge."""

    total_entries: int
    entries_with_embeddings: int
    entries_needing_embeddings: int
    embedding_progress: float = Field(ge=0, le=100)

    @classmethod
    def from_counts(cls, total: int, embedded: int) -> "KnowledgeStats":
        return cls(
            total_entries=total,
            entries_with_embeddings=embedded,
            entries_needing_embeddings=total - embedded,
            embedding_progress=(embedded / total) * 100 if total else 0.0,
        )
