"""Pydantic models for the RAG pipeline."""

from rag_core.models.conversation import (  # noqa: F401
    Agent,
    ChatMessage,
    CompletionChoice,
    CompletionMessage,
    CompletionOptions,
    CompletionResponse,
    CompletionResult,
    Conversation,
    Message,
    MessageRole,
    StreamingCompletion,
)
from rag_core.models.knowledge import (  # noqa: F401
    DocumentMeta,
    KnowledgeChunk,
    KnowledgeProjection,
    KnowledgeSource,
    KnowledgeStats,
    QnAMeta,
    RetrievalResult,
    SourceMetadata,
    TextMeta,
    UrlMeta,
)
from rag_core.models.turn import TurnResult, TurnState, TurnTrace  # noqa: F401
from rag_core.models.usage import BatchOutcome, EmbeddingRunSummary, QuotaStatus  # noqa: F401
