"""
Wire the pipeline services to their AWS-backed adapters.

Clients are created once per process and reused across warm Lambda
invocations.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import boto3
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool

from rag_core.config import Settings
from rag_core.repositories.dynamodb_repo import DynamoDbConversationStore
from rag_core.repositories.opensearch_repo import (
    OpenSearchKnowledgeStore,
    OpenSearchVectorIndex,
    create_client,
)
from rag_core.repositories.postgres_repo import PostgresQuotaService
from rag_core.services.bedrock_service import BedrockCompletionService, BedrockEmbeddingService
from rag_core.services.embedding_batch_service import EmbeddingBatchCoordinator
from rag_core.services.knowledge_service import KnowledgeService
from rag_core.services.orchestration_service import ResponseOrchestrator
from rag_core.services.prompt_service import PromptAssembler
from rag_core.services.retrieval_service import RetrievalService
from rag_core.utils.cache_service import LRUCache
from rag_core.utils.logging_config import get_logger, resolve_log_level

logger = get_logger(__name__)

_engine: Optional[Engine] = None
_opensearch = None


def get_db_engine(settings: Settings) -> Engine:
    """Get or create the SQLAlchemy engine backing the credit quota."""
    global _engine
    if _engine is None:
        db_url = settings.database_url
        if not db_url and settings.db_secret_arn:
            db_url = _secret_to_db_url(settings.db_secret_arn)
        if not db_url:
            raise RuntimeError("DATABASE_URL or DB_SECRET_ARN must be configured")
        _engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=1,
            max_overflow=2,
            pool_pre_ping=True,
            pool_recycle=300,
        )
    return _engine


def _secret_to_db_url(secret_arn: str) -> Optional[str]:
    """Build a SQLAlchemy URL from an RDS secret."""
    try:
        secret_value = boto3.client("secretsmanager").get_secret_value(SecretId=secret_arn)
        secret = json.loads(secret_value["SecretString"])
    except Exception as exc:
        logger.warning("Failed to load DB secret", extra={"error": str(exc)})
        return None
    host = secret.get("host")
    username = secret.get("username")
    password = secret.get("password")
    if not (host and username and password):
        return None
    port = secret.get("port", 5432)
    dbname = secret.get("dbname", "postgres")
    return f"postgresql+psycopg2://{username}:{password}@{host}:{port}/{dbname}"


def configure_logging(settings: Settings) -> None:
    """Apply the configured level to every package logger created so far."""
    level = resolve_log_level(settings.log_level)
    for name, candidate in list(logging.Logger.manager.loggerDict.items()):
        if name.startswith("rag_core.") and isinstance(candidate, logging.Logger):
            candidate.setLevel(level)


def get_opensearch_client(settings: Settings):
    global _opensearch
    if _opensearch is None:
        _opensearch = create_client(
            settings.opensearch_host, settings.aws_region, port=settings.opensearch_port
        )
    return _opensearch


def build_knowledge_store(settings: Settings) -> OpenSearchKnowledgeStore:
    return OpenSearchKnowledgeStore(
        get_opensearch_client(settings),
        settings.knowledge_index,
        dimensions=settings.embedding_dimensions,
        auto_create_index=True,
    )


def build_embedding_service(settings: Settings) -> BedrockEmbeddingService:
    return BedrockEmbeddingService(
        model_id=settings.embedding_model_id,
        region=settings.aws_region,
        dimensions=settings.embedding_dimensions,
        max_concurrency=settings.embedding_concurrency,
    )


def build_embedding_coordinator(settings: Settings) -> EmbeddingBatchCoordinator:
    configure_logging(settings)
    return EmbeddingBatchCoordinator(
        store=build_knowledge_store(settings),
        embeddings=build_embedding_service(settings),
        page_size=settings.embedding_page_size,
        batch_delay_seconds=settings.embedding_batch_delay_seconds,
        dimensions=settings.embedding_dimensions,
    )


def build_knowledge_service(settings: Settings) -> KnowledgeService:
    coordinator = build_embedding_coordinator(settings)
    return KnowledgeService(
        store=coordinator.store,
        embedder=coordinator,
        max_chunk_size=settings.chunk_max_size,
        chunk_overlap=settings.chunk_overlap,
    )


def build_orchestrator(settings: Settings) -> ResponseOrchestrator:
    configure_logging(settings)
    store = build_knowledge_store(settings)
    retriever = RetrievalService(
        store=store,
        index=OpenSearchVectorIndex(get_opensearch_client(settings), settings.knowledge_index),
        embeddings=build_embedding_service(settings),
        overfetch_factor=settings.retrieval_overfetch_factor,
        scan_limit=settings.text_search_scan_limit,
        cache=LRUCache(max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds),
    )
    return ResponseOrchestrator(
        conversations=DynamoDbConversationStore(
            settings.agents_table, settings.conversations_table, settings.messages_table
        ),
        quota=PostgresQuotaService(
            get_db_engine(settings), default_limit=settings.free_plan_ai_credits
        ),
        retriever=retriever,
        completions=BedrockCompletionService(region=settings.aws_region),
        assembler=PromptAssembler(
            max_knowledge_entries=settings.max_knowledge_entries,
            max_history_turns=settings.max_history_turns,
        ),
        model=settings.completion_model_id,
        temperature=settings.completion_temperature,
        max_tokens=settings.completion_max_tokens,
        retrieval_limit=settings.retrieval_limit,
        credit_cost=settings.ai_credit_cost,
    )
