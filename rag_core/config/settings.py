"""
Environment-specific configuration settings.

Defaults mirror the production chatbot behaviour; every field can be
overridden through environment variables.
"""

from dataclasses import dataclass
import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass
class Settings:
    """Application settings."""

    # Environment
    environment: str = "dev"
    aws_region: str = "eu-west-2"
    log_level: str = "INFO"

    # Bedrock configuration
    completion_model_id: str = "anthropic.claude-3-haiku-20240307-v1:0"
    completion_temperature: float = 0.7
    completion_max_tokens: int = 500
    embedding_model_id: str = "amazon.titan-embed-text-v1"  # 1536 dimensions
    embedding_dimensions: int = 1536
    embedding_concurrency: int = 5

    # Chunking
    chunk_max_size: int = 1000
    chunk_overlap: int = 100

    # Batch embedding
    embedding_batch_size: int = 10
    embedding_page_size: int = 100
    embedding_batch_delay_seconds: float = 1.0

    # Retrieval
    retrieval_limit: int = 5
    retrieval_overfetch_factor: int = 3
    text_search_scan_limit: int = 1000

    # Prompting
    max_knowledge_entries: int = 5
    max_history_turns: int = 8

    # Credits
    ai_credit_cost: int = 1
    free_plan_ai_credits: int = 100

    # Storage
    opensearch_host: str = "localhost"
    opensearch_port: int = 443
    knowledge_index: str = "knowledge-chunks"
    agents_table: str = "chatbot-agents"
    conversations_table: str = "chatbot-conversations"
    messages_table: str = "chatbot-messages"
    database_url: Optional[str] = None
    db_secret_arn: Optional[str] = None

    # Cache configuration
    cache_ttl_seconds: int = 300
    cache_max_size: int = 100

    @classmethod
    def from_environment(cls) -> "Settings":
        """Load settings from environment variables."""
        env = os.environ.get("ENVIRONMENT", "dev")
        settings = cls(
            environment=env,
            log_level=os.environ.get("LOG_LEVEL", cls.log_level),
            aws_region=(
                os.environ.get("BEDROCK_REGION")
                or os.environ.get("AWS_REGION")
                or cls.aws_region
            ),
            completion_model_id=os.environ.get("MODEL_ID", cls.completion_model_id),
            completion_temperature=_env_float("MODEL_TEMPERATURE", cls.completion_temperature),
            completion_max_tokens=_env_int("MODEL_MAX_TOKENS", cls.completion_max_tokens),
            embedding_model_id=os.environ.get("EMBEDDING_MODEL_ID", cls.embedding_model_id),
            embedding_concurrency=_env_int("EMBEDDING_CONCURRENCY", cls.embedding_concurrency),
            chunk_max_size=_env_int("CHUNK_MAX_SIZE", cls.chunk_max_size),
            chunk_overlap=_env_int("CHUNK_OVERLAP", cls.chunk_overlap),
            embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", cls.embedding_batch_size),
            embedding_page_size=_env_int("EMBEDDING_PAGE_SIZE", cls.embedding_page_size),
            embedding_batch_delay_seconds=_env_float(
                "EMBEDDING_BATCH_DELAY_SECONDS", cls.embedding_batch_delay_seconds
            ),
            retrieval_limit=_env_int("RETRIEVAL_LIMIT", cls.retrieval_limit),
            retrieval_overfetch_factor=_env_int(
                "RETRIEVAL_OVERFETCH_FACTOR", cls.retrieval_overfetch_factor
            ),
            text_search_scan_limit=_env_int("TEXT_SEARCH_SCAN_LIMIT", cls.text_search_scan_limit),
            ai_credit_cost=_env_int("AI_CREDIT_COST", cls.ai_credit_cost),
            free_plan_ai_credits=_env_int("FREE_PLAN_AI_CREDITS", cls.free_plan_ai_credits),
            opensearch_host=os.environ.get("OPENSEARCH_HOST", cls.opensearch_host),
            opensearch_port=_env_int("OPENSEARCH_PORT", cls.opensearch_port),
            knowledge_index=os.environ.get("KNOWLEDGE_INDEX", cls.knowledge_index),
            agents_table=os.environ.get("AGENTS_TABLE", cls.agents_table),
            conversations_table=os.environ.get("CONVERSATIONS_TABLE", cls.conversations_table),
            messages_table=os.environ.get("MESSAGES_TABLE", cls.messages_table),
            database_url=os.environ.get("DATABASE_URL"),
            db_secret_arn=os.environ.get("DB_SECRET_ARN"),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
            cache_max_size=_env_int("CACHE_MAX_SIZE", cls.cache_max_size),
        )

        # Production overrides
        if env == "prod":
            settings.embedding_page_size = max(settings.embedding_page_size, 200)
            settings.cache_max_size = max(settings.cache_max_size, 500)

        return settings
