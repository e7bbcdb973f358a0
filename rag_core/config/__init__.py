"""Runtime configuration."""

from rag_core.config.settings import Settings  # noqa: F401
