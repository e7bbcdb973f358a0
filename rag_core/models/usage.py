"""Quota and batch-embedding bookkeeping models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class QuotaStatus(BaseModel):
    """AI credit allowance for one organization in the current period."""

    allowed: bool
    current: int
    limit: int
    remaining: int = 0

    @classmethod
    def from_usage(cls, current: int, limit: int, allowed: Optional[bool] = None) -> "QuotaStatus":
        return cls(
            allowed=current < limit if allowed is None else allowed,
            current=current,
            limit=limit,
            remaining=max(0, limit - current),
        )


class BatchOutcome(BaseModel):
    """Counts for one embedding batch; outcomes fold with ``+``."""

    processed: int = 0
    errors: int = 0

    def __add__(self, other: "BatchOutcome") -> "BatchOutcome":
        return BatchOutcome(
            processed=self.processed + other.processed,
            errors=self.errors + other.errors,
        )


class EmbeddingRunSummary(BaseModel):
    """Totals for an embedding run across batches (and agents)."""

    processed: int = 0
    errors: int = 0
    batches: int = 0
    agents: int = Field(default=0, description="agents covered by an all-agents run")

    @property
    def message(self) -> str:
        if self.batches == 0:
            return "All knowledge entries already have embeddings"
        return f"Generated embeddings for {self.processed} knowledge entries"

    def __add__(self, other: "EmbeddingRunSummary") -> "EmbeddingRunSummary":
        return EmbeddingRunSummary(
            processed=self.processed + other.processed,
            errors=self.errors + other.errors,
            batches=self.batches + other.batches,
            agents=self.agents + other.agents,
        )
