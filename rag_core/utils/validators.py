"""Lightweight validation helpers."""

from typing import Any, Sequence

from rag_core.utils.error_handling import ValidationError

EMBEDDING_DIMENSIONS = 1536


def ensure_present(value: Any, field: str) -> None:
    """Raise ValidationError if value is falsy."""
    if value in (None, "", []) or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")


def ensure_embedding_dimensions(
    vector: Sequence[float], dimensions: int = EMBEDDING_DIMENSIONS
) -> None:
    """Reject vectors that would break the k-NN field mapping."""
    if len(vector) != dimensions:
        raise ValueError(
            f"embedding must have {dimensions} dimensions, got {len(vector)}"
        )
