"""Per-turn state and result models for the response orchestrator."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class TurnState(str, Enum):
    """Stages a conversational turn moves through."""

    VALIDATING = "validating"
    QUOTA_CHECK = "quota_check"
    PERSISTING_USER_MESSAGE = "persisting_user_message"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    PERSISTING_ASSISTANT_MESSAGE = "persisting_assistant_message"
    DONE = "done"
    DEGRADED = "degraded"


class TurnTrace(BaseModel):
    """Lightweight timing trace for one turn."""

    retrieval_latency_ms: int = 0
    generation_latency_ms: int = 0
    total_latency_ms: int = 0
    state: TurnState
    failed_state: Optional[TurnState] = None
    started_at: datetime
    correlation_id: str


class TurnResult(BaseModel):
    """Outcome returned to the caller of a conversational turn."""

    message_id: str
    user_message_id: str
    content: str
    degraded: bool = False
    knowledge_used: int = 0
    trace: TurnTrace
