"""Agent, conversation and message models consumed by the turn pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Agent(BaseModel):
    """Tenant-scoped chatbot configuration."""

    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None


class Conversation(BaseModel):
    id: str
    agent_id: str
    title: Optional[str] = None


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """Persisted conversation message."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatMessage(BaseModel):
    """Prompt entry sent to the completion service; carries no internal metadata."""

    role: Literal["system", "user", "assistant"]
    content: str


class CompletionOptions(BaseModel):
    model: str
    temperature: float = 0.7
    max_tokens: int = 500
    stream: bool = False


class CompletionMessage(BaseModel):
    content: Optional[str] = None


class CompletionChoice(BaseModel):
    message: CompletionMessage


class CompletionResult(BaseModel):
    """Non-streaming completion shape."""

    choices: List[CompletionChoice] = Field(default_factory=list)
    model: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    def first_content(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].message.content


class StreamingCompletion(BaseModel):
    """Streaming completion shape; the event stream is consumed by the caller."""

    model_config = {"arbitrary_types_allowed": True}

    stream: Any
    model: Optional[str] = None


CompletionResponse = Union[CompletionResult, StreamingCompletion]
