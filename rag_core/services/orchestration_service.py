"""
Conversational turn orchestration.

validating -> quota check -> persist user message -> retrieve -> generate ->
persist assistant message. Failures before the user message is stored are
raised; anything after it is absorbed into a polite assistant message so the
conversation always advances.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from rag_core.models.conversation import (
    Agent,
    CompletionOptions,
    CompletionResult,
    Conversation,
    Message,
    MessageRole,
)
from rag_core.models.knowledge import KnowledgeProjection
from rag_core.models.turn import TurnResult, TurnState, TurnTrace
from rag_core.repositories.base import CompletionService, ConversationStore, QuotaService
from rag_core.services.prompt_service import PromptAssembler
from rag_core.services.retrieval_service import RetrievalService
from rag_core.utils.error_handling import (
    MalformedResponseError,
    NotFoundError,
    QuotaExceededError,
)
from rag_core.utils.logging_config import get_logger
from rag_core.utils.validators import ensure_present

logger = get_logger(__name__)

APOLOGY_MESSAGE = (
    "I apologize, but I'm having trouble generating a response right now. Please try again."
)
EMPTY_COMPLETION_MESSAGE = "I apologize, but I couldn't generate a response."
ERROR_MODEL_TAG = "error"


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ResponseOrchestrator:
    """Run one conversational turn end to end."""

    def __init__(
        self,
        conversations: ConversationStore,
        quota: QuotaService,
        retriever: RetrievalService,
        completions: CompletionService,
        assembler: Optional[PromptAssembler] = None,
        model: str = "anthropic.claude-3-haiku-20240307-v1:0",
        temperature: float = 0.7,
        max_tokens: int = 500,
        retrieval_limit: int = 5,
        credit_cost: int = 1,
    ):
        self.conversations = conversations
        self.quota = quota
        self.retriever = retriever
        self.completions = completions
        self.assembler = assembler or PromptAssembler()
        self.options = CompletionOptions(
            model=model, temperature=temperature, max_tokens=max_tokens, stream=False
        )
        self.retrieval_limit = retrieval_limit
        self.credit_cost = credit_cost

    async def generate_response(
        self,
        conversation_id: str,
        user_message: str,
        submitter_id: str,
        locale: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> TurnResult:
        """
        Answer ``user_message`` in ``conversation_id``.

        Raises NotFoundError, ValidationError or QuotaExceededError before any
        write; never raises once the user message has been persisted.
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        started_at = datetime.now(timezone.utc)
        turn_start = time.perf_counter()

        state = TurnState.VALIDATING
        try:
            ensure_present(user_message, "user_message")
            conversation, agent = await self._resolve(conversation_id)

            state = TurnState.QUOTA_CHECK
            await self._check_quota(agent, correlation_id)

            state = TurnState.PERSISTING_USER_MESSAGE
            user_record = await self.conversations.append_message(
                conversation.id,
                MessageRole.USER,
                user_message,
                {"user_id": submitter_id},
            )
        except Exception as exc:
            logger.warning(
                "Turn rejected before the user message was stored",
                extra={
                    "correlation_id": correlation_id,
                    "conversation_id": conversation_id,
                    "failed_state": state.value,
                    "error": str(exc),
                },
            )
            raise

        state = TurnState.RETRIEVING
        retrieval_ms = 0
        generation_ms = 0
        try:
            r_start = time.perf_counter()
            knowledge = await self._retrieve(agent, user_message)
            history = await self._history(conversation.id, user_record.id)
            retrieval_ms = _elapsed_ms(r_start)

            state = TurnState.GENERATING
            g_start = time.perf_counter()
            completion = await self._generate(agent, knowledge, history, user_message, locale)
            generation_ms = _elapsed_ms(g_start)

            state = TurnState.PERSISTING_ASSISTANT_MESSAGE
            reply = completion.first_content() or EMPTY_COMPLETION_MESSAGE
            metadata = {"model": completion.model or self.options.model, "knowledge_used": len(knowledge)}
            if completion.input_tokens is not None:
                metadata["input_tokens"] = completion.input_tokens
            if completion.output_tokens is not None:
                metadata["output_tokens"] = completion.output_tokens
            assistant = await self.conversations.append_message(
                conversation.id, MessageRole.ASSISTANT, reply, metadata
            )
        except Exception as exc:
            logger.exception(
                "Turn degraded after user message was stored",
                extra={
                    "correlation_id": correlation_id,
                    "conversation_id": conversation.id,
                    "failed_state": state.value,
                },
            )
            return await self._degrade(
                conversation, user_record, exc, correlation_id, started_at, turn_start,
                retrieval_ms, generation_ms, state,
            )

        await self._record_usage(agent, correlation_id)

        trace = TurnTrace(
            retrieval_latency_ms=retrieval_ms,
            generation_latency_ms=generation_ms,
            total_latency_ms=_elapsed_ms(turn_start),
            state=TurnState.DONE,
            started_at=started_at,
            correlation_id=correlation_id,
        )
        logger.info(
            "Turn complete",
            extra={
                "correlation_id": correlation_id,
                "conversation_id": conversation.id,
                "knowledge_used": len(knowledge),
                "total_latency_ms": trace.total_latency_ms,
            },
        )
        return TurnResult(
            message_id=assistant.id,
            user_message_id=user_record.id,
            content=reply,
            knowledge_used=len(knowledge),
            trace=trace,
        )

    async def _resolve(self, conversation_id: str) -> tuple[Conversation, Agent]:
        conversation = await self.conversations.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        agent = await self.conversations.get_agent(conversation.agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        return conversation, agent

    async def _check_quota(self, agent: Agent, correlation_id: str) -> None:
        status = await self.quota.check(agent.organization_id)
        if not status.allowed:
            logger.warning(
                "AI credit limit reached",
                extra={
                    "correlation_id": correlation_id,
                    "organization_id": agent.organization_id,
                    "current": status.current,
                    "limit": status.limit,
                },
            )
            raise QuotaExceededError(current=status.current, limit=status.limit)

    async def _retrieve(self, agent: Agent, query: str) -> List[KnowledgeProjection]:
        results = await self.retriever.retrieve(agent.id, query, limit=self.retrieval_limit)
        return [result.project() for result in results]

    async def _history(self, conversation_id: str, exclude_id: str) -> List[Message]:
        recent = await self.conversations.list_recent_messages(
            conversation_id, limit=self.assembler.max_history_turns + 1
        )
        return [message for message in recent if message.id != exclude_id]

    async def _generate(
        self,
        agent: Agent,
        knowledge: List[KnowledgeProjection],
        history: List[Message],
        user_message: str,
        locale: Optional[str],
    ) -> CompletionResult:
        messages = self.assembler.assemble(
            agent, knowledge, history, user_message, locale or agent.language
        )
        completion = await self.completions.complete(messages, self.options)
        if not isinstance(completion, CompletionResult):
            raise MalformedResponseError("Unexpected streaming response from completion service")
        return completion

    async def _record_usage(self, agent: Agent, correlation_id: str) -> None:
        try:
            await self.quota.record_usage(agent.organization_id, self.credit_cost)
        except Exception as exc:
            logger.error(
                "Failed to record AI credit usage",
                extra={
                    "correlation_id": correlation_id,
                    "organization_id": agent.organization_id,
                    "error": str(exc),
                },
            )

    async def _degrade(
        self,
        conversation: Conversation,
        user_record: Message,
        error: Exception,
        correlation_id: str,
        started_at: datetime,
        turn_start: float,
        retrieval_ms: int,
        generation_ms: int,
        failed_state: TurnState,
    ) -> TurnResult:
        metadata = {"model": ERROR_MODEL_TAG, "error": str(error) or type(error).__name__}
        try:
            apology = await self.conversations.append_message(
                conversation.id, MessageRole.ASSISTANT, APOLOGY_MESSAGE, metadata
            )
            message_id = apology.id
        except Exception:
            logger.exception(
                "Failed to store apology message",
                extra={"correlation_id": correlation_id, "conversation_id": conversation.id},
            )
            message_id = ""

        trace = TurnTrace(
            retrieval_latency_ms=retrieval_ms,
            generation_latency_ms=generation_ms,
            total_latency_ms=_elapsed_ms(turn_start),
            state=TurnState.DEGRADED,
            failed_state=failed_state,
            started_at=started_at,
            correlation_id=correlation_id,
        )
        return TurnResult(
            message_id=message_id,
            user_message_id=user_record.id,
            content=APOLOGY_MESSAGE,
            degraded=True,
            trace=trace,
        )
