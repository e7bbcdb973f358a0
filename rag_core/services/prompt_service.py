"""
Prompt assembly for a conversational turn.

Builds a flat message list: one system message carrying persona, retrieved
knowledge, behaviour rules and the response-language directive, then the
recent history, then the current user message.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

from rag_core.models.conversation import Agent, ChatMessage, Message
from rag_core.models.knowledge import KnowledgeProjection
from rag_core.utils.languages import resolve_language_name

DEFAULT_ENTRY_TITLE = "Knowledge Entry"

HistoryItem = Union[Message, ChatMessage]


class PromptAssembler:
    """Deterministic prompt construction; no vendor-specific branching."""

    def __init__(self, max_knowledge_entries: int = 5, max_history_turns: int = 8):
        self.max_knowledge_entries = max_knowledge_entries
        self.max_history_turns = max_history_turns

    def assemble(
        self,
        agent: Agent,
        knowledge: Sequence[KnowledgeProjection],
        history: Sequence[HistoryItem],
        user_message: str,
        locale: Optional[str] = None,
    ) -> List[ChatMessage]:
        system_prompt = self.build_system_prompt(agent, knowledge, locale)
        messages = [ChatMessage(role="system", content=system_prompt)]
        messages.extend(self.trim_history(history))
        messages.append(ChatMessage(role="user", content=user_message))
        return messages

    def build_knowledge_block(self, knowledge: Sequence[KnowledgeProjection]) -> str:
        entries = knowledge[: self.max_knowledge_entries]
        return "\n\n".join(
            f"[{index}] {entry.title or DEFAULT_ENTRY_TITLE}: {entry.content}"
            for index, entry in enumerate(entries, start=1)
        )

    def build_system_prompt(
        self,
        agent: Agent,
        knowledge: Sequence[KnowledgeProjection],
        locale: Optional[str],
    ) -> str:
        language = resolve_language_name(locale)
        knowledge_block = self.build_knowledge_block(knowledge) or "No knowledge entries matched this question."
        persona = f"You are {agent.name}, an AI assistant. {agent.description or ''}".strip()
        return (
            f"{persona}\n\n"
            "You have access to the following knowledge base to help answer questions:\n\n"
            f"{knowledge_block}\n\n"
            "Instructions:\n"
            "- Stay in character as the assistant described above\n"
            "- Use only the knowledge base to provide accurate, helpful responses\n"
            "- If the knowledge base doesn't contain relevant information, say so politely\n"
            "- Be conversational and helpful\n"
            "- Keep responses concise but informative\n"
            "- Reference specific knowledge when relevant\n\n"
            f"LANGUAGE REQUIREMENT: You MUST respond in {language}. "
            f"Always answer in {language} regardless of the language the user writes in."
        )

    def trim_history(self, history: Sequence[HistoryItem]) -> List[ChatMessage]:
        """Keep the most recent turns, reduced to role and content."""
        if self.max_history_turns <= 0:
            return []
        recent = list(history)[-self.max_history_turns :]
        return [ChatMessage(role=_role_value(item), content=item.content) for item in recent]


def _role_value(item: HistoryItem) -> str:
    role = item.role
    return role.value if hasattr(role, "value") else role
