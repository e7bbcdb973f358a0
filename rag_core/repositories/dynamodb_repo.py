"""DynamoDB repository for agents, conversations and messages."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3

from rag_core.models.conversation import Agent, Conversation, Message, MessageRole
from rag_core.utils.logging_config import get_logger

logger = get_logger(__name__)


def message_sort_key(created_at: datetime, message_id: str) -> str:
    """ISO timestamp first so the range key sorts chronologically."""
    return f"{created_at.isoformat()}#{message_id}"


def _from_item(item: Dict[str, Any]) -> Message:
    return Message.model_validate(
        {
            "id": item["id"],
            "conversation_id": item["conversation_id"],
            "role": item["role"],
            "content": item["content"],
            "metadata": item.get("metadata") or {},
            "created_at": item["created_at"],
        }
    )


class DynamoDbConversationStore:
    """
    Conversation persistence over three tables.

    agents and conversations are keyed by ``id``; messages use
    ``conversation_id`` as partition key and ``sort_key`` as range key.
    """

    def __init__(
        self,
        agents_table: str,
        conversations_table: str,
        messages_table: str,
        resource=None,
    ):
        resource = resource or boto3.resource("dynamodb")
        self.agents = resource.Table(agents_table)
        self.conversations = resource.Table(conversations_table)
        self.messages = resource.Table(messages_table)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        item = await self._get(self.conversations, conversation_id)
        return Conversation.model_validate(item) if item else None

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        item = await self._get(self.agents, agent_id)
        return Agent.model_validate(item) if item else None

    async def list_recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        resp = await asyncio.to_thread(
            self.messages.query,
            KeyConditionExpression="conversation_id = :cid",
            ExpressionAttributeValues={":cid": conversation_id},
            ScanIndexForward=False,
            Limit=limit,
        )
        items = resp.get("Items", [])
        return [_from_item(item) for item in reversed(items)]

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        item = {
            "conversation_id": conversation_id,
            "sort_key": message_sort_key(message.created_at, message.id),
            "id": message.id,
            "role": message.role.value,
            "content": message.content,
            "metadata": message.metadata,
            "created_at": message.created_at.isoformat(),
        }
        await asyncio.to_thread(self.messages.put_item, Item=item)
        logger.info(
            "Message stored",
            extra={"conversation_id": conversation_id, "message_id": message.id, "role": message.role.value},
        )
        return message

    async def _get(self, table, key: str) -> Optional[Dict[str, Any]]:
        resp = await asyncio.to_thread(table.get_item, Key={"id": key})
        return resp.get("Item")
