"""
Embedding sync handler triggered on a schedule (EventBridge) or manually via
POST /agents/{agent_id}/knowledge/embeddings.

Embeds pending knowledge chunks in paced batches and reports the totals.
"""

from __future__ import annotations

import asyncio
import json
from typing import Dict

from rag_core.utils.error_handling import AppError, to_response
from rag_core.utils.logging_config import get_logger

logger = get_logger(__name__)

_coordinator = None
_batch_size = None


def _get_coordinator():
    """Lazy-load EmbeddingBatchCoordinator."""
    global _coordinator, _batch_size
    if _coordinator is None:
        from rag_core.bootstrap import build_embedding_coordinator
        from rag_core.config import Settings

        settings = Settings.from_environment()
        _coordinator = build_embedding_coordinator(settings)
        _batch_size = settings.embedding_batch_size
    return _coordinator


def lambda_handler(event, context) -> Dict:
    """Run one embedding pass for an agent, a list of agents, or every agent."""
    event = event or {}
    try:
        coordinator = _get_coordinator()
        payload = json.loads(event["body"]) if event.get("body") else event
        agent_id = (event.get("pathParameters") or {}).get("agent_id") or payload.get("agent_id")
        agent_ids = payload.get("agent_ids")
        requested = payload.get("batch_size")
        batch_size = int(requested) if requested is not None else (_batch_size or 10)

        if agent_ids:
            summary = asyncio.run(coordinator.run_for_agents(agent_ids, batch_size=batch_size))
        else:
            summary = asyncio.run(coordinator.run(agent_id=agent_id, batch_size=batch_size))

        body = {"message": summary.message, **summary.model_dump()}
        return {
            "statusCode": 200,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }
    except AppError as exc:
        return to_response(exc)
    except Exception as exc:
        logger.exception("Embedding sync failed")
        return {
            "statusCode": 500,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps({"message": "Embedding sync failed", "error": str(exc)}),
        }
