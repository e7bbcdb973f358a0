"""
Chat handler for POST /conversations/{conversation_id}/messages.

Runs one conversational turn: quota check, retrieval, generation and
persistence of both messages.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict, Optional

from rag_core.utils.error_handling import AppError, ValidationError, to_response
from rag_core.utils.logging_config import get_logger

logger = get_logger(__name__)

# Lazy-loaded orchestrator, reused across warm invocations
_orchestrator = None


def _get_orchestrator():
    """Lazy-load ResponseOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        from rag_core.bootstrap import build_orchestrator
        from rag_core.config import Settings

        _orchestrator = build_orchestrator(Settings.from_environment())
    return _orchestrator


def _submitter_id(event: Dict[str, Any], payload: Dict[str, Any]) -> Optional[str]:
    claims = (
        event.get("requestContext", {}).get("authorizer", {}).get("claims", {})
    )
    return claims.get("sub") or payload.get("user_id")


def lambda_handler(event, context) -> Dict:
    correlation_id = str(uuid.uuid4())
    try:
        payload = json.loads(event.get("body") or "{}")
        conversation_id = (event.get("pathParameters") or {}).get(
            "conversation_id"
        ) or payload.get("conversation_id")
        if not conversation_id:
            raise ValidationError("conversation_id is required")
        submitter_id = _submitter_id(event, payload)
        if not submitter_id:
            raise ValidationError("user_id is required")

        result = asyncio.run(
            _get_orchestrator().generate_response(
                conversation_id=conversation_id,
                user_message=payload.get("message", ""),
                submitter_id=submitter_id,
                locale=payload.get("locale"),
                correlation_id=correlation_id,
            )
        )
        logger.info(
            "Chat turn handled",
            extra={
                "correlation_id": correlation_id,
                "conversation_id": conversation_id,
                "degraded": result.degraded,
            },
        )
        return {
            "statusCode": 200,
            "headers": {"Content-Type": "application/json"},
            "body": result.model_dump_json(),
        }
    except AppError as exc:
        logger.warning(
            "Chat turn rejected",
            extra={"correlation_id": correlation_id, "error": str(exc)},
        )
        return to_response(exc)
    except json.JSONDecodeError:
        return to_response(ValidationError("Request body must be valid JSON"))
    except Exception as exc:
        logger.exception("Chat turn failed", extra={"correlation_id": correlation_id})
        return {
            "statusCode": 500,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(
                {
                    "message": "Failed to generate response",
                    "error": str(exc),
                    "correlation_id": correlation_id,
                }
            ),
        }
