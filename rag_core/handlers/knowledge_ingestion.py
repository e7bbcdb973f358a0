"""
Knowledge handler for /agents/{agent_id}/knowledge.

POST ingests extracted document or page text (or a Q&A pair), PUT edits an
entry, DELETE removes one and GET returns embedding coverage.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict

from rag_core.models.knowledge import KnowledgeSource
from rag_core.utils.error_handling import AppError, ValidationError, to_response
from rag_core.utils.logging_config import get_logger

logger = get_logger(__name__)

_knowledge_service = None


def _get_knowledge_service():
    """Lazy-load KnowledgeService."""
    global _knowledge_service
    if _knowledge_service is None:
        from rag_core.bootstrap import build_knowledge_service
        from rag_core.config import Settings

        _knowledge_service = build_knowledge_service(Settings.from_environment())
    return _knowledge_service


def _ok(body: Dict[str, Any], status_code: int = 200) -> Dict:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


async def _ingest(service, agent_id: str, payload: Dict[str, Any]) -> Dict:
    if payload.get("question") is not None:
        chunk_id = await service.add_qna(agent_id, payload["question"], payload.get("answer", ""))
        return _ok({"ids": [chunk_id], "chunks": 1}, status_code=201)

    try:
        source = KnowledgeSource(payload.get("source", KnowledgeSource.TEXT.value))
    except ValueError as exc:
        raise ValidationError(f"Unsupported knowledge source: {payload.get('source')}") from exc

    ids = await service.ingest_text(
        agent_id,
        payload.get("text", ""),
        source=source,
        base_title=payload.get("title"),
        filename=payload.get("filename"),
        url=payload.get("url"),
        file_id=payload.get("file_id"),
        file_size=payload.get("file_size"),
        embed_now=bool(payload.get("embed_now", False)),
    )
    return _ok({"ids": ids, "chunks": len(ids)}, status_code=201)


async def _dispatch(method: str, agent_id: str, chunk_id: str, payload: Dict[str, Any]) -> Dict:
    service = _get_knowledge_service()
    if method == "POST":
        return await _ingest(service, agent_id, payload)
    if method == "PUT":
        if not chunk_id:
            raise ValidationError("chunk_id is required")
        chunk = await service.update_entry(
            chunk_id, content=payload.get("content"), title=payload.get("title")
        )
        return _ok({"id": chunk.id, "has_embedding": chunk.has_embedding})
    if method == "DELETE":
        if not chunk_id:
            raise ValidationError("chunk_id is required")
        await service.delete_entry(chunk_id)
        return _ok({"id": chunk_id, "deleted": True})
    if method == "GET":
        stats = await service.stats(agent_id)
        return _ok(stats.model_dump())
    raise ValidationError(f"Unsupported method: {method}")


def lambda_handler(event, context) -> Dict:
    correlation_id = str(uuid.uuid4())
    try:
        path = event.get("pathParameters") or {}
        payload = json.loads(event.get("body") or "{}")
        agent_id = path.get("agent_id") or payload.get("agent_id")
        if not agent_id:
            raise ValidationError("agent_id is required")
        method = (event.get("httpMethod") or "POST").upper()
        return asyncio.run(
            _dispatch(method, agent_id, path.get("chunk_id") or payload.get("chunk_id"), payload)
        )
    except AppError as exc:
        logger.warning(
            "Knowledge request rejected",
            extra={"correlation_id": correlation_id, "error": str(exc)},
        )
        return to_response(exc)
    except json.JSONDecodeError:
        return to_response(ValidationError("Request body must be valid JSON"))
    except Exception as exc:
        logger.exception("Knowledge request failed", extra={"correlation_id": correlation_id})
        return {
            "statusCode": 500,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(
                {"message": "Knowledge request failed", "error": str(exc), "correlation_id": correlation_id}
            ),
        }
