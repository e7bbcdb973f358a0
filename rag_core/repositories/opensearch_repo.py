"""
OpenSearch-backed knowledge store and k-NN vector index.

All agents share one index; chunk documents carry a ``knn_vector`` field that
stays absent until the chunk is embedded. opensearch-py is synchronous, so
each call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import boto3
from opensearchpy import AWSV4SignerAuth, NotFoundError, OpenSearch, RequestsHttpConnection

from rag_core.models.knowledge import KnowledgeChunk
from rag_core.utils.logging_config import get_logger
from rag_core.utils.validators import EMBEDDING_DIMENSIONS, ensure_embedding_dimensions

logger = get_logger(__name__)

EMBEDDING_FIELD = "embedding"


def build_index_body(dimensions: int = EMBEDDING_DIMENSIONS) -> Dict[str, Any]:
    """Index mapping for knowledge chunks (FAISS HNSW, L2 distance)."""
    return {
        "settings": {"index.knn": True},
        "mappings": {
            "properties": {
                EMBEDDING_FIELD: {
                    "type": "knn_vector",
                    "dimension": dimensions,
                    "method": {
                        "engine": "faiss",
                        "space_type": "l2",
                        "name": "hnsw",
                    },
                },
                "agent_id": {"type": "keyword"},
                "title": {"type": "text"},
                "content": {"type": "text"},
                "source": {"type": "keyword"},
                "source_metadata": {"type": "object", "enabled": False},
                "file_id": {"type": "keyword"},
                "created_at": {"type": "date"},
                "updated_at": {"type": "date"},
            }
        },
    }


def create_client(host: str, region: str, port: int = 443, service: str = "aoss") -> OpenSearch:
    """SigV4-signed client for an OpenSearch Serverless collection."""
    credentials = boto3.Session().get_credentials()
    auth = AWSV4SignerAuth(credentials, region, service)
    return OpenSearch(
        hosts=[{"host": host.replace("https://", ""), "port": port}],
        http_auth=auth,
        use_ssl=True,
        verify_certs=True,
        connection_class=RequestsHttpConnection,
        timeout=30,
    )


def _to_document(chunk: KnowledgeChunk) -> Dict[str, Any]:
    document = chunk.model_dump(mode="json", exclude={"id"})
    if document.get(EMBEDDING_FIELD) is None:
        document.pop(EMBEDDING_FIELD, None)
    return document


def _from_hit(hit: Dict[str, Any]) -> KnowledgeChunk:
    return KnowledgeChunk.model_validate({"id": hit["_id"], **hit["_source"]})


class OpenSearchKnowledgeStore:
    """Knowledge chunk persistence in a k-NN enabled index."""

    def __init__(
        self,
        client: OpenSearch,
        index_name: str = "knowledge-chunks",
        dimensions: int = EMBEDDING_DIMENSIONS,
        auto_create_index: bool = False,
    ):
        self.client = client
        self.index_name = index_name
        self.dimensions = dimensions
        # Writes must not let OpenSearch infer a dynamic mapping for the vector field.
        self._index_ready = not auto_create_index

    async def ensure_index(self, dimensions: int = EMBEDDING_DIMENSIONS) -> bool:
        """Create the index when missing; return True when it was created."""
        exists = await asyncio.to_thread(self.client.indices.exists, index=self.index_name)
        if exists:
            return False
        await asyncio.to_thread(
            self.client.indices.create, index=self.index_name, body=build_index_body(dimensions)
        )
        logger.info("Knowledge index created", extra={"index": self.index_name})
        return True

    async def get_pending(
        self, agent_id: Optional[str] = None, limit: int = 100
    ) -> List[KnowledgeChunk]:
        query: Dict[str, Any] = {
            "bool": {"must_not": [{"exists": {"field": EMBEDDING_FIELD}}]}
        }
        if agent_id:
            query["bool"]["filter"] = [{"term": {"agent_id": agent_id}}]
        return await self._search(query, size=limit)

    async def get(self, chunk_id: str) -> Optional[KnowledgeChunk]:
        try:
            hit = await asyncio.to_thread(self.client.get, index=self.index_name, id=chunk_id)
        except NotFoundError:
            return None
        if not hit.get("found", True):
            return None
        return _from_hit(hit)

    async def patch_embedding(self, chunk_id: str, vector: List[float]) -> None:
        ensure_embedding_dimensions(vector)
        await asyncio.to_thread(
            self.client.update,
            index=self.index_name,
            id=chunk_id,
            body={"doc": {EMBEDDING_FIELD: vector}},
        )

    async def insert(self, chunk: KnowledgeChunk) -> str:
        if not self._index_ready:
            await self.ensure_index(self.dimensions)
            self._index_ready = True
        await asyncio.to_thread(
            self.client.index, index=self.index_name, id=chunk.id, body=_to_document(chunk)
        )
        return chunk.id

    async def update(self, chunk: KnowledgeChunk) -> None:
        """Replace the whole document so a cleared embedding disappears."""
        await self.insert(chunk)

    async def delete(self, chunk_id: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete, index=self.index_name, id=chunk_id)
        except NotFoundError:
            logger.info("Knowledge chunk already deleted", extra={"chunk_id": chunk_id})

    async def list_for_agent(self, agent_id: str, limit: int = 1000) -> List[KnowledgeChunk]:
        return await self._search({"term": {"agent_id": agent_id}}, size=limit)

    async def count_for_agent(self, agent_id: str) -> Tuple[int, int]:
        total = await self._count({"term": {"agent_id": agent_id}})
        embedded = await self._count(
            {
                "bool": {
                    "filter": [
                        {"term": {"agent_id": agent_id}},
                        {"exists": {"field": EMBEDDING_FIELD}},
                    ]
                }
            }
        )
        return total, embedded

    async def _search(self, query: Dict[str, Any], size: int) -> List[KnowledgeChunk]:
        body = {
            "size": size,
            "query": query,
            "sort": [{"created_at": {"order": "asc"}}],
        }
        response = await asyncio.to_thread(self.client.search, index=self.index_name, body=body)
        return [_from_hit(hit) for hit in response.get("hits", {}).get("hits", [])]

    async def _count(self, query: Dict[str, Any]) -> int:
        response = await asyncio.to_thread(
            self.client.count, index=self.index_name, body={"query": query}
        )
        return int(response.get("count", 0))


class OpenSearchVectorIndex:
    """Approximate nearest-neighbour search over the chunk embedding field."""

    def __init__(self, client: OpenSearch, index_name: str = "knowledge-chunks"):
        self.client = client
        self.index_name = index_name

    async def nearest_neighbors(self, vector: List[float], limit: int) -> List[Tuple[str, float]]:
        body = {
            "size": limit,
            "_source": False,
            "query": {"knn": {EMBEDDING_FIELD: {"vector": vector, "k": limit}}},
        }
        response = await asyncio.to_thread(self.client.search, index=self.index_name, body=body)
        return [
            (hit["_id"], float(hit.get("_score") or 0.0))
            for hit in response.get("hits", {}).get("hits", [])
        ]
