"""
Qdrant vector index implementation.

Memory vectors and chunk vectors live in two collections. Filterable fields
(owner, scope, agent, conversation, content type, retention, creation time)
are stored as payload and indexed so nearest-neighbour queries can be scoped.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Range,
    VectorParams,
)

from context_memory.errors import StorageError
from context_memory.models import RetentionTier, SearchFilters
from context_memory.storage.vector.models import (
    CHUNK_COLLECTION,
    MEMORY_COLLECTION,
    VectorHit,
    VectorPoint,
)

logger = logging.getLogger(__name__)

KEYWORD_FIELDS = (
    "memory_id",
    "user_id",
    "org_id",
    "scope",
    "agent_id",
    "conversation_id",
    "content_type",
    "retention",
)


def _match(key: str, value: Any) -> FieldCondition:
    return FieldCondition(key=key, match=MatchValue(value=value))


def build_filter(
    filters: Optional[SearchFilters],
    retention: Optional[Sequence[RetentionTier]] = None,
) -> Optional[Filter]:
    """Translate search filters into a Qdrant filter."""
    must: List[Any] = []

    if retention is not None:
        must.append(
            FieldCondition(
                key="retention",
                match=MatchAny(any=[RetentionTier(tier).value for tier in retention]),
            )
        )

    if filters is not None:
        own = Filter(must=[_match("user_id", filters.user_id), _match("scope", "user")])
        shared = Filter(must=[_match("org_id", filters.org_id), _match("scope", "org")])
        if filters.scope == "user":
            must.append(own)
        elif filters.scope == "org":
            must.append(shared)
        else:
            must.append(Filter(should=[own, shared]))

        if filters.agent_id:
            must.append(_match("agent_id", filters.agent_id))
        if filters.conversation_id:
            must.append(_match("conversation_id", filters.conversation_id))
        if filters.content_types:
            must.append(
                FieldCondition(key="content_type", match=MatchAny(any=list(filters.content_types)))
            )
        if filters.start_date or filters.end_date:
            must.append(
                FieldCondition(
                    key="created_at",
                    range=Range(
                        gte=filters.start_date.timestamp() if filters.start_date else None,
                        lte=filters.end_date.timestamp() if filters.end_date else None,
                    ),
                )
            )

    return Filter(must=must) if must else None


def _memory_filter(memory_ids: Sequence[str]) -> Filter:
    return Filter(must=[FieldCondition(key="memory_id", match=MatchAny(any=list(memory_ids)))])


class QdrantVectorIndex:
    """
    Qdrant implementation of the VectorIndex protocol.

    Example:
        >>> index = QdrantVectorIndex(host="localhost", port=6333, dimension=1536)
        >>> index.upsert_embedding(MEMORY_COLLECTION, item.id, vector, memory_payload(item))
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6333,
        dimension: int = 1536,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[QdrantClient] = None,
        collection_prefix: str = "",
    ):
        """
        Initialize Qdrant vector index.

        Args:
            host: Qdrant host (default: localhost)
            port: Qdrant port (default: 6333)
            dimension: Storage dimension of every vector
            url: Full URL, overrides host/port
            api_key: Qdrant Cloud API key
            client: Pre-built client (e.g. QdrantClient(":memory:"))
            collection_prefix: Prefix applied to both collection names
        """
        if client is None:
            client = QdrantClient(url=url, api_key=api_key) if url else QdrantClient(host=host, port=port)

        self.client = client
        self.dimension = dimension
        self._prefix = collection_prefix
        self._init_collections()

    def _name(self, collection: str) -> str:
        return f"{self._prefix}{collection}"

    def _init_collections(self):
        for collection in (MEMORY_COLLECTION, CHUNK_COLLECTION):
            name = self._name(collection)
            if self.client.collection_exists(name):
                continue

            self.client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
            )
            for field in KEYWORD_FIELDS:
                self.client.create_payload_index(name, field, PayloadSchemaType.KEYWORD)
            self.client.create_payload_index(name, "created_at", PayloadSchemaType.FLOAT)
            logger.info(f"Created Qdrant collection {name} ({self.dimension} dimensions)")

    @contextmanager
    def _errors(self, operation: str, collection: str):
        try:
            yield
        except Exception as e:
            logger.error(f"Qdrant {operation} failed on {collection}: {e}")
            raise StorageError(f"Vector index {operation} failed", {"collection": collection}) from e

    def upsert_embeddings(self, collection: str, points: Sequence[VectorPoint]) -> None:
        if not points:
            return
        with self._errors("upsert", collection):
            self.client.upsert(
                collection_name=self._name(collection),
                points=[PointStruct(id=p.id, vector=p.vector, payload=p.payload) for p in points],
            )
        logger.debug(f"Upserted {len(points)} points into {collection}")

    def upsert_embedding(
        self, collection: str, point_id: str, vector: List[float], payload: Dict[str, Any]
    ) -> None:
        self.upsert_embeddings(collection, [VectorPoint(id=point_id, vector=vector, payload=payload)])

    def nearest_neighbors(
        self,
        collection: str,
        vector: List[float],
        limit: int,
        min_score: float = 0.0,
        filters: Optional[SearchFilters] = None,
        retention: Optional[Sequence[RetentionTier]] = None,
        with_vectors: bool = False,
    ) -> List[VectorHit]:
        with self._errors("query", collection):
            response = self.client.query_points(
                collection_name=self._name(collection),
                query=vector,
                query_filter=build_filter(filters, retention),
                limit=limit,
                score_threshold=min_score,
                with_payload=True,
                with_vectors=with_vectors,
            )

        hits = [
            VectorHit(
                id=str(point.id),
                score=point.score,
                payload=point.payload or {},
                vector=point.vector if with_vectors else None,
            )
            for point in response.points
        ]
        logger.debug(f"{len(hits)} hits in {collection} (min_score={min_score})")
        return hits

    def delete_embeddings(self, collection: str, point_ids: Sequence[str]) -> None:
        if not point_ids:
            return
        with self._errors("delete", collection):
            self.client.delete(collection_name=self._name(collection), points_selector=list(point_ids))

    def delete_by_memory(self, collection: str, memory_ids: Sequence[str]) -> None:
        if not memory_ids:
            return
        with self._errors("delete", collection):
            self.client.delete(
                collection_name=self._name(collection),
                points_selector=FilterSelector(filter=_memory_filter(memory_ids)),
            )

    def update_payload(
        self, collection: str, memory_ids: Sequence[str], payload: Dict[str, Any]
    ) -> None:
        if not memory_ids:
            return
        with self._errors("set_payload", collection):
            self.client.set_payload(
                collection_name=self._name(collection),
                payload=payload,
                points=FilterSelector(filter=_memory_filter(memory_ids)),
            )

    def get_vectors(self, collection: str, point_ids: Sequence[str]) -> Dict[str, List[float]]:
        if not point_ids:
            return {}
        with self._errors("retrieve", collection):
            points = self.client.retrieve(
                collection_name=self._name(collection),
                ids=list(point_ids),
                with_vectors=True,
                with_payload=False,
            )
        return {str(point.id): list(point.vector) for point in points}

    def get_vectors_by_memory(
        self, collection: str, memory_ids: Sequence[str]
    ) -> Dict[str, List[float]]:
        if not memory_ids:
            return {}

        vectors: Dict[str, List[float]] = {}
        offset = None
        with self._errors("scroll", collection):
            while True:
                points, offset = self.client.scroll(
                    collection_name=self._name(collection),
                    scroll_filter=_memory_filter(memory_ids),
                    limit=256,
                    offset=offset,
                    with_vectors=True,
                    with_payload=False,
                )
                for point in points:
                    vectors[str(point.id)] = list(point.vector)
                if offset is None:
                    break
        return vectors

    def count(self, collection: str) -> int:
        with self._errors("count", collection):
            return self.client.count(collection_name=self._name(collection), exact=True).count
