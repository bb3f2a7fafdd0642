"""
In-memory vector index implementation.

Provides a simple in-memory store for vectors and cosine similarity search,
suitable for testing and development. For production, use the Qdrant
implementation.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from context_memory.models import RetentionTier, SearchFilters
from context_memory.storage.vector.models import (
    CHUNK_COLLECTION,
    MEMORY_COLLECTION,
    VectorHit,
    VectorPoint,
)

logger = logging.getLogger(__name__)


def _cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(vec1) != len(vec2):
        raise ValueError("Vectors must have the same length")

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = sum(a * a for a in vec1) ** 0.5
    magnitude2 = sum(b * b for b in vec2) ** 0.5

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return dot_product / (magnitude1 * magnitude2)


def payload_matches(
    payload: Dict[str, Any],
    filters: Optional[SearchFilters],
    retention: Optional[Sequence[RetentionTier]] = None,
) -> bool:
    """Check whether a point payload satisfies the search filters."""
    if retention is not None:
        allowed = {RetentionTier(tier).value for tier in retention}
        if payload.get("retention") not in allowed:
            return False

    if filters is None:
        return True

    own = payload.get("user_id") == filters.user_id and payload.get("scope") == "user"
    shared = payload.get("org_id") == filters.org_id and payload.get("scope") == "org"
    if filters.scope == "user" and not own:
        return False
    if filters.scope == "org" and not shared:
        return False
    if filters.scope == "both" and not (own or shared):
        return False

    if filters.agent_id and payload.get("agent_id") != filters.agent_id:
        return False
    if filters.conversation_id and payload.get("conversation_id") != filters.conversation_id:
        return False
    if filters.content_types and payload.get("content_type") not in filters.content_types:
        return False

    created_at = payload.get("created_at", 0.0)
    if filters.start_date and created_at < filters.start_date.timestamp():
        return False
    if filters.end_date and created_at > filters.end_date.timestamp():
        return False

    return True


class InMemoryVectorIndex:
    """
    In-memory implementation of the VectorIndex protocol.

    Stores vectors and payloads in dictionaries per collection. Data is lost
    on restart.
    """

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension
        # collection -> point id -> {vector, payload}
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {
            MEMORY_COLLECTION: {},
            CHUNK_COLLECTION: {},
        }

        logger.info(f"InMemoryVectorIndex initialized (dimension={dimension})")

    def _points(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def upsert_embeddings(self, collection: str, points: Sequence[VectorPoint]) -> None:
        store = self._points(collection)
        for point in points:
            if len(point.vector) != self.dimension:
                raise ValueError(
                    f"Vector for {point.id} has {len(point.vector)} dimensions, "
                    f"expected {self.dimension}"
                )
            store[point.id] = {"vector": list(point.vector), "payload": dict(point.payload)}

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
        results = []

        for point_id, data in self._points(collection).items():
            if not payload_matches(data["payload"], filters, retention):
                continue

            score = _cosine_similarity(vector, data["vector"])
            if score >= min_score:
                results.append(
                    VectorHit(
                        id=point_id,
                        score=score,
                        payload=dict(data["payload"]),
                        vector=list(data["vector"]) if with_vectors else None,
                    )
                )

        # Sort by score (highest first), ties broken by id for stable output
        results.sort(key=lambda hit: (-hit.score, hit.id))
        results = results[:limit]

        logger.debug(f"{len(results)} hits in {collection} (min_score={min_score})")
        return results

    def delete_embeddings(self, collection: str, point_ids: Sequence[str]) -> None:
        store = self._points(collection)
        for point_id in point_ids:
            store.pop(point_id, None)

    def delete_by_memory(self, collection: str, memory_ids: Sequence[str]) -> None:
        targets = set(memory_ids)
        store = self._points(collection)
        doomed = [pid for pid, data in store.items() if data["payload"].get("memory_id") in targets]
        for point_id in doomed:
            del store[point_id]

        logger.debug(f"Deleted {len(doomed)} points from {collection}")

    def update_payload(
        self, collection: str, memory_ids: Sequence[str], payload: Dict[str, Any]
    ) -> None:
        targets = set(memory_ids)
        for data in self._points(collection).values():
            if data["payload"].get("memory_id") in targets:
                data["payload"].update(payload)

    def get_vectors(self, collection: str, point_ids: Sequence[str]) -> Dict[str, List[float]]:
        store = self._points(collection)
        return {pid: list(store[pid]["vector"]) for pid in point_ids if pid in store}

    def get_vectors_by_memory(
        self, collection: str, memory_ids: Sequence[str]
    ) -> Dict[str, List[float]]:
        targets = set(memory_ids)
        return {
            pid: list(data["vector"])
            for pid, data in self._points(collection).items()
            if data["payload"].get("memory_id") in targets
        }

    def count(self, collection: str) -> int:
        return len(self._points(collection))

    def clear(self):
        """Clear ALL points from every collection."""
        for store in self._collections.values():
            store.clear()
        logger.info("Cleared all vector collections")
