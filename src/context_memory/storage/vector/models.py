"""
Models for vector storage.

Defines the points and hits exchanged with vector index implementations and
the payload written next to every memory and chunk vector.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from context_memory.models import Chunk, MemoryItem

MEMORY_COLLECTION = "context_memory"
CHUNK_COLLECTION = "context_chunks"


class VectorPoint(BaseModel):
    """A vector plus the payload used for filtering."""

    id: str
    vector: List[float]
    payload: Dict[str, Any] = Field(default_factory=dict)


class VectorHit(BaseModel):
    """A nearest-neighbour result."""

    id: str
    score: float
    payload: Dict[str, Any] = Field(default_factory=dict)
    vector: Optional[List[float]] = None


def memory_payload(item: MemoryItem) -> Dict[str, Any]:
    """Filterable fields stored next to a memory vector."""
    return {
        "memory_id": item.id,
        "user_id": item.user_id,
        "org_id": item.org_id,
        "scope": item.scope,
        "agent_id": item.agent_id,
        "conversation_id": item.conversation_id,
        "content_type": item.content_type,
        "retention": item.retention.value,
        "created_at": item.created_at.timestamp(),
    }


def chunk_payload(item: MemoryItem, chunk: Chunk) -> Dict[str, Any]:
    """Chunk vectors carry the parent's filter fields plus their position."""
    payload = memory_payload(item)
    payload["chunk_id"] = chunk.id
    payload["chunk_index"] = chunk.index
    return payload
