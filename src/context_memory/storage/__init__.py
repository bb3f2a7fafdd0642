"""
Storage protocols and backends for context-memory.

Provides protocol definitions for the relational repository and the vector
index. Implementations can use various databases (SQLite, PostgreSQL,
Qdrant, in-memory, etc.) as long as they satisfy the protocol interface.
"""

from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.relational.memory import InMemoryMemoryRepository
from context_memory.storage.vector.memory import InMemoryVectorIndex
from context_memory.storage.vector.models import (
    CHUNK_COLLECTION,
    MEMORY_COLLECTION,
    VectorHit,
    VectorPoint,
    chunk_payload,
    memory_payload,
)

__all__ = [
    "MemoryRepository",
    "VectorIndex",
    "InMemoryMemoryRepository",
    "InMemoryVectorIndex",
    "VectorHit",
    "VectorPoint",
    "MEMORY_COLLECTION",
    "CHUNK_COLLECTION",
    "memory_payload",
    "chunk_payload",
]

try:
    from context_memory.storage.relational.sqlalchemy import SQLAlchemyMemoryRepository  # noqa: F401

    __all__.append("SQLAlchemyMemoryRepository")
except ImportError:
    pass

try:
    from context_memory.storage.vector.qdrant import QdrantVectorIndex  # noqa: F401

    __all__.append("QdrantVectorIndex")
except ImportError:
    pass
