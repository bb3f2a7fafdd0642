"""
Storage protocol definitions for context-memory.

Storage is split in two boundaries:

- MemoryRepository: relational rows (memory items, chunks, ledger records)
- VectorIndex: vectors with filterable payloads and nearest-neighbour search

They are implementation-agnostic and can be backed by various databases
(SQLite, PostgreSQL, Qdrant, in-memory, etc.). Vector query syntax never
leaks past VectorIndex.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from typing_extensions import runtime_checkable

from context_memory.models import (
    Chunk,
    LedgerRecord,
    MemoryItem,
    RecordKind,
    RetentionTier,
    SearchFilters,
)
from context_memory.storage.vector.models import VectorHit, VectorPoint


@runtime_checkable
class MemoryRepository(Protocol):
    """
    Protocol for relational memory storage.

    Every method runs in its own transaction unless called inside a
    ``batch()`` block, in which case all calls share one transaction that
    commits when the block exits (or rolls back on error).
    """

    def batch(self) -> AbstractContextManager:
        """
        Group the calls made inside the block into one transaction.

        Example:
            >>> with repository.batch():
            ...     repository.update_memories({"m1": {"retention": RetentionTier.WARM}})
            ...     repository.delete_chunks(["m1"])
        """
        ...

    # -------------------------------------------------------------------------
    # Memory items
    # -------------------------------------------------------------------------

    def add_memory(self, item: MemoryItem) -> str:
        """
        Insert a memory item.

        Returns:
            The memory item ID
        """
        ...

    def add_memories(self, items: Sequence[MemoryItem]) -> int:
        """Insert several memory items, returning how many were inserted."""
        ...

    def get_memory(self, memory_id: str) -> Optional[MemoryItem]:
        """Retrieve a memory item by ID, None if missing."""
        ...

    def get_memories(self, memory_ids: Sequence[str]) -> Dict[str, MemoryItem]:
        """Retrieve memory items by ID. Missing IDs are absent from the result."""
        ...

    def existing_memory_ids(self, memory_ids: Sequence[str]) -> Set[str]:
        """Subset of the given IDs that are already stored."""
        ...

    def update_memories(self, updates: Dict[str, Dict[str, Any]]) -> int:
        """
        Apply field updates per memory ID.

        Args:
            updates: memory_id -> {field: value}

        Returns:
            Number of memory items updated
        """
        ...

    def find_memories(
        self,
        org_id: Optional[str] = None,
        retention: Optional[RetentionTier] = None,
        created_before: Optional[datetime] = None,
        created_after: Optional[datetime] = None,
        starred: Optional[bool] = None,
        after_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[MemoryItem]:
        """
        List memory items ordered by ID (keyset pagination via ``after_id``).

        Date bounds are inclusive.
        """
        ...

    def count_by_retention(self) -> Dict[RetentionTier, int]:
        """Number of memory items per retention tier."""
        ...

    # -------------------------------------------------------------------------
    # Chunks
    # -------------------------------------------------------------------------

    def replace_chunks(self, memory_id: str, chunks: Sequence[Chunk]) -> int:
        """Delete all chunks of a memory item, then insert the given ones."""
        ...

    def add_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert chunks without touching existing ones."""
        ...

    def get_chunks(self, memory_ids: Sequence[str]) -> List[Chunk]:
        """Chunks of the given memory items ordered by memory ID then index."""
        ...

    def get_chunks_by_id(self, chunk_ids: Sequence[str]) -> Dict[str, Chunk]:
        ...

    def delete_chunks(self, memory_ids: Sequence[str]) -> int:
        """Delete all chunks of the given memory items, returning the count."""
        ...

    def chunk_stats(self, memory_ids: Sequence[str]) -> Dict[str, int]:
        """
        Chunk counts and content size for the given memory items.

        Returns:
            {"count": ..., "content_bytes": ...}
        """
        ...

    # -------------------------------------------------------------------------
    # Ledger records
    # -------------------------------------------------------------------------

    def add_records(self, kind: RecordKind, records: Sequence[LedgerRecord]) -> int:
        ...

    def find_records(
        self,
        kind: RecordKind,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        ids: Optional[Sequence[str]] = None,
    ) -> List[LedgerRecord]:
        """Ledger records of one kind for an organization, filtered by time or ID."""
        ...

    def existing_record_ids(self, kind: RecordKind, ids: Sequence[str]) -> Set[str]:
        ...

    def delete_records(
        self,
        kind: RecordKind,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Hard-delete ledger records of one kind in range, returning the count."""
        ...


@runtime_checkable
class VectorIndex(Protocol):
    """
    Protocol for vector storage with payload filters.

    Implementations hold two collections (memory vectors and chunk vectors)
    and must store vectors at exactly the configured dimension.
    """

    dimension: int

    def upsert_embeddings(self, collection: str, points: Sequence[VectorPoint]) -> None:
        """Insert or replace vectors by point ID."""
        ...

    def upsert_embedding(
        self, collection: str, point_id: str, vector: List[float], payload: Dict[str, Any]
    ) -> None:
        ...

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
        """
        Cosine nearest neighbours, highest score first.

        Args:
            collection: Collection to search
            vector: Query vector
            limit: Maximum number of hits
            min_score: Similarity floor (inclusive)
            filters: Owner/agent/conversation/type/date scoping
            retention: Only points whose retention payload is one of these
            with_vectors: Include stored vectors in the hits

        Returns:
            Hits sorted by score descending
        """
        ...

    def delete_embeddings(self, collection: str, point_ids: Sequence[str]) -> None:
        ...

    def delete_by_memory(self, collection: str, memory_ids: Sequence[str]) -> None:
        """Delete every point whose memory_id payload is one of the given IDs."""
        ...

    def update_payload(
        self, collection: str, memory_ids: Sequence[str], payload: Dict[str, Any]
    ) -> None:
        """Merge payload fields into every point of the given memory items."""
        ...

    def get_vectors(self, collection: str, point_ids: Sequence[str]) -> Dict[str, List[float]]:
        """Stored vectors by point ID. Missing IDs are absent from the result."""
        ...

    def get_vectors_by_memory(
        self, collection: str, memory_ids: Sequence[str]
    ) -> Dict[str, List[float]]:
        """Stored vectors (keyed by point ID) of every point of the given memory items."""
        ...
