"""
In-memory relational repository.

Holds memory items, chunks and ledger records in dictionaries. Suitable for
testing and development; data is lost on restart.
"""

import copy
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from context_memory.models import (
    RECORD_TIME_FIELDS,
    Chunk,
    LedgerRecord,
    MemoryItem,
    RecordKind,
    RetentionTier,
    utcnow,
)

logger = logging.getLogger(__name__)


def _in_range(value: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryMemoryRepository:
    """
    In-memory implementation of the MemoryRepository protocol.

    ``batch()`` snapshots the stores and restores them if the block raises,
    giving the same all-or-nothing behaviour as a database transaction. Writes
    from other threads wait until the open batch commits or rolls back.
    """

    def __init__(self):
        self._memories: Dict[str, MemoryItem] = {}
        self._chunks: Dict[str, Dict[int, Chunk]] = defaultdict(dict)  # memory_id -> index -> chunk
        self._records: Dict[RecordKind, Dict[str, LedgerRecord]] = defaultdict(dict)
        # Held for the whole of a batch() block and around every write
        self._lock = threading.RLock()
        self._local = threading.local()

        logger.info("InMemoryMemoryRepository initialized")

    @contextmanager
    def batch(self):
        with self._lock:
            depth = getattr(self._local, "depth", 0)
            if depth:
                self._local.depth = depth + 1
                try:
                    yield self
                finally:
                    self._local.depth = depth
                return

            snapshot = (
                copy.deepcopy(self._memories),
                copy.deepcopy(self._chunks),
                copy.deepcopy(self._records),
            )
            self._local.depth = 1
            try:
                yield self
            except Exception:
                self._memories, self._chunks, self._records = snapshot
                raise
            finally:
                self._local.depth = 0

    # -------------------------------------------------------------------------
    # Memory items
    # -------------------------------------------------------------------------

    def add_memory(self, item: MemoryItem) -> str:
        with self._lock:
            self._memories[item.id] = item.model_copy(deep=True)
        logger.debug(f"Inserted memory {item.id}: '{item.content[:50]}...'")
        return item.id

    def add_memories(self, items: Sequence[MemoryItem]) -> int:
        with self._lock:
            for item in items:
                self._memories[item.id] = item.model_copy(deep=True)
        return len(items)

    def get_memory(self, memory_id: str) -> Optional[MemoryItem]:
        item = self._memories.get(memory_id)
        return item.model_copy(deep=True) if item else None

    def get_memories(self, memory_ids: Sequence[str]) -> Dict[str, MemoryItem]:
        return {
            memory_id: self._memories[memory_id].model_copy(deep=True)
            for memory_id in memory_ids
            if memory_id in self._memories
        }

    def existing_memory_ids(self, memory_ids: Sequence[str]) -> Set[str]:
        return {memory_id for memory_id in memory_ids if memory_id in self._memories}

    def update_memories(self, updates: Dict[str, Dict[str, Any]]) -> int:
        updated = 0
        with self._lock:
            for memory_id, fields in updates.items():
                item = self._memories.get(memory_id)
                if item is None:
                    logger.warning(f"Cannot update memory {memory_id}: not found")
                    continue
                fields = {"updated_at": utcnow(), **fields}
                self._memories[memory_id] = item.model_copy(update=fields)
                updated += 1
        return updated

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
        results = []
        for memory_id in sorted(self._memories):
            if after_id is not None and memory_id <= after_id:
                continue
            item = self._memories[memory_id]
            if org_id is not None and item.org_id != org_id:
                continue
            if retention is not None and item.retention != retention:
                continue
            if starred is not None and item.starred != starred:
                continue
            if not _in_range(item.created_at, created_after, created_before):
                continue
            results.append(item.model_copy(deep=True))
            if limit is not None and len(results) >= limit:
                break
        return results

    def count_by_retention(self) -> Dict[RetentionTier, int]:
        counts = {tier: 0 for tier in RetentionTier}
        for item in self._memories.values():
            counts[item.retention] += 1
        return counts

    # -------------------------------------------------------------------------
    # Chunks
    # -------------------------------------------------------------------------

    def replace_chunks(self, memory_id: str, chunks: Sequence[Chunk]) -> int:
        with self._lock:
            self._chunks[memory_id] = {chunk.index: chunk.model_copy() for chunk in chunks}
        return len(chunks)

    def add_chunks(self, chunks: Sequence[Chunk]) -> int:
        with self._lock:
            for chunk in chunks:
                self._chunks[chunk.memory_id][chunk.index] = chunk.model_copy()
        return len(chunks)

    def get_chunks(self, memory_ids: Sequence[str]) -> List[Chunk]:
        results = []
        for memory_id in sorted(set(memory_ids)):
            by_index = self._chunks.get(memory_id, {})
            results.extend(by_index[index].model_copy() for index in sorted(by_index))
        return results

    def get_chunks_by_id(self, chunk_ids: Sequence[str]) -> Dict[str, Chunk]:
        wanted = set(chunk_ids)
        return {
            chunk.id: chunk.model_copy()
            for by_index in self._chunks.values()
            for chunk in by_index.values()
            if chunk.id in wanted
        }

    def delete_chunks(self, memory_ids: Sequence[str]) -> int:
        deleted = 0
        with self._lock:
            for memory_id in memory_ids:
                deleted += len(self._chunks.pop(memory_id, {}))
        return deleted

    def chunk_stats(self, memory_ids: Sequence[str]) -> Dict[str, int]:
        count = 0
        content_bytes = 0
        for memory_id in set(memory_ids):
            for chunk in self._chunks.get(memory_id, {}).values():
                count += 1
                content_bytes += len(chunk.content.encode("utf-8"))
        return {"count": count, "content_bytes": content_bytes}

    # -------------------------------------------------------------------------
    # Ledger records
    # -------------------------------------------------------------------------

    def add_records(self, kind: RecordKind, records: Sequence[LedgerRecord]) -> int:
        with self._lock:
            store = self._records[RecordKind(kind)]
            for record in records:
                store[record.id] = record.model_copy(deep=True)
        return len(records)

    def _matching(
        self,
        kind: RecordKind,
        org_id: str,
        start: Optional[datetime],
        end: Optional[datetime],
        ids: Optional[Sequence[str]] = None,
    ) -> List[LedgerRecord]:
        kind = RecordKind(kind)
        time_field = RECORD_TIME_FIELDS[kind]
        wanted = set(ids) if ids is not None else None
        return [
            record
            for record in self._records[kind].values()
            if record.org_id == org_id
            and (wanted is None or record.id in wanted)
            and _in_range(getattr(record, time_field), start, end)
        ]

    def find_records(
        self,
        kind: RecordKind,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        ids: Optional[Sequence[str]] = None,
    ) -> List[LedgerRecord]:
        time_field = RECORD_TIME_FIELDS[RecordKind(kind)]
        records = self._matching(kind, org_id, start, end, ids)
        records.sort(key=lambda record: (getattr(record, time_field), record.id))
        return [record.model_copy(deep=True) for record in records]

    def existing_record_ids(self, kind: RecordKind, ids: Sequence[str]) -> Set[str]:
        store = self._records[RecordKind(kind)]
        return {record_id for record_id in ids if record_id in store}

    def delete_records(
        self,
        kind: RecordKind,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        with self._lock:
            doomed = self._matching(kind, org_id, start, end)
            store = self._records[RecordKind(kind)]
            for record in doomed:
                del store[record.id]
        return len(doomed)
