"""
Archive export and restore.

``export`` snapshots an organization's memory items (with embeddings), their
chunks (with embeddings), referenced conversations and ledger rows in a
time range. ``move`` mode additionally removes the heavy data from live
storage: chunks and vectors are deleted, items are marked cold with an
``archive_ref`` and ledger rows in range are hard-deleted.

``restore`` validates the whole payload before writing anything, then
inserts batch-wise, skipping rows that already exist. Items still live in
the organization get their chunks, vectors and tier back in place.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from context_memory.archive.models import (
    ARCHIVE_VERSION,
    MOVED_RECORD_KINDS,
    ArchivedChunk,
    ArchivedMemory,
    ArchiveDatasets,
    ArchiveInclude,
    ArchiveMode,
    ArchivePayload,
    ArchiveRange,
    RestoreResult,
    archive_ref,
)
from context_memory.config import MemorySettings
from context_memory.embeddings.utils import normalize_dimensions
from context_memory.errors import ArchiveValidationError
from context_memory.models import Chunk, MemoryItem, RecordKind, RetentionTier, utcnow
from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.vector.models import (
    CHUNK_COLLECTION,
    MEMORY_COLLECTION,
    VectorPoint,
    chunk_payload,
    memory_payload,
)

logger = logging.getLogger(__name__)

LEDGER_KINDS = (
    RecordKind.DECISIONS,
    RecordKind.USAGE_RECORDS,
    RecordKind.PURCHASE_RECORDS,
    RecordKind.ACCESS_LOGS,
)


def _batches(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start : start + size]


class ArchiveService:
    """
    Exports and restores organization archives.

    Example:
        >>> service = ArchiveService(repository, vector_index, settings)
        >>> payload = service.export("org-1", mode="move")
        >>> open("archive.json", "w").write(payload.model_dump_json())
        >>> service.restore(payload, "org-1").restored.memories
        42
    """

    def __init__(
        self,
        repository: MemoryRepository,
        vector_index: VectorIndex,
        settings: MemorySettings,
    ):
        self.repository = repository
        self.vector_index = vector_index
        self.batch_size = settings.archive_batch_size

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def export(
        self,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        mode: ArchiveMode = "copy",
        include: Optional[ArchiveInclude] = None,
    ) -> ArchivePayload:
        """
        Snapshot an organization's data, optionally moving it out of live storage.

        Args:
            org_id: Organization to export
            start: Inclusive lower bound on creation time
            end: Inclusive upper bound on creation time
            mode: "copy" exports only, "move" also clears live storage
            include: Datasets to export (all by default)

        Returns:
            The archive payload
        """
        if mode not in ("copy", "move"):
            raise ValueError(f"Unknown archive mode: {mode}")

        include = include or ArchiveInclude()
        export_id = str(uuid.uuid4())
        exported_at = utcnow()
        datasets = ArchiveDatasets()
        logger.info(f"Exporting archive {export_id} for org {org_id} (mode={mode})")

        memories: List[MemoryItem] = []
        if include.memories:
            after_id = None
            while True:
                batch = self.repository.find_memories(
                    org_id=org_id,
                    created_after=start,
                    created_before=end,
                    after_id=after_id,
                    limit=self.batch_size,
                )
                if not batch:
                    break
                after_id = batch[-1].id
                memories.extend(batch)
                datasets.memories.extend(self._archive_memories(batch))
                if include.chunks:
                    datasets.chunks.extend(self._archive_chunks([m.id for m in batch]))

        if include.conversations:
            conversation_ids = sorted({m.conversation_id for m in memories if m.conversation_id})
            if conversation_ids:
                datasets.conversations = self.repository.find_records(
                    RecordKind.CONVERSATIONS, org_id, ids=conversation_ids
                )

        for kind in LEDGER_KINDS:
            if include.includes(kind):
                datasets.records(kind).extend(
                    self.repository.find_records(kind, org_id, start=start, end=end)
                )

        if mode == "move":
            self._move_out(memories, export_id, exported_at, org_id, start, end, include)

        payload = ArchivePayload(
            version=ARCHIVE_VERSION,
            export_id=export_id,
            exported_at=exported_at,
            org_id=org_id,
            mode=mode,
            range=ArchiveRange(start=start, end=end),
            counts=datasets.counts(),
            datasets=datasets,
        )
        logger.info(f"Archive {export_id} exported: {payload.counts.model_dump()}")
        return payload

    def _archive_memories(self, batch: List[MemoryItem]) -> List[ArchivedMemory]:
        vectors = self.vector_index.get_vectors(MEMORY_COLLECTION, [m.id for m in batch])
        return [
            ArchivedMemory(**item.model_dump(), embedding=vectors.get(item.id)) for item in batch
        ]

    def _archive_chunks(self, memory_ids: List[str]) -> List[ArchivedChunk]:
        chunks = self.repository.get_chunks(memory_ids)
        if not chunks:
            return []
        vectors = self.vector_index.get_vectors_by_memory(CHUNK_COLLECTION, memory_ids)
        return [
            ArchivedChunk(**chunk.model_dump(), embedding=vectors.get(chunk.id)) for chunk in chunks
        ]

    def _move_out(
        self,
        memories: List[MemoryItem],
        export_id: str,
        exported_at: datetime,
        org_id: str,
        start: Optional[datetime],
        end: Optional[datetime],
        include: ArchiveInclude,
    ) -> None:
        ref = archive_ref(export_id)
        for batch in _batches(memories, self.batch_size):
            memory_ids = [m.id for m in batch]
            self.vector_index.delete_by_memory(CHUNK_COLLECTION, memory_ids)
            self.vector_index.delete_embeddings(MEMORY_COLLECTION, memory_ids)

            updates = {}
            for item in batch:
                # Never move an item backwards out of DELETED
                retention = max(item.retention, RetentionTier.COLD, key=lambda tier: tier.rank)
                updates[item.id] = {
                    "retention": retention,
                    "archived_at": exported_at,
                    "archive_ref": ref,
                    "chunks_computed": False,
                }
            with self.repository.batch():
                self.repository.delete_chunks(memory_ids)
                self.repository.update_memories(updates)

        for kind in MOVED_RECORD_KINDS:
            if include.includes(kind):
                deleted = self.repository.delete_records(kind, org_id, start=start, end=end)
                logger.debug(f"Deleted {deleted} {kind.value} moved to archive {export_id}")

    # -------------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------------

    def validate(self, payload: Union[ArchivePayload, Dict[str, Any]], org_id: str) -> ArchivePayload:
        """
        Check version and organization scope of the payload and every record.

        Raises:
            ArchiveValidationError: On any mismatch or malformed payload
        """
        if isinstance(payload, dict):
            version = payload.get("version")
            if version != ARCHIVE_VERSION:
                raise ArchiveValidationError(
                    f"Unsupported archive version: {version}", {"expected": ARCHIVE_VERSION}
                )
            try:
                payload = ArchivePayload.model_validate(payload)
            except ValidationError as e:
                raise ArchiveValidationError(
                    "Malformed archive payload", {"errors": e.error_count()}
                ) from e

        if payload.version != ARCHIVE_VERSION:
            raise ArchiveValidationError(
                f"Unsupported archive version: {payload.version}", {"expected": ARCHIVE_VERSION}
            )
        if payload.org_id != org_id:
            raise ArchiveValidationError(
                "Archive organization does not match",
                {"archive_org": payload.org_id, "org_id": org_id},
            )

        datasets = payload.datasets
        mismatched = [m.id for m in datasets.memories if m.org_id != org_id]
        for kind in RecordKind:
            mismatched.extend(r.id for r in datasets.records(kind) if r.org_id != org_id)
        if mismatched:
            raise ArchiveValidationError(
                "Archive contains records for a different organization",
                {"record_ids": mismatched[:10], "count": len(mismatched)},
            )
        return payload

    def restore(self, payload: Union[ArchivePayload, Dict[str, Any]], org_id: str) -> RestoreResult:
        """
        Restore an archive into live storage.

        Rows whose id already exists are never inserted again. Memory items
        already present in the organization (for example after a ``move``
        export) are brought back in place: missing chunk rows are inserted,
        vectors re-applied, and the tier recomputed from what the item now
        has. Conversations are linked only when present in the store after
        the conversation pass, and parents only when the parent was inserted
        by this call. Tiers: HOT with chunks, WARM with only a memory vector,
        COLD otherwise.

        Raises:
            ArchiveValidationError: Before any mutation, if validation fails
        """
        payload = self.validate(payload, org_id)
        datasets = payload.datasets
        result = RestoreResult(export_id=payload.export_id)
        logger.info(f"Restoring archive {payload.export_id} for org {org_id}")

        # Conversations first so memory items can link to them
        self._restore_records(RecordKind.CONVERSATIONS, datasets.conversations, result)
        conversation_ids = {c.id for c in datasets.conversations}
        known_conversations = self.repository.existing_record_ids(
            RecordKind.CONVERSATIONS, sorted(conversation_ids)
        )

        existing = self.repository.get_memories([m.id for m in datasets.memories])
        new_memories = [m for m in datasets.memories if m.id not in existing]
        # Rows owned by another organization are left alone
        reapplied = [
            m for m in datasets.memories if m.id in existing and existing[m.id].org_id == org_id
        ]
        restored_ids = {m.id for m in new_memories}
        result.skipped.memories = len(datasets.memories) - len(new_memories)

        live_chunks = self.repository.get_chunks([m.id for m in reapplied])
        live_chunk_ids = {c.id for c in live_chunks}
        chunked_live = {c.memory_id for c in live_chunks}

        targets = restored_ids | {m.id for m in reapplied}
        chunks_by_memory: Dict[str, List[ArchivedChunk]] = {}
        for chunk in datasets.chunks:
            if chunk.memory_id in targets:
                chunks_by_memory.setdefault(chunk.memory_id, []).append(chunk)

        for batch in _batches(new_memories + reapplied, self.batch_size):
            items = [
                self._restored_item(
                    archived,
                    chunks_by_memory,
                    known_conversations,
                    live=existing.get(archived.id),
                    live_chunks=archived.id in chunked_live,
                )
                for archived in batch
            ]
            new_items = [item for item in items if item.id in restored_ids]
            updates = {
                item.id: {
                    "retention": item.retention,
                    "chunks_computed": item.chunks_computed,
                    "archived_at": item.archived_at,
                    "archive_ref": item.archive_ref,
                }
                for item in items
                if item.id not in restored_ids
            }
            chunks = [
                Chunk(**chunk.model_dump(exclude={"embedding"}))
                for archived in batch
                for chunk in chunks_by_memory.get(archived.id, [])
                if chunk.id not in live_chunk_ids
            ]
            with self.repository.batch():
                if new_items:
                    self.repository.add_memories(new_items)
                if chunks:
                    self.repository.add_chunks(chunks)
                if updates:
                    self.repository.update_memories(updates)
            self._restore_vectors(batch, items, chunks_by_memory)
            result.restored.memories += len(new_items)
            result.restored.chunks += len(chunks)
            result.reapplied += len(updates)

        result.skipped.chunks = len(datasets.chunks) - result.restored.chunks
        self._relink_parents(new_memories, restored_ids)

        for kind in LEDGER_KINDS:
            self._restore_records(kind, datasets.records(kind), result)

        logger.info(
            f"Archive {payload.export_id} restored: {result.restored.model_dump()} "
            f"(re-applied {result.reapplied}, skipped {result.skipped.model_dump()})"
        )
        return result

    def _restored_item(
        self,
        archived: ArchivedMemory,
        chunks_by_memory: Dict[str, List[ArchivedChunk]],
        known_conversations: Set[str],
        live: Optional[MemoryItem] = None,
        live_chunks: bool = False,
    ) -> MemoryItem:
        if live is None:
            item = MemoryItem(**archived.model_dump(exclude={"embedding"}))
            item.parent_id = None
            if item.conversation_id not in known_conversations:
                item.conversation_id = None
        else:
            item = live.model_copy()

        if chunks_by_memory.get(item.id) or live_chunks:
            item.retention = RetentionTier.HOT
            item.chunks_computed = True
        elif archived.embedding:
            item.retention = RetentionTier.WARM
            item.chunks_computed = False
        elif live is None:
            item.retention = RetentionTier.COLD
            item.chunks_computed = False

        if item.retention != RetentionTier.COLD:
            item.archived_at = None
            item.archive_ref = None
        return item

    def _restore_vectors(
        self,
        batch: List[ArchivedMemory],
        items: List[MemoryItem],
        chunks_by_memory: Dict[str, List[ArchivedChunk]],
    ) -> None:
        dimension = self.vector_index.dimension
        memory_points = []
        chunk_points = []

        for archived, item in zip(batch, items):
            if archived.embedding:
                memory_points.append(
                    VectorPoint(
                        id=item.id,
                        vector=normalize_dimensions(archived.embedding, dimension),
                        payload=memory_payload(item),
                    )
                )
            for chunk in chunks_by_memory.get(item.id, []):
                if chunk.embedding:
                    chunk_points.append(
                        VectorPoint(
                            id=chunk.id,
                            vector=normalize_dimensions(chunk.embedding, dimension),
                            payload=chunk_payload(item, chunk),
                        )
                    )

        if memory_points:
            self.vector_index.upsert_embeddings(MEMORY_COLLECTION, memory_points)
        if chunk_points:
            self.vector_index.upsert_embeddings(CHUNK_COLLECTION, chunk_points)

    def _relink_parents(self, new_memories: List[ArchivedMemory], restored_ids: Set[str]) -> None:
        links = {
            m.id: {"parent_id": m.parent_id}
            for m in new_memories
            if m.parent_id and m.parent_id in restored_ids
        }
        if links:
            self.repository.update_memories(links)
            logger.debug(f"Re-linked {len(links)} parent references")

    def _restore_records(self, kind: RecordKind, records: list, result: RestoreResult) -> None:
        if not records:
            return
        existing = self.repository.existing_record_ids(kind, [r.id for r in records])
        new_records = [r for r in records if r.id not in existing]
        for batch in _batches(new_records, self.batch_size):
            self.repository.add_records(kind, batch)

        setattr(result.restored, kind.value, len(new_records))
        setattr(result.skipped, kind.value, len(records) - len(new_records))
