"""
Archive payload models.

An archive is a versioned, storage-independent snapshot of one
organization's data. Embeddings are plain float lists so an archive can be
restored into any vector backend.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from context_memory.models import (
    AccessLog,
    Chunk,
    Conversation,
    Decision,
    MemoryItem,
    PurchaseRecord,
    RecordKind,
    UsageRecord,
    utcnow,
)

ARCHIVE_VERSION = 1
ARCHIVE_REF_PREFIX = "manual://archive/"

ArchiveMode = Literal["copy", "move"]

# Ledger datasets deleted by a move export (conversations are kept)
MOVED_RECORD_KINDS = (
    RecordKind.DECISIONS,
    RecordKind.USAGE_RECORDS,
    RecordKind.PURCHASE_RECORDS,
    RecordKind.ACCESS_LOGS,
)


def archive_ref(export_id: str) -> str:
    return f"{ARCHIVE_REF_PREFIX}{export_id}"


class ArchiveInclude(BaseModel):
    """Datasets to include in an export (all by default)."""

    memories: bool = True
    chunks: bool = True
    conversations: bool = True
    decisions: bool = True
    usage_records: bool = True
    purchase_records: bool = True
    access_logs: bool = True

    def includes(self, kind: RecordKind) -> bool:
        return getattr(self, kind.value)


class ArchivedMemory(MemoryItem):
    embedding: Optional[List[float]] = None


class ArchivedChunk(Chunk):
    embedding: Optional[List[float]] = None


class ArchiveRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class ArchiveCounts(BaseModel):
    memories: int = 0
    chunks: int = 0
    conversations: int = 0
    decisions: int = 0
    usage_records: int = 0
    purchase_records: int = 0
    access_logs: int = 0


class ArchiveDatasets(BaseModel):
    memories: List[ArchivedMemory] = Field(default_factory=list)
    chunks: List[ArchivedChunk] = Field(default_factory=list)
    conversations: List[Conversation] = Field(default_factory=list)
    decisions: List[Decision] = Field(default_factory=list)
    usage_records: List[UsageRecord] = Field(default_factory=list)
    purchase_records: List[PurchaseRecord] = Field(default_factory=list)
    access_logs: List[AccessLog] = Field(default_factory=list)

    def records(self, kind: RecordKind) -> list:
        return getattr(self, kind.value)

    def counts(self) -> ArchiveCounts:
        return ArchiveCounts(
            **{name: len(getattr(self, name)) for name in ArchiveCounts.model_fields}
        )


class ArchivePayload(BaseModel):
    """
    Versioned archive of one organization's memory and ledger data.

    Serialize with ``model_dump_json()``; load with ``model_validate_json()``.
    """

    version: int = ARCHIVE_VERSION
    export_id: str
    exported_at: datetime = Field(default_factory=utcnow)
    org_id: str
    mode: ArchiveMode = "copy"
    range: ArchiveRange = Field(default_factory=ArchiveRange)
    counts: ArchiveCounts = Field(default_factory=ArchiveCounts)
    datasets: ArchiveDatasets = Field(default_factory=ArchiveDatasets)


class RestoreResult(BaseModel):
    """
    Rows inserted by a restore and rows skipped because their id already existed.

    ``reapplied`` counts skipped memory items of the same organization whose
    chunks, vectors and tier were brought back in place.
    """

    export_id: str
    restored: ArchiveCounts = Field(default_factory=ArchiveCounts)
    skipped: ArchiveCounts = Field(default_factory=ArchiveCounts)
    reapplied: int = 0
