"""Archive export/restore for context-memory."""

from context_memory.archive.models import (
    ARCHIVE_VERSION,
    ArchiveCounts,
    ArchiveInclude,
    ArchivePayload,
    RestoreResult,
)
from context_memory.archive.service import ArchiveService

__all__ = [
    "ARCHIVE_VERSION",
    "ArchiveCounts",
    "ArchiveInclude",
    "ArchivePayload",
    "ArchiveService",
    "RestoreResult",
]
