"""
context-memory: Multi-tenant context memory with tiered retention.

Core components:
- chunker: Token-window chunking
- embeddings: Pluggable embedding providers normalized to the storage dimension
- search: Scored, deduplicated, tiered retrieval
- refrag: Chunk-level retrieval with selective expansion (SENSE / REFRAG)
- retention: HOT/WARM/COLD/DELETED lifecycle engine and scheduler
- jobs: Keyed background jobs and chunk workers
- archive: Versioned export/restore
- storage: Protocol abstractions for the relational repository and vector index
"""

__version__ = "0.1.0"

from context_memory.config import MemorySettings, get_settings
from context_memory.errors import (
    ConfigurationError,
    ContextMemoryError,
    PermanentError,
    RetryableError,
)
from context_memory.memory_service import MemoryService
from context_memory.models import (
    Chunk,
    MemoryItem,
    RetentionTier,
    ScoredMemoryItem,
    SearchFilters,
    StoreRequest,
    StoreResult,
)

__all__ = [
    "__version__",
    # Settings
    "MemorySettings",
    "get_settings",
    # Errors
    "ContextMemoryError",
    "ConfigurationError",
    "RetryableError",
    "PermanentError",
    # Models
    "MemoryItem",
    "Chunk",
    "RetentionTier",
    "ScoredMemoryItem",
    "SearchFilters",
    "StoreRequest",
    "StoreResult",
    "MemoryService",
]
