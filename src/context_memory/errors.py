"""
Exception hierarchy for context-memory.

Errors are split into retryable (transient) and permanent categories so the
background job layer can decide whether a failure is worth another attempt.
Interactive paths simply propagate them.
"""

from typing import Any, Dict, List, Optional


class ContextMemoryError(Exception):
    """Base exception for all context-memory errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class RetryableError(ContextMemoryError):
    """
    Transient errors that should be retried.

    Examples: rate limits, timeouts, temporary network issues.
    """


class PermanentError(ContextMemoryError):
    """
    Errors that won't be fixed by retrying.

    Examples: invalid input, authentication failures, bad configuration.
    """


class ConfigurationError(PermanentError):
    """Raised when settings fail validation."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__(
            f"Invalid configuration ({len(self.violations)} violation(s))",
            {"violations": self.violations},
        )


class ChunkingError(PermanentError):
    """Raised when the tokenizer fails on a piece of content."""


# =============================================================================
# Embedding Errors
# =============================================================================


class EmbeddingError(ContextMemoryError):
    """Base exception for embedding provider failures."""

    def __init__(self, provider: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        super().__init__(f"[{provider}] {message}", details)


class EmbeddingRetryableError(EmbeddingError, RetryableError):
    """Rate limit, timeout or transient upstream failure."""


class EmbeddingPermanentError(EmbeddingError, PermanentError):
    """Bad input, authentication failure or unsupported request."""


# =============================================================================
# Storage / Retrieval Errors
# =============================================================================


class StorageError(RetryableError):
    """Raised when a storage backend operation fails."""


class MemoryNotFoundError(PermanentError):
    """Raised when a memory item does not exist."""

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"Memory {memory_id} not found")


class RefragDisabledError(PermanentError):
    """Raised when REFRAG retrieval is called while the feature is off."""

    def __init__(self):
        super().__init__(
            "REFRAG retrieval is disabled (set CONTEXT_MEMORY_REFRAG_ENABLED=true)"
        )


class TierTransitionError(PermanentError):
    """Raised for retention tier operations that are not allowed."""


class ArchiveValidationError(PermanentError):
    """Raised when an archive payload fails version or scope validation."""


# =============================================================================
# Job Errors
# =============================================================================


class JobStateError(PermanentError):
    """Raised on an illegal job status transition."""

    def __init__(self, key: str, current: str, target: str):
        self.key = key
        self.current = current
        self.target = target
        super().__init__(f"Job {key}: illegal transition {current} -> {target}")
