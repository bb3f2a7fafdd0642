"""Helpers shared by embedding providers."""

import logging
from typing import List, Optional, Sequence

from context_memory.chunker import Tokenizer
from context_memory.errors import EmbeddingPermanentError

logger = logging.getLogger(__name__)


def normalize_dimensions(values: Sequence[float], target_dim: int) -> List[float]:
    """
    Pad with zeros or truncate a vector to ``target_dim``.

    Truncation is lossy. It keeps the storage schema stable when the
    provider changes.

    Example:
        >>> normalize_dimensions([0.1, 0.2], 4)
        [0.1, 0.2, 0.0, 0.0]
        >>> normalize_dimensions([0.1, 0.2, 0.3], 2)
        [0.1, 0.2]
    """
    if target_dim <= 0:
        raise ValueError(f"target_dim must be positive, got {target_dim}")

    vector = [float(v) for v in values]
    if len(vector) >= target_dim:
        return vector[:target_dim]
    return vector + [0.0] * (target_dim - len(vector))


def truncate_input(
    text: str,
    max_tokens: int,
    tokenizer: Optional[Tokenizer] = None,
    chars_per_token: float = 3.5,
) -> str:
    """
    Truncate text to a provider's input window.

    Exact when a tokenizer is given, otherwise uses the characters-per-token
    heuristic.
    """
    if tokenizer is not None:
        tokens = tokenizer.encode(text)
        if len(tokens) <= max_tokens:
            return text
        logger.debug(f"Truncating embedding input from {len(tokens)} to {max_tokens} tokens")
        return tokenizer.decode(tokens[:max_tokens])

    max_chars = int(max_tokens * chars_per_token)
    return text[:max_chars]


def require_text(provider: str, text: str) -> None:
    if not text or not text.strip():
        raise EmbeddingPermanentError(provider, "Cannot embed empty text")
