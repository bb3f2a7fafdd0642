"""
Content chunking for REFRAG.

Handles tokenization and splitting of content into fixed-size token windows
for fine-grained retrieval and selective expansion.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Protocol

from typing_extensions import runtime_checkable

from context_memory.errors import ChunkingError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 16
DEFAULT_MIN_CHUNK_LENGTH = 32
DEFAULT_CHARS_PER_TOKEN = 3.5


@runtime_checkable
class Tokenizer(Protocol):
    """Exact tokenizer used for chunk boundaries and token counts."""

    def encode(self, text: str) -> List[int]:
        ...

    def decode(self, tokens: List[int]) -> str:
        ...


class TiktokenTokenizer:
    """
    Tokenizer backed by tiktoken.

    Example:
        >>> tokenizer = TiktokenTokenizer("cl100k_base")
        >>> tokenizer.decode(tokenizer.encode("hello world"))
        'hello world'
    """

    def __init__(self, encoding_name: str = "cl100k_base"):
        try:
            import tiktoken
        except ImportError as e:
            raise ImportError(
                "tiktoken is required for TiktokenTokenizer. Install with: pip install tiktoken"
            ) from e

        self._encoding = tiktoken.get_encoding(encoding_name)
        self.encoding_name = encoding_name

    def encode(self, text: str) -> List[int]:
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: List[int]) -> str:
        return self._encoding.decode(tokens)


@dataclass
class TextChunk:
    index: int
    content: str
    token_count: int


@dataclass
class ChunkingResult:
    chunks: List[TextChunk] = field(default_factory=list)
    total_tokens: int = 0
    should_chunk: bool = False


@dataclass
class ChunkStats:
    total_tokens: int
    estimated_chunks: int
    should_chunk: bool
    avg_tokens_per_chunk: float


class Chunker:
    """
    Splits content into fixed-size token windows.

    Content shorter than ``min_chunk_length`` tokens is returned as a single
    chunk with ``should_chunk=False``. Longer content is split into windows
    of ``chunk_size`` tokens (the last one possibly shorter) indexed from 0.

    Example:
        >>> chunker = Chunker(TiktokenTokenizer(), chunk_size=16, min_chunk_length=32)
        >>> result = chunker.chunk_content(long_text)
        >>> [c.index for c in result.chunks]
        [0, 1, 2, ...]
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        min_chunk_length: int = DEFAULT_MIN_CHUNK_LENGTH,
        chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
    ):
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")

        self.tokenizer = tokenizer
        self.chunk_size = chunk_size
        self.min_chunk_length = min_chunk_length
        self.chars_per_token = chars_per_token

    def _encode(self, content: str) -> List[int]:
        try:
            return self.tokenizer.encode(content)
        except Exception as e:
            raise ChunkingError(f"Tokenizer failed: {e}") from e

    def should_chunk(self, content: str) -> bool:
        """True iff the exact token count reaches the minimum chunk length."""
        return len(self._encode(content)) >= self.min_chunk_length

    def chunk_content(self, content: str) -> ChunkingResult:
        """
        Chunk content into fixed-size token windows.

        Args:
            content: The text content to chunk

        Returns:
            ChunkingResult with ordered chunks and token totals
        """
        tokens = self._encode(content)
        total_tokens = len(tokens)

        if total_tokens < self.min_chunk_length:
            return ChunkingResult(
                chunks=[TextChunk(index=0, content=content, token_count=total_tokens)],
                total_tokens=total_tokens,
                should_chunk=False,
            )

        chunks = []
        for start in range(0, total_tokens, self.chunk_size):
            window = tokens[start : start + self.chunk_size]
            try:
                text = self.tokenizer.decode(window)
            except Exception as e:
                raise ChunkingError(f"Tokenizer failed to decode window {start}: {e}") from e
            chunks.append(
                TextChunk(index=start // self.chunk_size, content=text, token_count=len(window))
            )

        logger.debug(f"Chunked {total_tokens} tokens into {len(chunks)} chunks")
        return ChunkingResult(chunks=chunks, total_tokens=total_tokens, should_chunk=True)

    def chunk_batch(self, contents: List[str]) -> List[ChunkingResult]:
        return [self.chunk_content(content) for content in contents]

    def count_tokens(self, content: str) -> int:
        """Exact token count using the tokenizer."""
        return len(self._encode(content))

    def estimate_tokens(self, content: str) -> int:
        """Character-based estimate, cheaper than tokenizing."""
        return math.ceil(len(content) / self.chars_per_token)

    def chunk_stats(self, content: str) -> ChunkStats:
        """Statistics about how content would be chunked."""
        total_tokens = self.count_tokens(content)
        should_chunk = total_tokens >= self.min_chunk_length
        estimated_chunks = math.ceil(total_tokens / self.chunk_size) if should_chunk else 1
        avg = total_tokens / estimated_chunks if should_chunk else float(total_tokens)

        return ChunkStats(
            total_tokens=total_tokens,
            estimated_chunks=estimated_chunks,
            should_chunk=should_chunk,
            avg_tokens_per_chunk=avg,
        )

    def validate_config(self) -> List[str]:
        errors = []
        if self.min_chunk_length < self.chunk_size:
            errors.append(
                f"Minimum chunk length ({self.min_chunk_length}) should be >= "
                f"chunk size ({self.chunk_size})"
            )
        return errors
