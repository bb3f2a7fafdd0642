"""
Embedding provider protocol for context-memory.

Provides a unified interface over interchangeable embedding backends so the
rest of the system never depends on a specific vendor.
"""

from typing import List, Protocol

from typing_extensions import runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Protocol for embedding providers.

    Embedding providers convert strings into dense vectors for similarity
    search. All implementations must:

    1. Expose their native output dimension and maximum input window
    2. Truncate input to ``max_tokens`` before calling the backend
    3. Raise EmbeddingRetryableError for transient failures (rate limit,
       timeout, 5xx) and EmbeddingPermanentError otherwise

    Vectors are returned at the provider's native dimension. Wrap a provider
    in NormalizedEmbedder to get vectors at the storage dimension.

    Example:
        >>> provider = OpenAIEmbedding()
        >>> vector = await provider.generate_embedding("Hello world")
        >>> len(vector) == provider.dimension
        True
    """

    @property
    def name(self) -> str:
        """Short provider identifier (e.g. "openai", "ollama")."""
        ...

    @property
    def model_name(self) -> str:
        """Identifier of the embedding model."""
        ...

    @property
    def dimension(self) -> int:
        """
        Native vector dimension produced by this provider.

        Compared against the storage dimension at configuration time.
        """
        ...

    @property
    def max_tokens(self) -> int:
        """Maximum input window of the model, in tokens."""
        ...

    async def generate_embedding(self, text: str) -> List[float]:
        """
        Generate an embedding for one text.

        Args:
            text: Text to embed (truncated to max_tokens)

        Returns:
            Embedding vector at the native dimension

        Raises:
            EmbeddingPermanentError: If text is empty, or the request is rejected
            EmbeddingRetryableError: If the backend is rate limited or unavailable
        """
        ...
