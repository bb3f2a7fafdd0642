"""Wrapper that pins any provider's output to the storage dimension."""

import logging
from typing import List

from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.embeddings.utils import normalize_dimensions

logger = logging.getLogger(__name__)


class NormalizedEmbedder:
    """
    Embedding provider that always returns ``storage_dimension`` values.

    Every vector persisted by the system goes through this wrapper (or
    through normalize_dimensions directly on restore), so swapping providers
    never changes the vector schema.
    """

    def __init__(self, provider: EmbeddingProvider, storage_dimension: int):
        self.provider = provider
        self.storage_dimension = storage_dimension

        if provider.dimension != storage_dimension:
            action = "truncated" if provider.dimension > storage_dimension else "zero-padded"
            logger.warning(
                f"{provider.name} returns {provider.dimension} dimensions, vectors will be "
                f"{action} to {storage_dimension}"
            )

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    @property
    def dimension(self) -> int:
        return self.storage_dimension

    @property
    def max_tokens(self) -> int:
        return self.provider.max_tokens

    async def generate_embedding(self, text: str) -> List[float]:
        vector = await self.provider.generate_embedding(text)
        return normalize_dimensions(vector, self.storage_dimension)
