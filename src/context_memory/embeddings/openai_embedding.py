"""OpenAI embedding adapter for context-memory."""

import logging
import os
from typing import List, Optional

from context_memory.chunker import Tokenizer
from context_memory.embeddings.utils import require_text, truncate_input
from context_memory.errors import EmbeddingPermanentError, EmbeddingRetryableError

logger = logging.getLogger(__name__)

MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbedding:
    """
    Embedding adapter using OpenAI's embedding API.

    Supports OpenAI's embedding models via API:
    - text-embedding-3-small (1536 dims, configurable 512-1536)
    - text-embedding-3-large (3072 dims)
    - text-embedding-ada-002 (1536 dims, legacy)

    Also compatible with OpenAI-compatible APIs (Azure, OpenRouter, etc.)

    Example:
        >>> embedder = OpenAIEmbedding(model="text-embedding-3-small", api_key="sk-...")
        >>> vector = await embedder.generate_embedding("I like pizza")
        >>> len(vector)
        1536
    """

    name = "openai"

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        max_tokens: int = 8191,
        timeout: float = 30.0,
        tokenizer: Optional[Tokenizer] = None,
    ):
        """
        Initialize OpenAI embedder.

        Args:
            model: OpenAI model name (default: text-embedding-3-small)
            api_key: OpenAI API key (None = use OPENAI_API_KEY env var)
            base_url: Custom endpoint (None = official OpenAI, or Azure/OpenRouter)
            dimensions: Output dimension (only for text-embedding-3 models)
            max_tokens: Input window; longer input is truncated
            timeout: Request timeout in seconds
            tokenizer: Optional exact tokenizer used for truncation
        """
        try:
            import openai
        except ImportError as e:
            raise ImportError(
                "openai is required for OpenAIEmbedding. "
                "Install with: pip install openai"
            ) from e

        self._openai = openai
        self._model = model
        self._dimensions = dimensions
        self._max_tokens = max_tokens
        self._tokenizer = tokenizer

        # Retries belong to the job layer, not the client
        self._client = openai.AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

        self._dimension = dimensions or MODEL_DIMENSIONS.get(model, 1536)
        logger.info(f"OpenAI embedder initialized: {model} ({self._dimension} dimensions)")

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    async def generate_embedding(self, text: str) -> List[float]:
        require_text(self.name, text)

        kwargs = {
            "model": self._model,
            "input": truncate_input(text, self._max_tokens, self._tokenizer),
        }
        if self._dimensions is not None:
            kwargs["dimensions"] = self._dimensions

        openai = self._openai
        try:
            response = await self._client.embeddings.create(**kwargs)
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise EmbeddingRetryableError(self.name, f"Connection failed: {e}") from e
        except openai.APIStatusError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise EmbeddingRetryableError(
                    self.name, f"Transient API error: {e}", {"status": e.status_code}
                ) from e
            raise EmbeddingPermanentError(
                self.name, f"Request rejected: {e}", {"status": e.status_code}
            ) from e

        return list(response.data[0].embedding)
