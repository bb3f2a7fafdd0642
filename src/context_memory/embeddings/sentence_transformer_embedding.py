"""Local sentence-transformers embedding adapter for context-memory."""

import asyncio
import logging
from typing import List, Optional

from context_memory.chunker import Tokenizer
from context_memory.embeddings.utils import require_text, truncate_input
from context_memory.errors import EmbeddingPermanentError

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """
    Embedding adapter running a sentence-transformers model in-process.

    E5 family models expect a "passage: " prefix on stored text; pass it as
    ``prefix`` when using one.

    Example:
        >>> embedder = SentenceTransformerEmbedding("intfloat/e5-base-v2", prefix="passage: ")
        >>> vector = await embedder.generate_embedding("I live in London")
        >>> len(vector)
        768
    """

    name = "sentence_transformers"

    def __init__(
        self,
        model_name: str = "intfloat/e5-base-v2",
        device: Optional[str] = None,
        prefix: str = "",
        normalize_embeddings: bool = True,
        cache_folder: Optional[str] = None,
        tokenizer: Optional[Tokenizer] = None,
    ):
        """
        Initialize the local embedder.

        Args:
            model_name: HuggingFace model identifier
            device: Device for computation ("cuda", "cpu", or None for auto)
            prefix: Text prepended to every input (model-specific)
            normalize_embeddings: L2 normalize vectors (required for cosine similarity)
            cache_folder: Directory for model cache (None = default ~/.cache)
            tokenizer: Optional exact tokenizer used for truncation
        """
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers is required for SentenceTransformerEmbedding. "
                "Install with: pip install context-memory[transformers]"
            ) from e

        self._model_name = model_name
        self._prefix = prefix
        self._normalize = normalize_embeddings
        self._tokenizer = tokenizer

        logger.info(f"Loading sentence-transformers model: {model_name}")
        self._model = SentenceTransformer(model_name, device=device, cache_folder=cache_folder)
        self._dimension = self._model.get_sentence_embedding_dimension()
        self._max_tokens = self._model.get_max_seq_length() or 512
        logger.info(f"Model loaded: {model_name} ({self._dimension} dimensions)")

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    async def generate_embedding(self, text: str) -> List[float]:
        require_text(self.name, text)
        prefixed = f"{self._prefix}{truncate_input(text, self._max_tokens, self._tokenizer)}"

        try:
            # Encoding is CPU bound, keep it off the event loop
            embedding = await asyncio.to_thread(
                self._model.encode,
                prefixed,
                normalize_embeddings=self._normalize,
                show_progress_bar=False,
            )
        except (RuntimeError, ValueError) as e:
            raise EmbeddingPermanentError(self.name, f"Encoding failed: {e}") from e

        return embedding.tolist()
