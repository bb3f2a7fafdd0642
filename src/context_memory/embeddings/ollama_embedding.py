"""Ollama embedding adapter for context-memory."""

from typing import Any, Dict, List, Optional

import httpx

from context_memory.chunker import Tokenizer
from context_memory.embeddings.http import HTTPEmbeddingProvider


class OllamaEmbedding(HTTPEmbeddingProvider):
    """
    Embedding adapter for a local or remote Ollama server.

    Models whose name contains "large" (e.g. mxbai-embed-large) produce 1024
    dimensions, everything else is assumed to be 768 (nomic-embed-text).

    Example:
        >>> embedder = OllamaEmbedding(model="nomic-embed-text")
        >>> vector = await embedder.generate_embedding("I like pizza")
        >>> len(vector)
        768
    """

    name = "ollama"

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        dimension: Optional[int] = None,
        max_tokens: int = 8192,
        timeout: float = 30.0,
        tokenizer: Optional[Tokenizer] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if dimension is None:
            dimension = 1024 if "large" in model else 768

        super().__init__(
            model=model,
            base_url=base_url,
            dimension=dimension,
            max_tokens=max_tokens,
            timeout=timeout,
            tokenizer=tokenizer,
            client=client,
        )

    def _url(self) -> str:
        return f"{self._base_url}/api/embeddings"

    def _build_body(self, text: str) -> Dict[str, Any]:
        return {"model": self._model, "prompt": text}

    def _parse_response(self, data: Any) -> List[float]:
        return data["embedding"]
