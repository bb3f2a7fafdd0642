"""HuggingFace Inference API embedding adapter for context-memory."""

import os
from typing import Any, Dict, List, Optional

import httpx

from context_memory.chunker import Tokenizer
from context_memory.embeddings.http import HTTPEmbeddingProvider

DEFAULT_BASE_URL = "https://api-inference.huggingface.co/models"


class HuggingFaceEmbedding(HTTPEmbeddingProvider):
    """
    Embedding adapter using the HuggingFace feature-extraction endpoint.

    MiniLM models produce 384 dimensions, mpnet/base models 768.
    """

    name = "huggingface"

    def __init__(
        self,
        model: str = "sentence-transformers/all-MiniLM-L6-v2",
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        dimension: Optional[int] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
        tokenizer: Optional[Tokenizer] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if dimension is None:
            dimension = 384 if "MiniLM" in model else 768

        api_key = api_key or os.getenv("HUGGINGFACE_API_KEY")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

        super().__init__(
            model=model,
            base_url=base_url,
            dimension=dimension,
            max_tokens=max_tokens,
            headers=headers,
            timeout=timeout,
            tokenizer=tokenizer,
            client=client,
        )

    def _url(self) -> str:
        return f"{self._base_url}/{self._model}"

    def _build_body(self, text: str) -> Dict[str, Any]:
        return {"inputs": text, "options": {"wait_for_model": True}}

    def _parse_response(self, data: Any) -> List[float]:
        # Sentence models return a flat vector, token models one per input
        if data and isinstance(data[0], list):
            return data[0]
        return data
