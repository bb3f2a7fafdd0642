"""Cohere embedding adapter for context-memory."""

import os
from typing import Any, Dict, List, Optional

import httpx

from context_memory.chunker import Tokenizer
from context_memory.embeddings.http import HTTPEmbeddingProvider


class CohereEmbedding(HTTPEmbeddingProvider):
    """Embedding adapter using Cohere's v1 embed endpoint (1024 dimensions)."""

    name = "cohere"

    def __init__(
        self,
        model: str = "embed-english-v3.0",
        api_key: Optional[str] = None,
        base_url: str = "https://api.cohere.ai/v1",
        dimension: int = 1024,
        max_tokens: int = 512,
        input_type: str = "search_document",
        timeout: float = 30.0,
        tokenizer: Optional[Tokenizer] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        api_key = api_key or os.getenv("COHERE_API_KEY")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._input_type = input_type

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
        return f"{self._base_url}/embed"

    def _build_body(self, text: str) -> Dict[str, Any]:
        return {"texts": [text], "model": self._model, "input_type": self._input_type}

    def _parse_response(self, data: Any) -> List[float]:
        return data["embeddings"][0]
