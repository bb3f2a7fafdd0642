"""
Base class for embedding backends reached over plain HTTP.

Owns the httpx client and maps transport and status failures onto the
retryable / permanent error split.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from context_memory.chunker import Tokenizer
from context_memory.embeddings.utils import require_text, truncate_input
from context_memory.errors import EmbeddingPermanentError, EmbeddingRetryableError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429}


class HTTPEmbeddingProvider:
    """Shared request/response handling for HTTP embedding providers."""

    name = "http"

    def __init__(
        self,
        model: str,
        base_url: str,
        dimension: int,
        max_tokens: int,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        tokenizer: Optional[Tokenizer] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._dimension = dimension
        self._max_tokens = max_tokens
        self._tokenizer = tokenizer
        self._client = client or httpx.AsyncClient(headers=headers or {}, timeout=timeout)

        logger.info(f"{self.name} embedder initialized: {model} ({dimension} dimensions)")

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    def _url(self) -> str:
        raise NotImplementedError

    def _build_body(self, text: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _parse_response(self, data: Any) -> List[float]:
        raise NotImplementedError

    async def generate_embedding(self, text: str) -> List[float]:
        require_text(self.name, text)
        body = self._build_body(truncate_input(text, self._max_tokens, self._tokenizer))

        try:
            response = await self._client.post(self._url(), json=body)
        except httpx.TransportError as e:
            # Timeouts, connection resets, DNS failures
            raise EmbeddingRetryableError(self.name, f"Transport error: {e}") from e

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS:
            raise EmbeddingRetryableError(
                self.name,
                f"API error: {response.status_code} {response.reason_phrase}",
                {"status": response.status_code},
            )
        if response.status_code >= 400:
            raise EmbeddingPermanentError(
                self.name,
                f"API error: {response.status_code} {response.reason_phrase}",
                {"status": response.status_code},
            )

        try:
            return [float(v) for v in self._parse_response(response.json())]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingPermanentError(self.name, f"Unexpected response shape: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
