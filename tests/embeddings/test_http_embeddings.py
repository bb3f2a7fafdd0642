"""Tests for the HTTP embedding adapters (Ollama, HuggingFace, Cohere)."""

import json

import httpx
import pytest

from context_memory.embeddings import CohereEmbedding, HuggingFaceEmbedding, OllamaEmbedding
from context_memory.errors import EmbeddingPermanentError, EmbeddingRetryableError


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def recording(status: int = 200, body=None):
    """Handler returning a fixed response and recording requests."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json=body)

    return handler, requests


def test_ollama_dimension_from_model():
    assert OllamaEmbedding(model="nomic-embed-text").dimension == 768
    assert OllamaEmbedding(model="mxbai-embed-large").dimension == 1024
    assert OllamaEmbedding(model="custom", dimension=512).dimension == 512


def test_huggingface_dimension_from_model():
    assert HuggingFaceEmbedding().dimension == 384
    assert HuggingFaceEmbedding(model="sentence-transformers/all-mpnet-base-v2").dimension == 768


@pytest.mark.asyncio
async def test_ollama_request_and_response():
    handler, requests = recording(body={"embedding": [0.1, 0.2, 0.3]})
    embedder = OllamaEmbedding(base_url="http://ollama:11434/", client=mock_client(handler))

    vector = await embedder.generate_embedding("I like pizza")

    assert vector == [0.1, 0.2, 0.3]
    assert str(requests[0].url) == "http://ollama:11434/api/embeddings"
    assert json.loads(requests[0].content) == {"model": "nomic-embed-text", "prompt": "I like pizza"}


@pytest.mark.asyncio
async def test_huggingface_nested_response():
    handler, requests = recording(body=[[0.5, 0.25]])
    embedder = HuggingFaceEmbedding(client=mock_client(handler))

    assert await embedder.generate_embedding("hello") == [0.5, 0.25]
    assert requests[0].url.path.endswith("sentence-transformers/all-MiniLM-L6-v2")
    assert json.loads(requests[0].content)["inputs"] == "hello"


@pytest.mark.asyncio
async def test_huggingface_flat_response():
    handler, _ = recording(body=[0.5, 0.25])
    embedder = HuggingFaceEmbedding(client=mock_client(handler))

    assert await embedder.generate_embedding("hello") == [0.5, 0.25]


@pytest.mark.asyncio
async def test_cohere_request_and_response():
    handler, requests = recording(body={"embeddings": [[1, 2, 3]]})
    embedder = CohereEmbedding(api_key="key", client=mock_client(handler))

    assert await embedder.generate_embedding("hello") == [1.0, 2.0, 3.0]
    body = json.loads(requests[0].content)
    assert body == {"texts": ["hello"], "model": "embed-english-v3.0", "input_type": "search_document"}


@pytest.mark.asyncio
async def test_input_truncated_without_tokenizer():
    handler, requests = recording(body={"embedding": [0.1]})
    embedder = OllamaEmbedding(max_tokens=2, client=mock_client(handler))

    await embedder.generate_embedding("abcdefghijklmnop")

    # 2 tokens * 3.5 chars per token
    assert json.loads(requests[0].content)["prompt"] == "abcdefg"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [408, 429, 500, 502])
async def test_transient_status_is_retryable(status):
    handler, _ = recording(status=status, body={"error": "busy"})
    embedder = OllamaEmbedding(client=mock_client(handler))

    with pytest.raises(EmbeddingRetryableError) as exc_info:
        await embedder.generate_embedding("hello")

    assert exc_info.value.details == {"status": status}


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 404])
async def test_client_status_is_permanent(status):
    handler, _ = recording(status=status, body={"error": "nope"})
    embedder = CohereEmbedding(client=mock_client(handler))

    with pytest.raises(EmbeddingPermanentError):
        await embedder.generate_embedding("hello")


@pytest.mark.asyncio
async def test_transport_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    embedder = OllamaEmbedding(client=mock_client(handler))

    with pytest.raises(EmbeddingRetryableError, match="Transport error"):
        await embedder.generate_embedding("hello")


@pytest.mark.asyncio
async def test_unexpected_shape_is_permanent():
    handler, _ = recording(body={"unexpected": True})
    embedder = OllamaEmbedding(client=mock_client(handler))

    with pytest.raises(EmbeddingPermanentError, match="Unexpected response shape"):
        await embedder.generate_embedding("hello")


@pytest.mark.asyncio
async def test_empty_text_never_sent():
    handler, requests = recording(body={"embedding": [0.1]})
    embedder = OllamaEmbedding(client=mock_client(handler))

    with pytest.raises(EmbeddingPermanentError):
        await embedder.generate_embedding("")

    assert requests == []
