"""Tests for OpenAI embedding adapter."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from context_memory.errors import EmbeddingPermanentError, EmbeddingRetryableError

openai = pytest.importorskip("openai")

from context_memory.embeddings.openai_embedding import OpenAIEmbedding  # noqa: E402

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


@pytest.fixture
def mock_openai_env(monkeypatch):
    """Set mock OpenAI API key for testing."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key-for-testing")


def status_error(status: int) -> "openai.APIStatusError":
    return openai.APIStatusError(
        f"status {status}", response=httpx.Response(status, request=REQUEST), body=None
    )


def with_response(embedder: OpenAIEmbedding, vector=None, error=None) -> AsyncMock:
    create = AsyncMock()
    if error is not None:
        create.side_effect = error
    else:
        create.return_value = SimpleNamespace(data=[SimpleNamespace(embedding=vector)])
    embedder._client = SimpleNamespace(embeddings=SimpleNamespace(create=create))
    return create


def test_openai_default_dimensions(mock_openai_env):
    """Test default dimensions for known models."""
    assert OpenAIEmbedding(model="text-embedding-3-small").dimension == 1536
    assert OpenAIEmbedding(model="text-embedding-3-large").dimension == 3072
    assert OpenAIEmbedding(model="text-embedding-ada-002").dimension == 1536


def test_openai_custom_dimensions(mock_openai_env):
    """Test custom dimension configuration."""
    for dim in [512, 768, 1024, 1536]:
        embedder = OpenAIEmbedding(model="text-embedding-3-small", dimensions=dim)
        assert embedder.dimension == dim


def test_openai_custom_base_url(mock_openai_env):
    """Test custom base URL for Azure/OpenRouter."""
    embedder = OpenAIEmbedding(
        model="text-embedding-3-small",
        base_url="https://custom-endpoint.example.com/v1",
    )
    assert embedder.model_name == "text-embedding-3-small"
    assert embedder.max_tokens == 8191


@pytest.mark.asyncio
async def test_generate_embedding_passes_dimensions(mock_openai_env):
    embedder = OpenAIEmbedding(dimensions=4)
    create = with_response(embedder, vector=[0.1, 0.2, 0.3, 0.4])

    vector = await embedder.generate_embedding("I like pizza")

    assert vector == [0.1, 0.2, 0.3, 0.4]
    create.assert_awaited_once_with(
        model="text-embedding-3-small", input="I like pizza", dimensions=4
    )


@pytest.mark.asyncio
async def test_generate_embedding_truncates_input(mock_openai_env, tokenizer):
    embedder = OpenAIEmbedding(max_tokens=3, tokenizer=tokenizer)
    create = with_response(embedder, vector=[0.1])

    await embedder.generate_embedding("one two three four five")

    assert create.await_args.kwargs["input"] == "one two three"


@pytest.mark.asyncio
async def test_empty_text_rejected(mock_openai_env):
    embedder = OpenAIEmbedding()
    create = with_response(embedder, vector=[0.1])

    with pytest.raises(EmbeddingPermanentError):
        await embedder.generate_embedding("   ")
    create.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503])
async def test_transient_status_is_retryable(mock_openai_env, status):
    embedder = OpenAIEmbedding()
    with_response(embedder, error=status_error(status))

    with pytest.raises(EmbeddingRetryableError) as exc_info:
        await embedder.generate_embedding("I like pizza")

    assert exc_info.value.details["status"] == status


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 404])
async def test_client_status_is_permanent(mock_openai_env, status):
    embedder = OpenAIEmbedding()
    with_response(embedder, error=status_error(status))

    with pytest.raises(EmbeddingPermanentError):
        await embedder.generate_embedding("I like pizza")


@pytest.mark.asyncio
async def test_connection_error_is_retryable(mock_openai_env):
    embedder = OpenAIEmbedding()
    with_response(embedder, error=openai.APIConnectionError(request=REQUEST))

    with pytest.raises(EmbeddingRetryableError, match="Connection failed"):
        await embedder.generate_embedding("I like pizza")
