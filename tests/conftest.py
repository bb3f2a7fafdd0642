"""Shared fixtures: deterministic tokenizer/embedder and in-memory backends."""

import zlib
from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from context_memory.config import MemorySettings
from context_memory.errors import EmbeddingPermanentError
from context_memory.models import MemoryItem, utcnow
from context_memory.search import content_tokens
from context_memory.storage.relational.memory import InMemoryMemoryRepository
from context_memory.storage.vector.memory import InMemoryVectorIndex

DIMENSION = 8


class WhitespaceTokenizer:
    """Each whitespace-separated word is one token."""

    def __init__(self):
        self._ids: Dict[str, int] = {}
        self._words: List[str] = []

    def encode(self, text: str) -> List[int]:
        tokens = []
        for word in text.split():
            if word not in self._ids:
                self._ids[word] = len(self._words)
                self._words.append(word)
            tokens.append(self._ids[word])
        return tokens

    def decode(self, tokens: List[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


class FakeEmbedder:
    """
    Deterministic bag-of-words embedder.

    Texts sharing words get similar vectors; ``vectors`` pins exact vectors
    for given texts.
    """

    name = "fake"
    model_name = "fake-embedding"
    max_tokens = 512

    def __init__(self, dimension: int = DIMENSION, vectors: Optional[Dict[str, List[float]]] = None):
        self.dimension = dimension
        self.vectors = vectors or {}
        self.calls: List[str] = []

    async def generate_embedding(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingPermanentError(self.name, "Cannot embed empty text")
        self.calls.append(text)
        if text in self.vectors:
            return list(self.vectors[text])

        vector = [0.0] * self.dimension
        for token in content_tokens(text):
            vector[zlib.crc32(token.encode()) % self.dimension] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


@pytest.fixture
def tokenizer():
    return WhitespaceTokenizer()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def settings():
    return MemorySettings(
        _env_file=None,
        embedding_provider="openai",
        embedding_native_dimension=DIMENSION,
        storage_dimension=DIMENSION,
        refrag_enabled=True,
    )


@pytest.fixture
def repository():
    return InMemoryMemoryRepository()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex(dimension=DIMENSION)


@pytest.fixture
def make_memory():
    """Factory for memory items, ``age_days`` back-dates creation."""

    def _make(content: str = "I like pizza", age_days: float = 0.0, **overrides) -> MemoryItem:
        created_at = utcnow() - timedelta(days=age_days)
        fields = {
            "user_id": "user-1",
            "org_id": "org-1",
            "agent_id": "agent-1",
            "content": content,
            "created_at": created_at,
            "updated_at": created_at,
        }
        fields.update(overrides)
        return MemoryItem(**fields)

    return _make
