"""
Embedding providers for context-memory.

Provides a protocol-based embedding interface with interchangeable backends:
- OpenAIEmbedding: OpenAI API embeddings
- OllamaEmbedding, HuggingFaceEmbedding, CohereEmbedding: HTTP backends
- SentenceTransformerEmbedding: local models
"""

from context_memory.embeddings.cohere_embedding import CohereEmbedding
from context_memory.embeddings.factory import create_embedding_provider, create_storage_embedder
from context_memory.embeddings.huggingface_embedding import HuggingFaceEmbedding
from context_memory.embeddings.normalized import NormalizedEmbedder
from context_memory.embeddings.ollama_embedding import OllamaEmbedding
from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.embeddings.utils import normalize_dimensions, truncate_input

__all__ = [
    "EmbeddingProvider",
    "NormalizedEmbedder",
    "normalize_dimensions",
    "truncate_input",
    "create_embedding_provider",
    "create_storage_embedder",
    "OllamaEmbedding",
    "HuggingFaceEmbedding",
    "CohereEmbedding",
]

# Optional adapters (import only if dependencies available)
try:
    from context_memory.embeddings.openai_embedding import OpenAIEmbedding  # noqa: F401

    __all__.append("OpenAIEmbedding")
except ImportError:
    pass

try:
    from context_memory.embeddings.sentence_transformer_embedding import (  # noqa: F401
        SentenceTransformerEmbedding,
    )

    __all__.append("SentenceTransformerEmbedding")
except ImportError:
    pass
