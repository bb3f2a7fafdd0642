"""Build embedding providers from settings."""

import logging
from typing import Optional

from context_memory.chunker import Tokenizer
from context_memory.config import MemorySettings
from context_memory.embeddings.normalized import NormalizedEmbedder
from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.errors import ConfigurationError

logger = logging.getLogger(__name__)


def create_embedding_provider(
    settings: MemorySettings, tokenizer: Optional[Tokenizer] = None
) -> EmbeddingProvider:
    """
    Create the configured provider at its native dimension.

    Args:
        settings: Memory settings
        tokenizer: Optional exact tokenizer for input truncation

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    provider = settings.embedding_provider
    api_key = settings.embedding_api_key.get_secret_value() if settings.embedding_api_key else None
    kwargs = {}
    if settings.embedding_model:
        kwargs["model"] = settings.embedding_model
    if settings.embedding_base_url:
        kwargs["base_url"] = settings.embedding_base_url

    if provider == "openai":
        from context_memory.embeddings.openai_embedding import OpenAIEmbedding

        return OpenAIEmbedding(
            api_key=api_key,
            dimensions=settings.embedding_native_dimension,
            tokenizer=tokenizer,
            **kwargs,
        )

    if provider == "ollama":
        from context_memory.embeddings.ollama_embedding import OllamaEmbedding

        return OllamaEmbedding(
            dimension=settings.embedding_native_dimension, tokenizer=tokenizer, **kwargs
        )

    if provider == "huggingface":
        from context_memory.embeddings.huggingface_embedding import HuggingFaceEmbedding

        return HuggingFaceEmbedding(
            api_key=api_key,
            dimension=settings.embedding_native_dimension,
            tokenizer=tokenizer,
            **kwargs,
        )

    if provider == "cohere":
        from context_memory.embeddings.cohere_embedding import CohereEmbedding

        if settings.embedding_native_dimension:
            kwargs["dimension"] = settings.embedding_native_dimension
        return CohereEmbedding(api_key=api_key, tokenizer=tokenizer, **kwargs)

    if provider == "sentence_transformers":
        from context_memory.embeddings.sentence_transformer_embedding import (
            SentenceTransformerEmbedding,
        )

        model_name = settings.embedding_model or "intfloat/e5-base-v2"
        return SentenceTransformerEmbedding(model_name=model_name, tokenizer=tokenizer)

    raise ConfigurationError([f"Unknown embedding provider: {provider}"])


def create_storage_embedder(
    settings: MemorySettings, tokenizer: Optional[Tokenizer] = None
) -> NormalizedEmbedder:
    """Create the configured provider wrapped to the storage dimension."""
    provider = create_embedding_provider(settings, tokenizer)
    logger.info(
        f"Embedding provider: {provider.name}/{provider.model_name} "
        f"({provider.dimension} -> {settings.storage_dimension})"
    )
    return NormalizedEmbedder(provider, settings.storage_dimension)
