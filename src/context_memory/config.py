"""
Settings for context-memory.

Centralized configuration using Pydantic Settings with environment variable
loading (prefix ``CONTEXT_MEMORY_``). Every value is overridable, either via
the environment / ``.env`` file or by passing keyword arguments.

Cross-field rules (weights summing to 1.0, threshold ordering, provider vs
storage dimension) are not enforced on construction. They are collected by
``validate_settings()`` so tests can inspect the violation list, while
production entry points call ``require_valid()``.
"""

import math
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from context_memory.errors import ConfigurationError

EmbeddingProviderName = Literal[
    "openai", "ollama", "huggingface", "cohere", "sentence_transformers"
]

# Native output dimension of each provider's default model
PROVIDER_DIMENSIONS: Dict[str, int] = {
    "openai": 1536,
    "ollama": 768,
    "huggingface": 384,
    "cohere": 1024,
    "sentence_transformers": 768,
}

WEIGHT_TOLERANCE = 0.01


class MemorySettings(BaseSettings):
    """Context memory settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONTEXT_MEMORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Embedding
    # -------------------------------------------------------------------------
    embedding_provider: EmbeddingProviderName = Field(
        default="openai", description="Embedding backend"
    )
    embedding_model: Optional[str] = Field(
        default=None, description="Model override (None = provider default)"
    )
    embedding_base_url: Optional[str] = Field(
        default=None, description="Custom endpoint for the embedding backend"
    )
    embedding_api_key: Optional[SecretStr] = Field(
        default=None, description="API key (None = provider-specific env var)"
    )
    embedding_native_dimension: Optional[int] = Field(
        default=None,
        description="Native provider dimension when the model differs from the default",
    )
    storage_dimension: int = Field(
        default=1536, gt=0, description="Dimension of every persisted vector"
    )

    # -------------------------------------------------------------------------
    # Similarity & scoring
    # -------------------------------------------------------------------------
    min_similarity: float = Field(default=0.5, description="Nearest-neighbour floor")
    high_tier_threshold: float = Field(default=0.75)
    medium_tier_threshold: float = Field(default=0.60)
    low_tier_threshold: float = Field(default=0.50)
    similarity_weight: float = Field(default=0.7)
    recency_weight: float = Field(default=0.3)
    recency_decay_days: float = Field(default=30.0, gt=0)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------
    overquery_multiplier: int = Field(default=3, ge=1)
    max_results: int = Field(default=10, ge=1)
    dedup_threshold: float = Field(default=0.90)
    final_score_floor: float = Field(default=0.5)
    high_tier_count: int = Field(default=5, ge=0)
    medium_tier_count: int = Field(default=3, ge=0)
    low_tier_count: int = Field(default=2, ge=0)

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------
    chars_per_token: float = Field(default=3.5, gt=0)
    token_budget: int = Field(default=500, ge=0)
    tokenizer_encoding: str = Field(default="cl100k_base")

    # -------------------------------------------------------------------------
    # REFRAG
    # -------------------------------------------------------------------------
    refrag_enabled: bool = Field(default=False)
    refrag_chunk_size: int = Field(default=16)
    refrag_compression_ratio: float = Field(default=0.70)
    refrag_min_chunk_length: int = Field(default=32)
    refrag_limit: int = Field(default=50, ge=1)

    # -------------------------------------------------------------------------
    # Background processing
    # -------------------------------------------------------------------------
    redis_url: Optional[str] = Field(default="redis://localhost:6379/0")
    job_max_attempts: int = Field(default=3, ge=1)
    job_backoff_seconds: float = Field(default=1.0, ge=0)
    worker_concurrency: int = Field(default=5, ge=1)
    embedding_batch_size: int = Field(default=10, ge=1)
    embedding_batch_delay_seconds: float = Field(default=0.1, ge=0)

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------
    hot_window_days: int = Field(default=30, ge=0)
    warm_window_days: int = Field(default=90, ge=0)
    cold_window_days: int = Field(default=365, ge=0)
    transition_interval_hours: float = Field(default=24.0, gt=0)
    transition_batch_size: int = Field(default=500, ge=1)
    storage_cost_per_mb_month: float = Field(default=0.10, ge=0)

    # -------------------------------------------------------------------------
    # Archive
    # -------------------------------------------------------------------------
    archive_batch_size: int = Field(default=500, ge=1)

    @property
    def provider_dimension(self) -> int:
        """Native dimension of the configured provider."""
        if self.embedding_native_dimension is not None:
            return self.embedding_native_dimension
        return PROVIDER_DIMENSIONS[self.embedding_provider]

    def validate_settings(self) -> List[str]:
        """
        Collect cross-field configuration violations.

        Returns:
            List of human-readable violations (empty when valid)
        """
        errors: List[str] = []

        if self.provider_dimension != self.storage_dimension:
            errors.append(
                f"Embedding dimension mismatch: provider ({self.embedding_provider}) "
                f"returns {self.provider_dimension} dimensions but storage expects "
                f"{self.storage_dimension}"
            )

        weight_sum = self.similarity_weight + self.recency_weight
        if not math.isclose(weight_sum, 1.0, abs_tol=WEIGHT_TOLERANCE):
            errors.append(
                f"Scoring weights must sum to 1.0, got {weight_sum:.3f} "
                f"(similarity: {self.similarity_weight}, recency: {self.recency_weight})"
            )

        for name in (
            "min_similarity",
            "high_tier_threshold",
            "medium_tier_threshold",
            "low_tier_threshold",
            "similarity_weight",
            "recency_weight",
            "dedup_threshold",
            "final_score_floor",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"{name} must be between 0 and 1, got {value}")

        if not (
            self.high_tier_threshold >= self.medium_tier_threshold >= self.low_tier_threshold
        ):
            errors.append(
                "Tier thresholds must be descending (high >= medium >= low), got "
                f"{self.high_tier_threshold}/{self.medium_tier_threshold}/"
                f"{self.low_tier_threshold}"
            )

        if not 0.0 <= self.refrag_compression_ratio <= 1.0:
            errors.append(
                "refrag_compression_ratio must be between 0 and 1, "
                f"got {self.refrag_compression_ratio}"
            )

        if self.refrag_chunk_size <= 0:
            errors.append(f"Chunk size must be positive, got {self.refrag_chunk_size}")

        if self.refrag_min_chunk_length < self.refrag_chunk_size:
            errors.append(
                f"Minimum chunk length ({self.refrag_min_chunk_length}) should be >= "
                f"chunk size ({self.refrag_chunk_size})"
            )

        if not self.hot_window_days <= self.warm_window_days <= self.cold_window_days:
            errors.append(
                "Retention windows must be ascending (hot <= warm <= cold), got "
                f"{self.hot_window_days}/{self.warm_window_days}/{self.cold_window_days}"
            )

        return errors

    def require_valid(self) -> "MemorySettings":
        """Raise ConfigurationError unless validate_settings() is empty."""
        errors = self.validate_settings()
        if errors:
            raise ConfigurationError(errors)
        return self


@lru_cache
def get_settings() -> MemorySettings:
    """
    Get cached settings instance.

    Uses lru_cache so settings are only loaded once. Call
    get_settings.cache_clear() to reload.
    """
    return MemorySettings()
