"""
Relevance scoring for retrieved memory items.

Combines vector similarity with an exponential recency decay and assigns a
confidence tier from descending thresholds.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple

from context_memory.config import WEIGHT_TOLERANCE, MemorySettings
from context_memory.errors import ConfigurationError
from context_memory.models import ConfidenceTier, MemoryItem, ScoredMemoryItem, utcnow

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


class ContextScorer:
    """
    Scores memory items by similarity and recency.

    ``final_score = similarity * similarity_weight + recency * recency_weight``
    where ``recency = exp(-age_days / decay_days)``.

    Example:
        >>> scorer = ContextScorer()
        >>> scorer.recency_score(utcnow())[0]
        1.0
    """

    def __init__(
        self,
        similarity_weight: float = 0.7,
        recency_weight: float = 0.3,
        recency_decay_days: float = 30.0,
        high_threshold: float = 0.75,
        medium_threshold: float = 0.60,
        low_threshold: float = 0.50,
    ):
        errors = []
        weight_sum = similarity_weight + recency_weight
        if not math.isclose(weight_sum, 1.0, abs_tol=WEIGHT_TOLERANCE):
            errors.append(f"Scoring weights must sum to 1.0, got {weight_sum:.3f}")
        if not high_threshold >= medium_threshold >= low_threshold:
            errors.append("Tier thresholds must be descending (high >= medium >= low)")
        if recency_decay_days <= 0:
            errors.append(f"Recency decay must be positive, got {recency_decay_days}")
        if errors:
            raise ConfigurationError(errors)

        self.similarity_weight = similarity_weight
        self.recency_weight = recency_weight
        self.recency_decay_days = recency_decay_days
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.low_threshold = low_threshold

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> "ContextScorer":
        return cls(
            similarity_weight=settings.similarity_weight,
            recency_weight=settings.recency_weight,
            recency_decay_days=settings.recency_decay_days,
            high_threshold=settings.high_tier_threshold,
            medium_threshold=settings.medium_tier_threshold,
            low_threshold=settings.low_tier_threshold,
        )

    def recency_score(
        self, created_at: datetime, now: Optional[datetime] = None
    ) -> Tuple[float, float]:
        """
        Recency score and age of an item.

        Future timestamps are clamped to age zero.

        Returns:
            (recency_score, age_in_days)
        """
        now = now or utcnow()
        age_seconds = max(0.0, (now - created_at).total_seconds())
        age_in_days = age_seconds / SECONDS_PER_DAY
        return math.exp(-age_in_days / self.recency_decay_days), age_in_days

    def final_score(self, similarity: float, recency: float) -> float:
        return similarity * self.similarity_weight + recency * self.recency_weight

    def assign_tier(self, final_score: float) -> Optional[ConfidenceTier]:
        if final_score >= self.high_threshold:
            return "high"
        if final_score >= self.medium_threshold:
            return "medium"
        if final_score >= self.low_threshold:
            return "low"
        return None

    def score_item(
        self, memory: MemoryItem, similarity: float, now: Optional[datetime] = None
    ) -> ScoredMemoryItem:
        recency, age_in_days = self.recency_score(memory.created_at, now)
        final = self.final_score(similarity, recency)
        return ScoredMemoryItem(
            memory=memory,
            similarity=similarity,
            age_in_days=age_in_days,
            recency_score=recency,
            final_score=final,
            tier=self.assign_tier(final),
        )

    def score(
        self, candidates: List[Tuple[MemoryItem, float]], now: Optional[datetime] = None
    ) -> List[ScoredMemoryItem]:
        """Score (memory, similarity) pairs, preserving input order."""
        now = now or utcnow()
        return [self.score_item(memory, similarity, now) for memory, similarity in candidates]
