"""
Output shapes for retrieved context.

- "full": structured per-item breakdown with every score
- "llm": prose lines ready to paste into a prompt, trimmed to a token budget
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from context_memory.config import MemorySettings
from context_memory.models import ConfidenceTier, ContentType, ScoredMemoryItem

SearchMode = Literal["full", "llm"]

LLM_HEADER = "Based on your past conversations:"
LLM_LOW_TIER_NOTE = "You may have also mentioned related preferences and habits."


class SearchStats(BaseModel):
    total_candidates: int = 0
    after_filtering: int = 0
    after_dedup: int = 0
    returned: int = 0
    avg_similarity: float = 0.0
    avg_recency: float = 0.0


class FormattedMemory(BaseModel):
    id: str
    content: str
    content_type: ContentType
    created_at: datetime
    agent_id: Optional[str] = None
    similarity: float
    recency_score: float
    final_score: float
    tier: Optional[ConfidenceTier] = None
    age_in_days: float


class FullSearchResponse(BaseModel):
    success: bool = True
    memories: List[FormattedMemory] = Field(default_factory=list)
    stats: SearchStats = Field(default_factory=SearchStats)
    query: Dict[str, Any] = Field(default_factory=dict)


class LLMSearchResponse(BaseModel):
    success: bool = True
    context: str = ""
    memory_count: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    token_estimate: int = 0


def format_time_ago(days: float) -> str:
    """
    Coarse human label for an age in days.

    Example:
        >>> format_time_ago(0.4), format_time_ago(1.5), format_time_ago(10)
        ('today', 'yesterday', '1 week ago')
    """
    if days < 1:
        return "today"
    if days < 2:
        return "yesterday"
    rounded = round(days)
    if rounded < 7:
        return f"{rounded} days ago"
    weeks = round(days / 7)
    if weeks < 4:
        return f"{weeks} week{'' if weeks == 1 else 's'} ago"
    months = round(days / 30)
    return f"{months} month{'' if months == 1 else 's'} ago"


class ContextFormatter:
    """Renders scored memory items as a structured or prompt-ready response."""

    def __init__(
        self,
        token_budget: int = 500,
        high_tier_count: int = 5,
        medium_tier_count: int = 3,
        low_tier_count: int = 2,
        chars_per_token: float = 3.5,
    ):
        self.token_budget = token_budget
        self.high_tier_count = high_tier_count
        self.medium_tier_count = medium_tier_count
        self.low_tier_count = low_tier_count
        self.chars_per_token = chars_per_token

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> "ContextFormatter":
        return cls(
            token_budget=settings.token_budget,
            high_tier_count=settings.high_tier_count,
            medium_tier_count=settings.medium_tier_count,
            low_tier_count=settings.low_tier_count,
            chars_per_token=settings.chars_per_token,
        )

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def format_full(
        self,
        items: List[ScoredMemoryItem],
        stats: Optional[SearchStats] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> FullSearchResponse:
        memories = [
            FormattedMemory(
                id=item.memory.id,
                content=item.memory.content,
                content_type=item.memory.content_type,
                created_at=item.memory.created_at,
                agent_id=item.memory.agent_id,
                similarity=item.similarity,
                recency_score=item.recency_score,
                final_score=item.final_score,
                tier=item.tier,
                age_in_days=round(item.age_in_days, 1),
            )
            for item in items
        ]
        return FullSearchResponse(
            memories=memories, stats=stats or SearchStats(), query=query or {}
        )

    def format_llm(self, items: List[ScoredMemoryItem]) -> LLMSearchResponse:
        high = [item for item in items if item.tier == "high"][: self.high_tier_count]
        medium = [item for item in items if item.tier == "medium"][: self.medium_tier_count]
        low = [item for item in items if item.tier == "low"][: self.low_tier_count]

        lines = [LLM_HEADER, ""]
        for item in high:
            text = item.memory.summary or item.memory.content
            lines.append(f"• {text} (mentioned {format_time_ago(item.age_in_days)})")
        for item in medium:
            lines.append(f"• {item.memory.summary or item.memory.content}")
        if low:
            lines.extend(["", LLM_LOW_TIER_NOTE])

        # Trim whole lines from the end until the estimate fits the budget
        context = "\n".join(lines)
        while self.estimate_tokens(context) > self.token_budget and len(lines) > 1:
            lines.pop()
            context = "\n".join(lines)

        return LLMSearchResponse(
            context=context,
            memory_count=len(items),
            high_confidence=len(high),
            medium_confidence=len(medium),
            low_confidence=len(low),
            token_estimate=self.estimate_tokens(context),
        )
