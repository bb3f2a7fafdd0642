"""
Interactive context search.

Pipeline per query:
1. Overquery: fetch ``max(limit * multiplier, limit)`` nearest neighbours
2. Score each candidate (similarity + recency)
3. Filter out items below the final-score floor
4. Deduplicate near-identical content (token-set Jaccard)
5. Tier-select up to the per-tier counts, truncate to ``limit``
6. Format as a structured ("full") or prompt-ready ("llm") response
"""

import logging
import re
from typing import List, Optional, Set, Union

from context_memory.config import MemorySettings
from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.formatting import (
    ContextFormatter,
    FullSearchResponse,
    LLMSearchResponse,
    SearchMode,
    SearchStats,
)
from context_memory.models import AccessLog, RecordKind, ScoredMemoryItem, SearchFilters
from context_memory.scoring import ContextScorer
from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.vector.models import MEMORY_COLLECTION

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def content_tokens(text: str) -> Set[str]:
    """Lowercased alphanumeric token set used for near-duplicate detection."""
    return {token for token in _NON_ALNUM.split(text.lower()) if token}


def jaccard(a: Set[str], b: Set[str]) -> float:
    union = len(a | b) or 1
    return len(a & b) / union


def group_dedup(items: List[ScoredMemoryItem], threshold: float) -> List[ScoredMemoryItem]:
    """
    Collapse near-duplicates, keeping the best-scoring member of each group.

    Each item is compared to the first member of every existing group and
    joins the first group whose Jaccard similarity reaches ``threshold``.
    Quadratic in the number of items, which is bounded by the overquery size.
    """
    groups: List[List[ScoredMemoryItem]] = []
    representatives: List[Set[str]] = []

    for item in items:
        tokens = content_tokens(item.memory.content)
        for group, rep_tokens in zip(groups, representatives):
            if jaccard(tokens, rep_tokens) >= threshold:
                group.append(item)
                break
        else:
            groups.append([item])
            representatives.append(tokens)

    return [max(group, key=lambda member: member.final_score) for group in groups]


def build_stats(
    total: int,
    after_filtering: int,
    after_dedup: int,
    returned: int,
    scored: List[ScoredMemoryItem],
) -> SearchStats:
    """Stage counts plus averages over every scored candidate."""
    avg_similarity = sum(s.similarity for s in scored) / len(scored) if scored else 0.0
    avg_recency = sum(s.recency_score for s in scored) / len(scored) if scored else 0.0
    return SearchStats(
        total_candidates=total,
        after_filtering=after_filtering,
        after_dedup=after_dedup,
        returned=returned,
        avg_similarity=round(avg_similarity, 2),
        avg_recency=round(avg_recency, 2),
    )


class ContextSearchService:
    """
    Runs the overquery → score → filter → dedup → tier-select → format
    pipeline against the memory collection.

    Example:
        >>> service = ContextSearchService(embedder, repository, vector_index, settings)
        >>> response = await service.search("what pizza do I like?", filters, mode="llm")
        >>> print(response.context)
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        repository: MemoryRepository,
        vector_index: VectorIndex,
        settings: MemorySettings,
        scorer: Optional[ContextScorer] = None,
        formatter: Optional[ContextFormatter] = None,
        record_access: bool = True,
    ):
        self.embedder = embedder
        self.repository = repository
        self.vector_index = vector_index
        self.settings = settings
        self.scorer = scorer or ContextScorer.from_settings(settings)
        self.formatter = formatter or ContextFormatter.from_settings(settings)
        self.record_access = record_access

    def tier_select(self, items: List[ScoredMemoryItem]) -> List[ScoredMemoryItem]:
        """Take up to the per-tier counts in high/medium/low order (no global re-sort)."""
        ranked = sorted(items, key=lambda item: item.final_score, reverse=True)
        high = [i for i in ranked if i.tier == "high"][: self.settings.high_tier_count]
        medium = [i for i in ranked if i.tier == "medium"][: self.settings.medium_tier_count]
        low = [i for i in ranked if i.tier == "low"][: self.settings.low_tier_count]
        return high + medium + low

    async def retrieve(
        self,
        query: str,
        filters: SearchFilters,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ):
        """
        Run every pipeline stage except formatting.

        Returns:
            (selected items, stats)
        """
        limit = limit or self.settings.max_results
        threshold = self.settings.min_similarity if threshold is None else threshold
        overquery = max(limit * self.settings.overquery_multiplier, limit)

        # Stage 1: raw search (overquery)
        vector = await self.embedder.generate_embedding(query)
        hits = self.vector_index.nearest_neighbors(
            MEMORY_COLLECTION, vector, limit=overquery, min_score=threshold, filters=filters
        )

        memories = self.repository.get_memories([hit.id for hit in hits])
        candidates = []
        for hit in hits:
            memory = memories.get(hit.id)
            if memory is None:
                logger.warning(f"Vector {hit.id} has no memory row, skipping")
                continue
            candidates.append((memory, hit.score))

        # Stage 2: score + filter
        scored = self.scorer.score(candidates)
        filtered = [s for s in scored if s.final_score >= self.settings.final_score_floor]

        # Stage 3: dedup
        deduped = group_dedup(filtered, self.settings.dedup_threshold)
        deduped.sort(key=lambda item: item.final_score, reverse=True)

        # Stage 4: tier & select
        selected = self.tier_select(deduped)[:limit]

        stats = build_stats(len(hits), len(filtered), len(deduped), len(selected), scored)
        logger.info(
            f"Search: {stats.total_candidates} candidates -> {stats.after_filtering} filtered "
            f"-> {stats.after_dedup} deduped -> {stats.returned} returned"
        )

        if hits and self.record_access:
            self.repository.add_records(
                RecordKind.ACCESS_LOGS,
                [
                    AccessLog(
                        context_id=hits[0].id,
                        user_id=filters.user_id,
                        org_id=filters.org_id,
                        query=query,
                        results_count=len(hits),
                    )
                ],
            )

        return selected, stats

    async def search(
        self,
        query: str,
        filters: SearchFilters,
        mode: SearchMode = "full",
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> Union[FullSearchResponse, LLMSearchResponse]:
        selected, stats = await self.retrieve(query, filters, limit, threshold)

        if mode == "llm":
            return self.formatter.format_llm(selected)

        return self.formatter.format_full(
            selected,
            stats,
            {
                "text": query,
                "limit": limit or self.settings.max_results,
                "threshold": self.settings.min_similarity if threshold is None else threshold,
            },
        )
