"""
SENSE retrieval (REFRAG) over chunk vectors.

Ranks chunks by similarity, keeps the top ``ceil(n * (1 - ratio))`` chunks
verbatim ("expanded") and reduces the rest to vector + score + parent id
("compressed"), so downstream prompts carry fewer tokens without dropping
weak signal entirely.
"""

import logging
import math
from collections import OrderedDict
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from context_memory.config import MemorySettings
from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.errors import RefragDisabledError
from context_memory.models import RetentionTier, ScoredChunk, SearchFilters, utcnow
from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.vector.models import CHUNK_COLLECTION

logger = logging.getLogger(__name__)

SEARCHABLE_TIERS = (RetentionTier.HOT, RetentionTier.WARM)


class CompressedChunk(BaseModel):
    """A ranked chunk reduced to its signal: no text is kept."""

    embedding: List[float] = Field(default_factory=list)
    score: float
    memory_id: str
    token_count: int = 0


class RefragResult(BaseModel):
    expanded: List[ScoredChunk] = Field(default_factory=list)
    compressed: List[CompressedChunk] = Field(default_factory=list)
    total_chunks: int = 0
    original_tokens: int = 0
    expanded_tokens: int = 0
    token_savings: int = 0
    token_savings_percent: float = 0.0


def expansion_count(total: int, compression_ratio: float) -> int:
    """Number of chunks kept verbatim out of ``total`` ranked chunks."""
    # Rounded first: 50 * (1 - 0.7) is 15.000000000000002 in floating point
    return math.ceil(round(total * (1 - compression_ratio), 9))


def format_time_ago(created_at: datetime, now: Optional[datetime] = None) -> str:
    """
    Fine-grained human label for a timestamp.

    Example:
        >>> format_time_ago(utcnow() - timedelta(hours=3))
        '3 hours ago'
    """
    now = now or utcnow()
    seconds = max(0.0, (now - created_at).total_seconds())
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    def plural(n: int, unit: str) -> str:
        return f"{n} {unit}{'s' if n > 1 else ''} ago"

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return plural(minutes, "min")
    if hours < 24:
        return plural(hours, "hour")
    if days < 7:
        return plural(days, "day")
    if days < 30:
        return plural(days // 7, "week")
    return plural(days // 30, "month")


def format_for_llm(
    expanded: List[ScoredChunk], max_tokens: int, now: Optional[datetime] = None
) -> str:
    """
    Render expanded chunks grouped by parent memory item.

    Groups keep first-seen order; chunks inside a group are ordered by index
    and joined with spaces. Whole groups are appended while the running token
    count stays within ``max_tokens``; the first group that would exceed it
    stops the output, so no group is ever cut mid-way.
    """
    if not expanded:
        return ""

    grouped: "OrderedDict[str, List[ScoredChunk]]" = OrderedDict()
    for scored in expanded:
        grouped.setdefault(scored.memory.id, []).append(scored)

    sections = []
    used_tokens = 0
    for group in grouped.values():
        group = sorted(group, key=lambda scored: scored.chunk.index)
        group_tokens = sum(scored.chunk.token_count for scored in group)
        if used_tokens + group_tokens > max_tokens:
            break

        text = " ".join(scored.chunk.content for scored in group)
        relevance = sum(scored.score for scored in group) / len(group)
        when = format_time_ago(group[0].memory.created_at, now)
        sections.append(f"[Context from {when}, relevance: {relevance * 100:.0f}%]\n{text}\n\n")
        used_tokens += group_tokens

    return "".join(sections).strip()


class RefragRetriever:
    """
    Chunk-level retrieval with selective expansion.

    Only HOT and WARM items have chunk vectors worth searching; asking for
    COLD or DELETED tiers is rejected.

    Example:
        >>> retriever = RefragRetriever(embedder, repository, vector_index, settings)
        >>> result = await retriever.retrieve("deployment plan", filters, compression_ratio=0.7)
        >>> len(result.expanded) + len(result.compressed) == result.total_chunks
        True
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        repository: MemoryRepository,
        vector_index: VectorIndex,
        settings: MemorySettings,
    ):
        self.embedder = embedder
        self.repository = repository
        self.vector_index = vector_index
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.refrag_enabled

    async def retrieve(
        self,
        query: str,
        filters: SearchFilters,
        compression_ratio: Optional[float] = None,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        include_tiers: Sequence[RetentionTier] = SEARCHABLE_TIERS,
    ) -> RefragResult:
        """
        Retrieve ranked chunks and split them into expanded and compressed.

        Raises:
            RefragDisabledError: If REFRAG is disabled in settings
            ValueError: If the ratio is outside [0, 1] or a tier is not searchable
        """
        if not self.enabled:
            raise RefragDisabledError()

        ratio = self.settings.refrag_compression_ratio if compression_ratio is None else compression_ratio
        if not 0.0 <= ratio <= 1.0:
            raise ValueError(f"Compression ratio must be between 0 and 1, got {ratio}")

        tiers = [RetentionTier(tier) for tier in include_tiers]
        unsupported = [tier.value for tier in tiers if tier not in SEARCHABLE_TIERS]
        if unsupported:
            raise ValueError(f"REFRAG cannot search tiers without chunk vectors: {unsupported}")

        limit = limit or self.settings.refrag_limit
        floor = self.settings.min_similarity if min_similarity is None else min_similarity

        vector = await self.embedder.generate_embedding(query)
        ranked = self._search_chunks(vector, filters, limit, floor, tiers)

        if not ranked:
            return RefragResult()

        num_expand = expansion_count(len(ranked), ratio)
        expanded = ranked[:num_expand]
        compressed = [
            CompressedChunk(
                embedding=scored.embedding,
                score=scored.score,
                memory_id=scored.memory.id,
                token_count=scored.chunk.token_count,
            )
            for scored in ranked[num_expand:]
        ]

        original_tokens = sum(scored.chunk.token_count for scored in ranked)
        expanded_tokens = sum(scored.chunk.token_count for scored in expanded)
        token_savings = sum(chunk.token_count for chunk in compressed)
        savings_percent = token_savings / original_tokens * 100 if original_tokens else 0.0

        logger.info(
            f"REFRAG: retrieved {len(ranked)} chunks, expanded {len(expanded)}, "
            f"compressed {len(compressed)}, saved {savings_percent:.0f}% tokens"
        )

        return RefragResult(
            expanded=expanded,
            compressed=compressed,
            total_chunks=len(ranked),
            original_tokens=original_tokens,
            expanded_tokens=expanded_tokens,
            token_savings=token_savings,
            token_savings_percent=savings_percent,
        )

    def _search_chunks(
        self,
        vector: List[float],
        filters: SearchFilters,
        limit: int,
        min_similarity: float,
        tiers: List[RetentionTier],
    ) -> List[ScoredChunk]:
        hits = self.vector_index.nearest_neighbors(
            CHUNK_COLLECTION,
            vector,
            limit=limit,
            min_score=min_similarity,
            filters=filters,
            retention=tiers,
            with_vectors=True,
        )
        if not hits:
            return []

        chunks = self.repository.get_chunks_by_id([hit.id for hit in hits])
        memories = self.repository.get_memories(
            list({chunk.memory_id for chunk in chunks.values()})
        )

        ranked = []
        for hit in hits:
            chunk = chunks.get(hit.id)
            memory = memories.get(chunk.memory_id) if chunk else None
            if chunk is None or memory is None:
                logger.warning(f"Chunk vector {hit.id} has no backing row, skipping")
                continue
            ranked.append(
                ScoredChunk(chunk=chunk, score=hit.score, embedding=hit.vector or [], memory=memory)
            )
        return ranked

    def format_for_llm(
        self, expanded: List[ScoredChunk], max_tokens: Optional[int] = None
    ) -> str:
        budget = self.settings.token_budget if max_tokens is None else max_tokens
        return format_for_llm(expanded, budget)

