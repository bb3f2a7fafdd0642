"""
Retention tier lifecycle.

Memory items age through HOT → WARM → COLD → DELETED:

- WARM removes nothing; the item stays fully searchable
- COLD deletes chunk rows and chunk vectors (REFRAG no longer sees the item)
- DELETED removes the memory vector; the row, identifiers and audit fields stay

Eligibility is evaluated from the current tier and the item's age, never
from the time since the last run, so re-running is a no-op. Starred items
never transition and ``decision`` items stop at COLD for audit purposes.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from context_memory.config import MemorySettings
from context_memory.errors import MemoryNotFoundError, TierTransitionError
from context_memory.models import MemoryItem, RetentionTier, utcnow
from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.vector.models import CHUNK_COLLECTION, MEMORY_COLLECTION

logger = logging.getLogger(__name__)

BYTES_PER_FLOAT = 4
BYTES_PER_MB = 1024 * 1024

# Content types kept (COLD at most) for compliance/audit
AUDIT_CONTENT_TYPES = {"decision"}


class TierTransitionResult(BaseModel):
    """Counts of one transition run (intended counts when ``dry_run``)."""

    dry_run: bool = False
    hot_to_warm: int = 0
    warm_to_cold: int = 0
    cold_to_deleted: int = 0
    chunks_deleted: int = 0
    memory_vectors_deleted: int = 0
    bytes_freed: int = 0
    estimated_cost_savings: float = Field(default=0.0, description="USD per month")
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def total_transitions(self) -> int:
        return self.hot_to_warm + self.warm_to_cold + self.cold_to_deleted


class TierStats(BaseModel):
    count: int = 0
    size_estimate_mb: float = 0.0


class TierTransitionEngine:
    """
    Applies retention transitions in batches.

    Each batch deletes the affected vectors first and then commits all row
    changes in one repository transaction. A failed batch leaves its rows
    untouched, so the next run picks the same items up again.

    Example:
        >>> engine = TierTransitionEngine(repository, vector_index, settings)
        >>> preview = engine.run(dry_run=True)
        >>> preview.hot_to_warm
        12
    """

    def __init__(
        self,
        repository: MemoryRepository,
        vector_index: VectorIndex,
        settings: MemorySettings,
    ):
        self.repository = repository
        self.vector_index = vector_index
        self.settings = settings
        self.windows = {
            RetentionTier.WARM: timedelta(days=settings.hot_window_days),
            RetentionTier.COLD: timedelta(days=settings.warm_window_days),
            RetentionTier.DELETED: timedelta(days=settings.cold_window_days),
        }

    @property
    def vector_bytes(self) -> int:
        return self.vector_index.dimension * BYTES_PER_FLOAT

    def target_tier(self, item: MemoryItem, now: datetime) -> RetentionTier:
        """Furthest tier the item's age qualifies for, never behind its current tier."""
        if item.starred or item.retention == RetentionTier.DELETED:
            return item.retention

        age = now - item.created_at
        target = item.retention
        following = target.next()
        while following is not None and age >= self.windows[following]:
            target, following = following, following.next()

        if target == RetentionTier.DELETED and item.content_type in AUDIT_CONTENT_TYPES:
            target = RetentionTier.COLD
        return max(target, item.retention, key=lambda tier: tier.rank)

    def run(self, dry_run: bool = False, now: Optional[datetime] = None) -> TierTransitionResult:
        """
        Apply (or preview) every eligible transition.

        Args:
            dry_run: Report intended counts, bytes freed and cost savings only
            now: Reference time (default: current UTC time)
        """
        now = now or utcnow()
        result = TierTransitionResult(dry_run=dry_run)
        logger.info(f"Applying tier transitions (dry_run={dry_run})")

        earliest_window = self.windows[RetentionTier.WARM]
        for source in (RetentionTier.HOT, RetentionTier.WARM, RetentionTier.COLD):
            after_id = None
            while True:
                batch = self.repository.find_memories(
                    retention=source,
                    created_before=now - earliest_window,
                    starred=False,
                    after_id=after_id,
                    limit=self.settings.transition_batch_size,
                )
                if not batch:
                    break
                after_id = batch[-1].id

                moves = {}
                for item in batch:
                    target = self.target_tier(item, now)
                    if target != item.retention:
                        moves[item.id] = (item.retention, target)
                if moves:
                    self._apply_batch(moves, result, dry_run)

        result.estimated_cost_savings = round(
            result.bytes_freed / BYTES_PER_MB * self.settings.storage_cost_per_mb_month, 4
        )
        result.finished_at = utcnow()
        logger.info(
            f"Tier transitions {'previewed' if dry_run else 'complete'}: "
            f"hot->warm={result.hot_to_warm} warm->cold={result.warm_to_cold} "
            f"cold->deleted={result.cold_to_deleted} bytes_freed={result.bytes_freed}"
        )
        return result

    def _apply_batch(
        self,
        moves: Dict[str, tuple],
        result: TierTransitionResult,
        dry_run: bool,
    ) -> None:
        to_cold: List[str] = []
        to_deleted: List[str] = []
        by_target: Dict[RetentionTier, List[str]] = {}

        for memory_id, (source, target) in moves.items():
            by_target.setdefault(target, []).append(memory_id)
            if source.rank < RetentionTier.WARM.rank <= target.rank:
                result.hot_to_warm += 1
            if source.rank < RetentionTier.COLD.rank <= target.rank:
                result.warm_to_cold += 1
                to_cold.append(memory_id)
            if source.rank < RetentionTier.DELETED.rank <= target.rank:
                result.cold_to_deleted += 1
                to_deleted.append(memory_id)

        chunk_stats = self.repository.chunk_stats(to_cold)
        result.chunks_deleted += chunk_stats["count"]
        result.memory_vectors_deleted += len(to_deleted)
        result.bytes_freed += (
            chunk_stats["count"] * self.vector_bytes
            + chunk_stats["content_bytes"]
            + len(to_deleted) * self.vector_bytes
        )

        if dry_run:
            return

        # Vectors first: if the row commit fails, the next run redoes the batch
        self.vector_index.delete_by_memory(CHUNK_COLLECTION, to_cold)
        self.vector_index.delete_embeddings(MEMORY_COLLECTION, to_deleted)
        for target, memory_ids in by_target.items():
            if target != RetentionTier.DELETED:
                self.vector_index.update_payload(
                    MEMORY_COLLECTION, memory_ids, {"retention": target.value}
                )
        warm_ids = by_target.get(RetentionTier.WARM, [])
        self.vector_index.update_payload(CHUNK_COLLECTION, warm_ids, {"retention": "warm"})

        updates = {}
        for memory_id, (_, target) in moves.items():
            fields = {"retention": target}
            if target.rank >= RetentionTier.COLD.rank:
                fields["chunks_computed"] = False
            updates[memory_id] = fields

        with self.repository.batch():
            self.repository.delete_chunks(to_cold)
            self.repository.update_memories(updates)

        logger.debug(f"Applied {len(moves)} tier transitions")

    def restore_cold(self, memory_id: str) -> MemoryItem:
        """
        Explicitly bring a COLD item back to WARM.

        Its memory vector is still present, so it becomes REFRAG-eligible
        again once rechunked.

        Raises:
            MemoryNotFoundError: If the item does not exist
            TierTransitionError: If the item is not COLD or has no memory vector
        """
        item = self.repository.get_memory(memory_id)
        if item is None:
            raise MemoryNotFoundError(memory_id)
        if item.retention != RetentionTier.COLD:
            raise TierTransitionError(
                f"Memory {memory_id} is {item.retention.value}, only cold items can be restored"
            )
        if not self.vector_index.get_vectors(MEMORY_COLLECTION, [memory_id]):
            raise TierTransitionError(
                f"Memory {memory_id} has no vector (archived), restore it from its archive"
            )

        self.vector_index.update_payload(MEMORY_COLLECTION, [memory_id], {"retention": "warm"})
        self.repository.update_memories({memory_id: {"retention": RetentionTier.WARM}})
        logger.info(f"Restored memory {memory_id} from COLD to WARM")
        return self.repository.get_memory(memory_id)

    def mark_important(self, memory_id: str, permanent: bool = False) -> MemoryItem:
        """
        Star an item so it never transitions.

        ``permanent`` also raises importance to the maximum. The tier itself
        is left alone: moving back to HOT is only possible via restore.
        """
        if not self.repository.existing_memory_ids([memory_id]):
            raise MemoryNotFoundError(memory_id)

        fields = {"starred": True}
        if permanent:
            fields["importance"] = 1.0
        self.repository.update_memories({memory_id: fields})
        logger.info(f"Marked memory {memory_id} as important (permanent={permanent})")
        return self.repository.get_memory(memory_id)

    def tier_stats(self) -> Dict[RetentionTier, TierStats]:
        """Item count per tier with a rough vector storage estimate."""
        stats = {}
        for tier, count in self.repository.count_by_retention().items():
            has_vector = tier != RetentionTier.DELETED
            size = count * self.vector_bytes / BYTES_PER_MB if has_vector else 0.0
            stats[tier] = TierStats(count=count, size_estimate_mb=round(size, 2))
        return stats


class TierTransitionScheduler:
    """
    Runs the transition engine periodically on an APScheduler event loop.

    Overlapping runs are skipped (one instance at a time, missed runs
    coalesced).

    Example:
        >>> scheduler = TierTransitionScheduler(engine, interval_hours=24)
        >>> await scheduler.start()
        >>> ...
        >>> await scheduler.stop()
    """

    JOB_ID = "tier_transitions"

    def __init__(self, engine: TierTransitionEngine, interval_hours: float = 24.0):
        self.engine = engine
        self.interval_hours = interval_hours
        self._scheduler = None
        self._lock = asyncio.Lock()
        self._is_running = False
        self.last_result: Optional[TierTransitionResult] = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Start the scheduler and register the transition job."""
        if self._is_running:
            logger.warning("Tier transition scheduler already running")
            return

        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id=self.JOB_ID,
            name="Retention tier transitions",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._is_running = True
        logger.info(f"Tier transition scheduler started (every {self.interval_hours}h)")

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._is_running:
            logger.warning("Tier transition scheduler not running")
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._is_running = False
        logger.info("Tier transition scheduler stopped")

    async def run_once(self, dry_run: bool = False) -> Optional[TierTransitionResult]:
        """Run one transition pass unless one is already in flight."""
        if self._lock.locked():
            logger.warning("Tier transition already in progress, skipping run")
            return None

        async with self._lock:
            try:
                self.last_result = await asyncio.to_thread(self.engine.run, dry_run)
            except Exception as e:
                logger.error(f"Tier transition run failed: {e}")
                raise
            return self.last_result
