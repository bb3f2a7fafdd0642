"""
Chunk workers.

Chunk and chunk-embedding generation runs outside the ingestion path:
``MemoryService.store`` enqueues a ``chunk:<memory_id>`` job and a pool of
consumers processes it with bounded retries.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from context_memory.chunker import Chunker
from context_memory.config import MemorySettings
from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.errors import MemoryNotFoundError, PermanentError
from context_memory.jobs.models import CHUNK_JOB, Job, chunk_job_key
from context_memory.jobs.queue import JobQueue
from context_memory.models import Chunk, RetentionTier, utcnow
from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.vector.models import CHUNK_COLLECTION, VectorPoint, chunk_payload

logger = logging.getLogger(__name__)

# Tiers whose items keep chunk vectors
CHUNKED_TIERS = (RetentionTier.HOT, RetentionTier.WARM)


class RetryPolicy:
    """Bounded exponential backoff: ``base * 2**(attempt-1)`` seconds."""

    def __init__(self, max_attempts: int = 3, base_backoff_seconds: float = 1.0):
        self.max_attempts = max_attempts
        self.base_backoff_seconds = base_backoff_seconds

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> "RetryPolicy":
        return cls(settings.job_max_attempts, settings.job_backoff_seconds)

    def backoff(self, attempt: int) -> float:
        return self.base_backoff_seconds * 2 ** (max(attempt, 1) - 1)

    def retry_at(self, attempt: int, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) + timedelta(seconds=self.backoff(attempt))


class ChunkProcessor:
    """
    Computes chunks and chunk vectors for one memory item.

    Embeddings are requested in batches of ``embedding_batch_size`` with a
    fixed delay between batches. Existing chunks and chunk vectors are
    replaced wholesale once every embedding succeeded.
    """

    def __init__(
        self,
        chunker: Chunker,
        embedder: EmbeddingProvider,
        repository: MemoryRepository,
        vector_index: VectorIndex,
        settings: MemorySettings,
    ):
        self.chunker = chunker
        self.embedder = embedder
        self.repository = repository
        self.vector_index = vector_index
        self.batch_size = settings.embedding_batch_size
        self.batch_delay = settings.embedding_batch_delay_seconds

    async def embed_batched(self, texts: List[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start:
                await asyncio.sleep(self.batch_delay)
            batch = texts[start : start + self.batch_size]
            vectors.extend(
                await asyncio.gather(*(self.embedder.generate_embedding(t) for t in batch))
            )
        return vectors

    async def process(self, memory_id: str) -> int:
        """
        Chunk, embed and store chunks for a memory item.

        Returns:
            Number of chunks written (0 when the item is no longer chunkable)

        Raises:
            MemoryNotFoundError: If the memory item does not exist
        """
        item = self.repository.get_memory(memory_id)
        if item is None:
            raise MemoryNotFoundError(memory_id)
        if item.retention not in CHUNKED_TIERS:
            logger.info(f"Memory {memory_id} is {item.retention.value}, skipping chunking")
            return 0

        result = self.chunker.chunk_content(item.content)
        chunks = [
            Chunk(
                id=Chunk.make_id(memory_id, piece.index),
                memory_id=memory_id,
                index=piece.index,
                content=piece.content,
                token_count=piece.token_count,
            )
            for piece in result.chunks
            if piece.content.strip()
        ]
        vectors = await self.embed_batched([chunk.content for chunk in chunks])

        # The item may have aged or been deleted while embeddings were computed
        item = self.repository.get_memory(memory_id)
        if item is None:
            raise MemoryNotFoundError(memory_id)
        if item.retention not in CHUNKED_TIERS:
            logger.info(f"Memory {memory_id} became {item.retention.value}, discarding chunks")
            return 0

        self.vector_index.delete_by_memory(CHUNK_COLLECTION, [memory_id])
        self.vector_index.upsert_embeddings(
            CHUNK_COLLECTION,
            [
                VectorPoint(id=chunk.id, vector=vector, payload=chunk_payload(item, chunk))
                for chunk, vector in zip(chunks, vectors)
            ],
        )
        with self.repository.batch():
            self.repository.replace_chunks(memory_id, chunks)
            self.repository.update_memories({memory_id: {"chunks_computed": True}})

        logger.debug(f"Stored {len(chunks)} chunks for memory {memory_id}")
        return len(chunks)


class ChunkWorker:
    """
    Pool of ``concurrency`` consumers draining chunk jobs from a JobQueue.

    A worker built without a queue is unavailable: enqueueing returns None
    and nothing runs.

    Example:
        >>> worker = ChunkWorker(connect_job_queue(settings.redis_url), processor)
        >>> await worker.start()
        >>> worker.enqueue_chunk(memory_id)
        >>> await worker.stop()
    """

    def __init__(
        self,
        queue: Optional[JobQueue],
        processor: ChunkProcessor,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = 5,
        poll_interval: float = 0.5,
    ):
        self.queue = queue
        self.processor = processor
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()

    @property
    def available(self) -> bool:
        return self.queue is not None

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def enqueue_chunk(self, memory_id: str) -> Optional[Job]:
        if not self.available:
            return None
        return self.queue.enqueue(
            chunk_job_key(memory_id),
            CHUNK_JOB,
            {"memory_id": memory_id},
            max_attempts=self.retry_policy.max_attempts,
        )

    async def run_once(self, now: Optional[datetime] = None) -> Optional[Job]:
        """
        Claim and process one ready job.

        Returns:
            The job in its final state for this attempt, or None if nothing was ready
        """
        if not self.available:
            return None

        job = self.queue.claim(now)
        if job is None:
            return None

        memory_id = job.payload.get("memory_id")
        try:
            count = await self.processor.process(memory_id)
        except PermanentError as e:
            logger.error(f"Job {job.key} failed permanently: {e}")
            job.exhaust(str(e))
        except Exception as e:
            if job.attempts >= job.max_attempts:
                logger.error(f"Job {job.key} exhausted after {job.attempts} attempts: {e}")
                job.exhaust(str(e))
            else:
                retry_at = self.retry_policy.retry_at(job.attempts, now)
                logger.warning(
                    f"Job {job.key} attempt {job.attempts} failed, retrying at "
                    f"{retry_at.isoformat()}: {e}"
                )
                job.fail(str(e), retry_at)
        else:
            logger.info(f"Job {job.key} succeeded ({count} chunks)")
            job.succeed()

        self.queue.save(job)
        return job

    async def run_until_idle(self, now: Optional[datetime] = None) -> int:
        """Process ready jobs until none is left, returning how many ran."""
        processed = 0
        while await self.run_once(now) is not None:
            processed += 1
        return processed

    async def _consume(self, consumer: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.run_once()
            except Exception as e:
                # Queue backend failure, keep the consumer alive
                logger.error(f"Chunk consumer {consumer} error: {e}")
                job = None
            if job is None:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def start(self) -> None:
        if not self.available:
            logger.warning("No job queue configured, chunk worker unavailable")
            return
        if self._tasks:
            logger.warning("Chunk worker already running")
            return

        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"chunk-consumer-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Chunk worker started ({self.concurrency} consumers)")

    async def stop(self) -> None:
        """Stop consumers after their current job."""
        if not self._tasks:
            return
        self._stopping.set()
        await asyncio.gather(*self._tasks)
        self._tasks = []
        logger.info("Chunk worker stopped")
