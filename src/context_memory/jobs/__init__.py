"""
Background jobs for context-memory.

Provides the keyed job model, queue implementations and the chunk worker.
"""

from context_memory.jobs.models import Job, JobStatus, TRANSITIONS, chunk_job_key
from context_memory.jobs.queue import InMemoryJobQueue, JobQueue
from context_memory.jobs.redis import RedisJobQueue, connect_job_queue
from context_memory.jobs.worker import ChunkProcessor, ChunkWorker, RetryPolicy

__all__ = [
    "Job",
    "JobStatus",
    "TRANSITIONS",
    "chunk_job_key",
    "JobQueue",
    "InMemoryJobQueue",
    "RedisJobQueue",
    "connect_job_queue",
    "ChunkProcessor",
    "ChunkWorker",
    "RetryPolicy",
]
