"""
Job queue protocol and in-memory implementation.

Queues persist jobs by key and hand ready jobs to workers. Claiming is
exclusive: a job returned by ``claim`` is RUNNING and no other consumer
receives it until it is saved back as FAILED or re-enqueued.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from context_memory.jobs.models import Job, JobStatus
from context_memory.models import utcnow

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    """Protocol for keyed job queues."""

    def enqueue(
        self, key: str, kind: str, payload: Dict[str, Any], max_attempts: int = 3
    ) -> Job:
        """
        Create the job for ``key`` or refresh it in place.

        A RUNNING job is returned untouched.
        """
        ...

    def claim(self, now: Optional[datetime] = None) -> Optional[Job]:
        """Take the earliest ready job (moved to RUNNING), or None."""
        ...

    def save(self, job: Job) -> None:
        """Persist a job after a status change."""
        ...

    def get(self, key: str) -> Optional[Job]:
        ...

    def ready_count(self, now: Optional[datetime] = None) -> int:
        ...


def merge_enqueue(
    existing: Optional[Job], key: str, kind: str, payload: Dict[str, Any], max_attempts: int
) -> Optional[Job]:
    """
    Apply keyed-enqueue semantics.

    Returns:
        The job to persist, or None when the existing job is running
    """
    if existing is None:
        return Job(key=key, kind=kind, payload=payload, max_attempts=max_attempts)
    if existing.status == JobStatus.RUNNING:
        logger.debug(f"Job {key} is running, enqueue ignored")
        return None
    existing.requeue(payload, max_attempts)
    return existing


class InMemoryJobQueue:
    """
    In-process implementation of the JobQueue protocol.

    Suitable for testing and single-process deployments.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def enqueue(
        self, key: str, kind: str, payload: Dict[str, Any], max_attempts: int = 3
    ) -> Job:
        with self._lock:
            existing = self._jobs.get(key)
            job = merge_enqueue(existing, key, kind, payload, max_attempts)
            if job is None:
                return existing.model_copy(deep=True)
            self._jobs[key] = job
            logger.debug(f"Enqueued job {key}")
            return job.model_copy(deep=True)

    def claim(self, now: Optional[datetime] = None) -> Optional[Job]:
        now = now or utcnow()
        with self._lock:
            ready = [job for job in self._jobs.values() if job.ready and job.next_run_at <= now]
            if not ready:
                return None
            job = min(ready, key=lambda j: (j.next_run_at, j.key))
            job.start()
            return job.model_copy(deep=True)

    def save(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.key] = job.model_copy(deep=True)

    def get(self, key: str) -> Optional[Job]:
        job = self._jobs.get(key)
        return job.model_copy(deep=True) if job else None

    def ready_count(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return sum(1 for job in self._jobs.values() if job.ready and job.next_run_at <= now)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()
