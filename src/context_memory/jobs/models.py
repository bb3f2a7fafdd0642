"""
Background job model.

Jobs are keyed by an idempotency key (``chunk:<memory_id>`` for chunk jobs)
and move through a small status machine:

    PENDING → RUNNING → SUCCEEDED
                      → FAILED → RUNNING (retry)
                      → EXHAUSTED

Terminal and failed jobs may be re-enqueued, which puts them back to PENDING.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from context_memory.errors import JobStateError
from context_memory.models import utcnow

CHUNK_JOB = "chunk"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.PENDING},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.EXHAUSTED},
    JobStatus.FAILED: {JobStatus.RUNNING, JobStatus.PENDING, JobStatus.EXHAUSTED},
    JobStatus.SUCCEEDED: {JobStatus.PENDING},
    JobStatus.EXHAUSTED: {JobStatus.PENDING},
}

# Statuses a worker may pick up once next_run_at has passed
READY_STATUSES = {JobStatus.PENDING, JobStatus.FAILED}


def chunk_job_key(memory_id: str) -> str:
    return f"{CHUNK_JOB}:{memory_id}"


class Job(BaseModel):
    """One unit of background work."""

    key: str = Field(..., description="Idempotency key, at most one in-flight job per key")
    kind: str = CHUNK_JOB
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = Field(default=3, ge=1)
    next_run_at: datetime = Field(default_factory=utcnow)
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def ready(self) -> bool:
        return self.status in READY_STATUSES

    def transition(self, target: JobStatus) -> None:
        """
        Move to ``target``.

        Raises:
            JobStateError: If the transition is not allowed from the current status
        """
        if target not in TRANSITIONS[self.status]:
            raise JobStateError(self.key, self.status.value, target.value)
        self.status = target
        self.updated_at = utcnow()

    def start(self) -> None:
        self.transition(JobStatus.RUNNING)
        self.attempts += 1

    def succeed(self) -> None:
        self.transition(JobStatus.SUCCEEDED)
        self.last_error = None

    def fail(self, error: str, retry_at: datetime) -> None:
        self.transition(JobStatus.FAILED)
        self.last_error = error
        self.next_run_at = retry_at

    def exhaust(self, error: str) -> None:
        self.transition(JobStatus.EXHAUSTED)
        self.last_error = error

    def requeue(self, payload: Dict[str, Any], max_attempts: int) -> None:
        """
        Refresh a non-running job in place.

        Succeeded and exhausted jobs start over with a fresh attempt count.
        """
        if self.status in (JobStatus.SUCCEEDED, JobStatus.EXHAUSTED):
            self.attempts = 0
            self.last_error = None
        self.transition(JobStatus.PENDING)
        self.payload = payload
        self.max_attempts = max_attempts
        self.next_run_at = utcnow()
