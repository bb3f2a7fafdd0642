"""
Redis job queue implementation.

Each job is stored as a hash (``<prefix>job:<key>``) and ready jobs are
indexed in a sorted set scored by ``next_run_at``. Suitable for production
deployments where workers run in several processes or replicas.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from context_memory.jobs.models import Job
from context_memory.jobs.queue import merge_enqueue
from context_memory.models import utcnow

try:
    import redis
except ImportError:
    redis = None  # type: ignore

logger = logging.getLogger(__name__)

CLAIM_ATTEMPTS = 5


class RedisJobQueue:
    """
    Redis implementation of the JobQueue protocol.

    Claiming removes the job from the ready set with ZREM, so only the
    consumer whose ZREM succeeds runs it.
    """

    def __init__(self, client: "redis.Redis", key_prefix: str = "context_memory:"):
        """
        Initialize the queue.

        Args:
            client: Redis client created with ``decode_responses=True``
            key_prefix: Prefix for Redis keys (default: "context_memory:")
        """
        if redis is None:
            raise ImportError(
                "redis package is required for RedisJobQueue. Install with: pip install redis"
            )
        self.client = client
        self._key_prefix = key_prefix
        self._ready_key = f"{key_prefix}jobs:ready"

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisJobQueue":
        if redis is None:
            raise ImportError(
                "redis package is required for RedisJobQueue. Install with: pip install redis"
            )
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _job_key(self, key: str) -> str:
        return f"{self._key_prefix}job:{key}"

    def _load(self, raw: Optional[str]) -> Optional[Job]:
        return Job.model_validate_json(raw) if raw else None

    def _write(self, pipe, job: Job) -> None:
        pipe.hset(
            self._job_key(job.key),
            mapping={"data": job.model_dump_json(), "status": job.status.value},
        )
        if job.ready:
            pipe.zadd(self._ready_key, {job.key: job.next_run_at.timestamp()})
        else:
            pipe.zrem(self._ready_key, job.key)

    def enqueue(
        self, key: str, kind: str, payload: Dict[str, Any], max_attempts: int = 3
    ) -> Job:
        job_key = self._job_key(key)
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(job_key)
                    existing = self._load(pipe.hget(job_key, "data"))
                    job = merge_enqueue(existing, key, kind, payload, max_attempts)
                    if job is None:
                        pipe.unwatch()
                        return existing
                    pipe.multi()
                    self._write(pipe, job)
                    pipe.execute()
                    logger.debug(f"Enqueued job {key}")
                    return job
                except redis.WatchError:
                    # Job changed between read and write, re-evaluate
                    continue

    def claim(self, now: Optional[datetime] = None) -> Optional[Job]:
        now = now or utcnow()
        for _ in range(CLAIM_ATTEMPTS):
            keys = self.client.zrangebyscore(self._ready_key, "-inf", now.timestamp(), start=0, num=1)
            if not keys:
                return None
            key = keys[0]
            if not self.client.zrem(self._ready_key, key):
                # Another consumer claimed it first
                continue

            job = self._load(self.client.hget(self._job_key(key), "data"))
            if job is None:
                logger.warning(f"Ready job {key} has no data, dropping it")
                continue
            job.start()
            self.save(job)
            return job
        return None

    def save(self, job: Job) -> None:
        pipe = self.client.pipeline()
        self._write(pipe, job)
        pipe.execute()

    def get(self, key: str) -> Optional[Job]:
        return self._load(self.client.hget(self._job_key(key), "data"))

    def ready_count(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return self.client.zcount(self._ready_key, "-inf", now.timestamp())


def connect_job_queue(url: Optional[str], key_prefix: str = "context_memory:") -> Optional[RedisJobQueue]:
    """
    Connect to Redis, returning None when it is not reachable.

    Callers treat None as "background processing unavailable" rather than
    failing ingestion.
    """
    if not url:
        return None
    if redis is None:
        logger.warning("redis package not installed, background jobs unavailable")
        return None

    try:
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable at {url}, background jobs disabled: {e}")
        return None

    logger.info(f"RedisJobQueue connected ({url})")
    return RedisJobQueue(client, key_prefix=key_prefix)
