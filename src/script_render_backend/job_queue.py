"""
Redis-backed job queue for render requests.

Layout of the keys (``render`` is the default prefix):

- ``render:job:<id>``: JSON-encoded ``Job`` record
- ``render:jobs:pending``: list of job ids ready to be picked up (FIFO)
- ``render:jobs:delayed``: sorted set of job ids waiting for a retry, scored by
  the epoch time at which they become due
- ``render:jobs:processing``: list of job ids claimed by a worker and not yet
  finished; ids whose record goes stale are put back on the pending list

The client never assumes the broker stays available: ``probe`` is a cheap ping
with a short timeout and is re-run before every enqueue.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Union
from uuid import uuid4

import redis
from omegaconf import DictConfig
from redis.backoff import NoBackoff
from redis.exceptions import RedisError
from redis.retry import Retry

from .errors import QueueUnavailable
from .models import Job, JobState, RenderRequest
from .utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 1.5
DEFAULT_JOB_TTL_SECONDS = 7 * 24 * 3600


def _text(value: Union[str, bytes, None]) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class JobQueueClient:
    """
    Client for the render job broker.

    Attributes:
        url: Redis URL, used when no client is injected
        probe_timeout: Connect/read timeout in seconds for broker calls
        key_prefix: Namespace for all keys written by this client
        job_ttl_seconds: How long job records are kept in the broker
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        key_prefix: str = "render",
        job_ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS,
    ) -> None:
        if client is None and not url:
            raise ValueError("Either a Redis URL or a Redis client is required")
        self.url = url
        self.probe_timeout = probe_timeout
        self.key_prefix = key_prefix
        self.job_ttl_seconds = job_ttl_seconds
        self._redis = client

    @classmethod
    def from_config(cls, config: DictConfig) -> "JobQueueClient":
        return cls(
            url=config.queue.redis_url,
            probe_timeout=config.queue.probe_timeout_seconds,
            key_prefix=config.queue.key_prefix,
            job_ttl_seconds=config.queue.job_ttl_seconds,
        )

    @property
    def redis(self) -> redis.Redis:
        # Creating the client does not connect; connections are opened on first use
        if self._redis is None:
            self._redis = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.probe_timeout,
                socket_connect_timeout=self.probe_timeout,
                retry=Retry(NoBackoff(), 0),
            )
        return self._redis

    @property
    def pending_key(self) -> str:
        return f"{self.key_prefix}:jobs:pending"

    @property
    def delayed_key(self) -> str:
        return f"{self.key_prefix}:jobs:delayed"

    @property
    def processing_key(self) -> str:
        return f"{self.key_prefix}:jobs:processing"

    def _job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    def probe(self) -> bool:
        """Return True if the broker answers a ping. Never raises."""
        try:
            return bool(self.redis.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Broker probe failed: {exc}")
            return False

    def enqueue(self, request: RenderRequest) -> str:
        """
        Create a pending job for ``request`` and push it onto the queue.

        Returns:
            The id of the new job

        Raises:
            QueueUnavailable: If the broker is unreachable or rejects the write
        """
        if not self.probe():
            raise QueueUnavailable("Render queue is not available.")

        now = utcnow()
        job = Job(id=uuid4().hex, payload=request, state=JobState.PENDING, created_at=now, updated_at=now)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl_seconds)
            pipe.rpush(self.pending_key, job.id)
            pipe.execute()
        except RedisError as exc:
            raise QueueUnavailable(f"Broker rejected the render job: {exc}") from exc

        logger.info(f"Render job {job.id} enqueued for version {request.version_id}")
        return job.id

    def get_status(self, job_id: str) -> Optional[Job]:
        """Return the job, or None if it is unknown or cannot be read. Never raises."""
        try:
            return self.load(job_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Could not read status of job {job_id}: {exc}")
            return None

    # Worker-side primitives

    def load(self, job_id: str) -> Optional[Job]:
        raw = self.redis.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    def save(self, job: Job) -> None:
        self.redis.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl_seconds)

    def dequeue(self) -> Optional[str]:
        """
        Claim the next ready job id, promoting due retries first.

        The id moves atomically from the pending list to the processing list and
        stays there until ``finish`` or ``retry_later`` releases it.
        """
        self.promote_due()
        return _text(self.redis.lmove(self.pending_key, self.processing_key, "LEFT", "RIGHT"))

    def release(self, job_id: str) -> None:
        """Drop a claimed id without touching its record."""
        self.redis.lrem(self.processing_key, 1, job_id)

    def finish(self, job: Job) -> None:
        """Write a terminal job record and release its claim in one transaction."""
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl_seconds)
        pipe.lrem(self.processing_key, 1, job.id)
        pipe.execute()

    def retry_later(self, job: Job, delay_seconds: float) -> None:
        """Write the pending record, schedule the retry and release the claim in one transaction."""
        due_at = time.time() + max(delay_seconds, 0.0)
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl_seconds)
        pipe.zadd(self.delayed_key, {job.id: due_at})
        pipe.lrem(self.processing_key, 1, job.id)
        pipe.execute()

    def promote_due(self) -> int:
        """
        Move retries whose delay has elapsed back onto the pending list.

        Returns:
            Number of jobs promoted by this call
        """
        due = self.redis.zrangebyscore(self.delayed_key, "-inf", time.time())
        promoted = 0
        for raw_id in due:
            job_id = _text(raw_id)
            # Only the caller whose ZREM succeeds requeues the job
            if self.redis.zrem(self.delayed_key, job_id):
                self.redis.rpush(self.pending_key, job_id)
                promoted += 1
        return promoted

    def recover_stale(self, stale_after_seconds: float) -> int:
        """
        Requeue claimed jobs whose owner stopped updating them.

        A claim is stale when its record has not been written for
        ``stale_after_seconds``: the worker holding it died, or a write after the
        claim failed. Claims on finished or expired records are dropped.

        Returns:
            Number of jobs put back on the pending list
        """
        cutoff = utcnow().timestamp() - stale_after_seconds
        recovered = 0
        for raw_id in self.redis.lrange(self.processing_key, 0, -1):
            job_id = _text(raw_id)
            try:
                job = self.load(job_id)
            except ValueError:
                job = None
            if job is None or job.is_terminal:
                self.release(job_id)
                continue
            if job.updated_at.timestamp() > cutoff:
                continue
            # Only the caller whose LREM succeeds requeues the job
            if self.redis.lrem(self.processing_key, 1, job_id):
                self.redis.rpush(self.pending_key, job_id)
                recovered += 1
                logger.warning(f"Recovered stale job {job_id} (last update {job.updated_at.isoformat()})")
        return recovered

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()
