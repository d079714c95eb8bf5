"""
Render worker: consumes queued render jobs and drives them to completion.

This module manages the lifecycle of queued render jobs:
- Bounded concurrency: ``concurrency`` polling threads, one job each
- Progress tracking written back to the broker
- Retries with exponential backoff; invalid input is never retried
- Best-effort outcome notifications

Run a standalone worker process with:
    python -m script_render_backend.worker
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from redis.exceptions import RedisError

from .errors import InvalidInput
from .job_queue import JobQueueClient
from .models import Job, JobNotification, JobState
from .notifications import NotificationChannel
from .pipeline import RenderPipeline
from .utils import utcnow

logger = logging.getLogger(__name__)


class RenderWorker:
    """
    Pool of job consumers sharing one queue client and one render pipeline.

    Attributes:
        queue: Broker client used to dequeue, load and save jobs
        pipeline: Render pipeline shared with the degraded path
        notifier: Channel that receives job outcomes (optional)
        concurrency: Maximum number of jobs rendering at the same time
        max_attempts: Attempts per job before it is marked failed
        backoff_base_seconds: Retry n is delayed by ``base * 2 ** n`` seconds
        poll_interval_seconds: Idle wait between polls of an empty queue
        stale_after_seconds: Claimed jobs not updated for this long are requeued

    Thread Safety:
        A job is only ever owned by the slot that dequeued it, so job records
        need no locking. The lock only guards starting and stopping the pool.
    """

    def __init__(
        self,
        queue: JobQueueClient,
        pipeline: RenderPipeline,
        notifier: Optional[NotificationChannel] = None,
        concurrency: int = 2,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        poll_interval_seconds: float = 0.5,
        stale_after_seconds: float = 300.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("Worker concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.queue = queue
        self.pipeline = pipeline
        self.notifier = notifier
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self._last_recovery: Optional[float] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots: List[Future] = []

    def backoff_delay(self, attempt_count: int) -> float:
        return self.backoff_base_seconds * (2**attempt_count)

    @property
    def running(self) -> bool:
        return self._executor is not None and not self._stop_event.is_set()

    def start(self) -> None:
        """Start ``concurrency`` polling slots in background threads."""
        with self._lock:
            if self._executor is not None:
                return
            self._stop_event.clear()
            self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="render-worker")
            self._slots = [self._executor.submit(self._run_loop, slot) for slot in range(self.concurrency)]
        logger.info(f"Render worker started with {self.concurrency} slots")

    def stop(self, wait: bool = True) -> None:
        """
        Stop polling. Jobs already rendering run to completion.
        """
        with self._lock:
            executor, self._executor = self._executor, None
            self._stop_event.set()
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("Render worker stopped")

    def _run_loop(self, slot: int) -> None:
        while not self._stop_event.is_set():
            try:
                processed = self.run_once()
            except RedisError as exc:
                logger.warning(f"Worker slot {slot} cannot reach the broker: {exc}")
                processed = False
            except Exception:  # noqa: BLE001
                logger.exception(f"Worker slot {slot} failed while processing a job")
                processed = False
            if not processed:
                self._stop_event.wait(self.poll_interval_seconds)

    def run_once(self) -> bool:
        """
        Process the next ready job, if any.

        Returns:
            True if a job was dequeued
        """
        self._recover_stale()
        job_id = self.queue.dequeue()
        if job_id is None:
            return False
        self.process(job_id)
        return True

    def _recover_stale(self) -> None:
        now = time.monotonic()
        if self._last_recovery is not None and now - self._last_recovery < self.stale_after_seconds / 2:
            return
        self._last_recovery = now
        recovered = self.queue.recover_stale(self.stale_after_seconds)
        if recovered:
            logger.warning(f"Requeued {recovered} job(s) abandoned by a previous worker")

    def _save(self, job: Job) -> Job:
        self.queue.save(job)
        return job

    def process(self, job_id: str) -> Optional[Job]:
        """
        Run one attempt of a job.

        Returns:
            The job after this attempt (completed, failed, or pending a retry),
            or None if the job record no longer exists
        """
        job = self.queue.load(job_id)
        if job is None:
            logger.warning(f"Dequeued job {job_id} has no record; skipping")
            self.queue.release(job_id)
            return None
        if job.is_terminal:
            logger.info(f"Job {job_id} is already {job.state.value}; skipping duplicate delivery")
            self.queue.release(job_id)
            return job

        job = self._save(job.evolve(state=JobState.RUNNING, progress=10, updated_at=utcnow()))
        logger.info(f"Processing job {job.id} (attempt {job.attempt_count + 1}/{self.max_attempts})")

        def report_progress(progress: int) -> None:
            nonlocal job
            if progress > job.progress:
                job = self._save(job.evolve(progress=progress, updated_at=utcnow()))

        try:
            artifact = self.pipeline.run(job.payload, report_progress=report_progress)
        except Exception as exc:  # noqa: BLE001
            return self._handle_failure(job, exc)

        job = job.evolve(state=JobState.COMPLETED, progress=100, result_ref=artifact.ref, updated_at=utcnow())
        self.queue.finish(job)
        logger.info(f"Job {job.id} completed: {artifact.ref.path}")
        self._notify(job)
        return job

    def _handle_failure(self, job: Job, exc: Exception) -> Job:
        attempts = job.attempt_count + 1
        retryable = not isinstance(exc, InvalidInput)

        if retryable and attempts < self.max_attempts:
            delay = self.backoff_delay(attempts)
            job = job.evolve(state=JobState.PENDING, progress=0, attempt_count=attempts, updated_at=utcnow())
            self.queue.retry_later(job, delay)
            logger.warning(f"Job {job.id} attempt {attempts} failed: {exc}. Retrying in {delay:.1f}s")
            return job

        reason = str(exc) or exc.__class__.__name__
        job = job.evolve(state=JobState.FAILED, attempt_count=attempts, failure_reason=reason, updated_at=utcnow())
        self.queue.finish(job)
        logger.error(f"Job {job.id} failed after {attempts} attempt(s): {reason}")
        self._notify(job)
        return job

    def _notify(self, job: Job) -> None:
        if self.notifier is None:
            logger.warning(f"No notification channel configured; job {job.id} outcome not pushed")
            return
        try:
            download_url = self.pipeline.store.public_path(job.result_ref) if job.result_ref else None
            notification = JobNotification(
                job_id=job.id,
                version_id=job.payload.version_id,
                outcome=job.state,
                result_ref=job.result_ref,
                download_url=download_url,
                message="Your PDF is ready for download." if job.result_ref else job.failure_reason,
            )
            self.notifier.publish(job.payload.requesting_user_id, notification)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Notification for job {job.id} failed: {exc}")


def main() -> int:
    """
    Run a standalone worker until SIGINT/SIGTERM.

    Exits with status 0 without starting when the broker is unreachable, so a
    deployment without Redis simply runs every render in degraded mode.
    """
    from .bootstrap import build_services
    from .configuration import make_runtime_config

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = make_runtime_config()
    services = build_services(config)

    if not services.queue.probe():
        logger.warning("Broker is not reachable; render worker not started.")
        services.queue.close()
        return 0

    stopped = threading.Event()

    def shutdown(signum, _frame) -> None:
        logger.warning(f"Received signal {signum}, shutting down worker...")
        stopped.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    services.worker.start()
    logger.info("Render worker running. Waiting for jobs...")
    while not stopped.wait(1.0):
        pass
    services.worker.stop(wait=True)
    services.queue.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
