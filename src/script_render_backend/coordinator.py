"""
Request coordination: queue the render when the broker is up, render in-request
when it is not.

A request moves through ``RECEIVED -> ENQUEUED | DEGRADED -> RESPONDED``.
Nothing outlives the request except the job created on the ENQUEUED branch;
degraded renders create no job record and cannot be polled afterwards.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import QueueUnavailable, RenderFailure
from .job_queue import JobQueueClient
from .models import RenderRequest
from .pipeline import RenderedArtifact, RenderPipeline

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    RECEIVED = "received"
    ENQUEUED = "enqueued"
    DEGRADED = "degraded"
    RESPONDED = "responded"


@dataclass
class CoordinatorOutcome:
    mode: CoordinatorState
    job_id: Optional[str] = None
    artifact: Optional[RenderedArtifact] = None
    history: List[CoordinatorState] = field(default_factory=list)


class DegradedModeExecutor:
    """
    Runs the render pipeline synchronously for a single request.

    The calling request is held for at most ``timeout_seconds``, and at most
    ``max_concurrent`` renders run at once. A render that outlives the timeout
    keeps its slot until it finishes; in-flight work is never cancelled.
    """

    def __init__(self, pipeline: RenderPipeline, timeout_seconds: float = 60.0, max_concurrent: int = 2) -> None:
        self.pipeline = pipeline
        self.timeout_seconds = timeout_seconds
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="degraded-render")

    def execute(self, request: RenderRequest) -> RenderedArtifact:
        """
        Render ``request`` in-request. Errors go straight back to the caller.

        Raises:
            InvalidInput: For missing records or too-short content
            RenderFailure: For render errors, timeouts, or when every slot is busy
        """
        if not self._slots.acquire(blocking=False):
            raise RenderFailure("Too many in-request renders in progress; try again shortly.")

        try:
            future = self._executor.submit(self.pipeline.run, request)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())

        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            logger.error(f"In-request render of version {request.version_id} timed out after {self.timeout_seconds}s")
            raise RenderFailure(f"Rendering did not finish within {self.timeout_seconds:g} seconds.") from exc

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class RequestCoordinator:
    """Entry point for render requests."""

    def __init__(self, queue: JobQueueClient, degraded: DegradedModeExecutor) -> None:
        self.queue = queue
        self.degraded = degraded

    def submit(self, request: RenderRequest) -> CoordinatorOutcome:
        history = [CoordinatorState.RECEIVED]

        # enqueue pings the broker first, so one failed ping selects degraded mode
        try:
            job_id = self.queue.enqueue(request)
        except QueueUnavailable as exc:
            logger.warning(f"Render queue unavailable, rendering in-request (degraded mode): {exc}")
        else:
            history += [CoordinatorState.ENQUEUED, CoordinatorState.RESPONDED]
            return CoordinatorOutcome(mode=CoordinatorState.ENQUEUED, job_id=job_id, history=history)

        history.append(CoordinatorState.DEGRADED)
        artifact = self.degraded.execute(request)
        history.append(CoordinatorState.RESPONDED)
        return CoordinatorOutcome(mode=CoordinatorState.DEGRADED, artifact=artifact, history=history)
