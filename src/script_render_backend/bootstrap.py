"""Composition root: builds the render services from configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from omegaconf import DictConfig

from .coordinator import DegradedModeExecutor, RequestCoordinator
from .database import CatalogDatabase
from .job_queue import JobQueueClient
from .notifications import NotificationChannel, RedisNotificationChannel
from .pipeline import RenderPipeline
from .renderer import DocumentRenderer
from .storage import ArtifactStore, LocalArtifactStore, build_artifact_store
from .worker import RenderWorker


@dataclass
class RenderServices:
    config: DictConfig
    catalog: CatalogDatabase
    queue: JobQueueClient
    store: ArtifactStore
    pipeline: RenderPipeline
    worker: RenderWorker
    coordinator: RequestCoordinator
    degraded: DegradedModeExecutor

    @property
    def local_artifact_root(self) -> Optional[Path]:
        """Directory to serve artifacts from, when they are stored locally."""
        if isinstance(self.store, LocalArtifactStore):
            return self.store.root
        return None

    def close(self) -> None:
        self.worker.stop(wait=True)
        self.degraded.shutdown(wait=True)
        self.queue.close()


def build_services(
    config: DictConfig,
    queue: Optional[JobQueueClient] = None,
    catalog: Optional[CatalogDatabase] = None,
    store: Optional[ArtifactStore] = None,
    notifier: Optional[NotificationChannel] = None,
) -> RenderServices:
    """
    Wire up every render component.

    Any component passed in explicitly is used as-is; the rest are built from
    ``config``.
    """
    queue = queue or JobQueueClient.from_config(config)
    catalog = catalog or CatalogDatabase(Path(config.catalog.db_path))
    store = store or build_artifact_store(config)
    if notifier is None:
        notifier = RedisNotificationChannel(queue.redis, channel_prefix=config.notifications.channel_prefix)

    renderer = DocumentRenderer(
        min_content_chars=config.render.min_content_chars,
        uploads_dir=Path(config.render.uploads_dir),
        date_format=config.render.date_format,
        debug_html_path=Path(config.render.debug_html_path) if config.render.debug_html_path else None,
    )
    pipeline = RenderPipeline(
        renderer=renderer,
        store=store,
        projects=catalog.projects,
        versions=catalog.versions,
        clients=catalog.clients,
    )
    worker = RenderWorker(
        queue=queue,
        pipeline=pipeline,
        notifier=notifier,
        concurrency=config.worker.concurrency,
        max_attempts=config.worker.max_attempts,
        backoff_base_seconds=config.worker.backoff_base_seconds,
        poll_interval_seconds=config.worker.poll_interval_seconds,
        stale_after_seconds=config.worker.stale_after_seconds,
    )
    degraded = DegradedModeExecutor(
        pipeline,
        timeout_seconds=config.degraded.timeout_seconds,
        max_concurrent=config.degraded.max_concurrent,
    )
    coordinator = RequestCoordinator(queue, degraded)

    return RenderServices(
        config=config,
        catalog=catalog,
        queue=queue,
        store=store,
        pipeline=pipeline,
        worker=worker,
        coordinator=coordinator,
        degraded=degraded,
    )
