"""Best-effort delivery of job outcomes to the requesting user's session."""

from __future__ import annotations

import logging
from typing import Protocol

import redis
from redis.exceptions import RedisError

from .errors import NotificationFailure
from .models import JobNotification

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    def publish(self, user_id: str, notification: JobNotification) -> None:
        ...


class RedisNotificationChannel:
    """
    Publishes notifications on a per-user Redis pub/sub channel.

    Session gateways subscribe to ``<channel_prefix>:<user_id>`` and forward the
    JSON payload to the user's open connections.
    """

    def __init__(self, client: redis.Redis, channel_prefix: str = "render:notifications:user") -> None:
        self.client = client
        self.channel_prefix = channel_prefix

    def channel_for(self, user_id: str) -> str:
        return f"{self.channel_prefix}:{user_id}"

    def publish(self, user_id: str, notification: JobNotification) -> None:
        channel = self.channel_for(user_id)
        try:
            receivers = self.client.publish(channel, notification.model_dump_json(by_alias=True))
        except RedisError as exc:
            raise NotificationFailure(f"Failed to publish to {channel}: {exc}") from exc
        logger.info(f"Notification for job {notification.job_id} sent to {channel} ({receivers} receivers)")
