"""
Outbound notifications to kitchen and service staff.

Delivery belongs to whatever consumes the channels (socket gateway, pager,
display). Publishing is fire-and-forget: a failure is logged and never
reaches the reservation flow that triggered it.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from app.config import settings

logger = structlog.get_logger()

KITCHEN_TOPIC = "kitchen"
ADMIN_TOPIC = "admin"


class Notifier(ABC):
    """Message-passing seam for staff notifications"""

    @abstractmethod
    async def notify(self, topic: str, payload: Dict[str, Any]) -> None:
        """Publish ``payload`` on ``topic``; must not raise on delivery failure"""

    async def close(self) -> None:
        """Release any connections held by the notifier"""


class LoggingNotifier(Notifier):
    """Writes notifications to the log (development)"""

    async def notify(self, topic: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification", topic=topic, payload=payload)


class RedisNotifier(Notifier):
    """Publishes notifications on Redis pub/sub channels"""

    def __init__(self, redis_url: Optional[str] = None, channel_prefix: str = "tablehold"):
        self.redis_url = redis_url or settings.redis_url
        self.channel_prefix = channel_prefix
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = aioredis.from_url(
                self.redis_url,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
        return self._client

    async def notify(self, topic: str, payload: Dict[str, Any]) -> None:
        channel = f"{self.channel_prefix}:{topic}"
        try:
            await self._get_client().publish(channel, json.dumps(payload, default=str))
        except (RedisError, OSError) as e:
            logger.warning("Notification not delivered", channel=channel, error=str(e))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_notifier() -> Notifier:
    """New notifier for the configured backend"""
    if settings.notifier_backend == "redis":
        return RedisNotifier()
    return LoggingNotifier()


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Configured notifier, shared by all requests"""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier
