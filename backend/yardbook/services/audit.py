"""Audit sinks for booking transition events.

The engine emits one TransitionEvent per successful transition or
approval decision.  Delivery is fire-and-forget: sinks are awaited in a
background task, and any failure is logged here and never reaches the
caller of the transition.

Sinks:
  LoggingAuditSink  → structured log line per event (default)
  RedisAuditSink    → PUBLISH to a Redis channel for downstream consumers
  NullAuditSink     → discard
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from pydantic import BaseModel

from yardbook.config import Settings

logger = logging.getLogger(__name__)


class TransitionEvent(BaseModel):
    booking_id: str
    event: str
    from_status: str
    to_status: str
    actor_id: str
    timestamp: datetime
    approval_status: str | None = None


class AuditSink(ABC):
    @abstractmethod
    async def emit(self, event: TransitionEvent) -> None:
        ...

    async def close(self) -> None:
        pass


class NullAuditSink(AuditSink):
    async def emit(self, event: TransitionEvent) -> None:
        pass


class LoggingAuditSink(AuditSink):
    def __init__(self, logger_name: str = "yardbook.audit"):
        self._logger = logging.getLogger(logger_name)

    async def emit(self, event: TransitionEvent) -> None:
        self._logger.info(
            f"Booking {event.booking_id}: {event.from_status} → {event.to_status} ({event.event})",
            extra=event.model_dump(mode="json"),
        )


class RedisAuditSink(AuditSink):
    """Publish events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis_url: str, channel: str):
        self._redis_url = redis_url
        self._channel = channel
        self._client: Optional[redis.Redis] = None

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=2,
            )
        return self._client

    async def emit(self, event: TransitionEvent) -> None:
        client = await self._get_client()
        await client.publish(self._channel, event.model_dump_json())

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def build_audit_sink(settings: Settings) -> AuditSink:
    kind = settings.audit_sink.lower()
    if kind == "redis":
        return RedisAuditSink(settings.redis_url, settings.audit_channel)
    if kind == "none":
        return NullAuditSink()
    if kind != "log":
        logger.warning(f"Unknown AUDIT_SINK '{settings.audit_sink}', falling back to log")
    return LoggingAuditSink()
