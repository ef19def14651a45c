"""Tests for the audit sinks and sink selection."""

import json
import logging
from datetime import datetime, timezone

import pytest

from yardbook.config import Settings
from yardbook.services import audit
from yardbook.services.audit import (
    LoggingAuditSink,
    NullAuditSink,
    RedisAuditSink,
    TransitionEvent,
    build_audit_sink,
)


def transition_event(**overrides) -> TransitionEvent:
    data = {
        "booking_id": "b-1",
        "event": "receive",
        "from_status": "booked",
        "to_status": "received",
        "actor_id": "admin-1",
        "timestamp": datetime(2026, 3, 2, 8, 5, tzinfo=timezone.utc),
        "approval_status": "none",
    }
    data.update(overrides)
    return TransitionEvent(**data)


class FakeRedis:
    def __init__(self):
        self.connects: list[str] = []
        self.published: list[tuple[str, str]] = []
        self.closed = False

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    client = FakeRedis()

    def _from_url(url, **kwargs):
        client.connects.append(url)
        return client

    monkeypatch.setattr(audit.redis, "from_url", _from_url)
    return client


@pytest.mark.unit
class TestSinkSelection:
    """AUDIT_SINK picks the sink; unknown values fall back to logging."""

    def test_redis(self):
        sink = build_audit_sink(Settings(audit_sink="redis", audit_channel="yard:events"))
        assert isinstance(sink, RedisAuditSink)

    def test_none(self):
        assert isinstance(build_audit_sink(Settings(audit_sink="NONE")), NullAuditSink)

    def test_log(self):
        assert isinstance(build_audit_sink(Settings(audit_sink="log")), LoggingAuditSink)

    def test_unknown_falls_back_to_log(self, caplog):
        with caplog.at_level(logging.WARNING, logger="yardbook.services.audit"):
            sink = build_audit_sink(Settings(audit_sink="kafka"))

        assert isinstance(sink, LoggingAuditSink)
        assert "Unknown AUDIT_SINK 'kafka'" in caplog.text


@pytest.mark.unit
@pytest.mark.asyncio
class TestSinks:
    """Delivery through each sink."""

    async def test_logging_sink_writes_structured_record(self, caplog):
        with caplog.at_level(logging.INFO, logger="yardbook.audit"):
            await LoggingAuditSink().emit(transition_event())

        record = next(r for r in caplog.records if r.name == "yardbook.audit")
        assert "booked → received (receive)" in record.getMessage()
        assert record.booking_id == "b-1"
        assert record.timestamp == "2026-03-02T08:05:00Z"

    async def test_null_sink_accepts_events(self):
        sink = NullAuditSink()
        await sink.emit(transition_event())
        await sink.close()

    async def test_redis_sink_publishes_json(self, fake_redis):
        sink = RedisAuditSink("redis://cache:6379/2", "yard:events")

        await sink.emit(transition_event())
        await sink.emit(transition_event(event="exit", from_status="offloaded", to_status="exited"))

        assert fake_redis.connects == ["redis://cache:6379/2"]
        channels = {channel for channel, _ in fake_redis.published}
        assert channels == {"yard:events"}
        first = json.loads(fake_redis.published[0][1])
        assert first["booking_id"] == "b-1"
        assert first["to_status"] == "received"
        assert json.loads(fake_redis.published[1][1])["event"] == "exit"

    async def test_redis_sink_close_releases_client(self, fake_redis):
        sink = RedisAuditSink("redis://cache:6379/2", "yard:events")
        await sink.emit(transition_event())

        await sink.close()
        assert fake_redis.closed

        fake_redis.closed = False
        await sink.close()
        assert not fake_redis.closed

    async def test_redis_sink_close_without_connection(self, fake_redis):
        await RedisAuditSink("redis://cache:6379/2", "yard:events").close()
        assert fake_redis.connects == []
