"""
Unit tests for webhook log bookkeeping.
"""

import time

import pytest
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import fakeredis
import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError

from app.models.webhook_log import WebhookLogRecord, WebhookStatus
from app.services.redis_client import RedisClient
from app.services.webhook_log_store import WebhookLogStore, new_log_id


@pytest.fixture
async def redis_client() -> AsyncGenerator[RedisClient, None]:
    client = RedisClient(redis_url="redis://localhost:6379/0", retry_delay=0)
    fake_redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    client._client = fake_redis

    yield client

    await fake_redis.flushdb()
    await fake_redis.aclose()


@pytest.fixture
def store(redis_client: RedisClient) -> WebhookLogStore:
    return WebhookLogStore(redis_client, ttl_seconds=3600, max_logs=3, fallback_size=2)


@pytest.fixture
def offline_store() -> WebhookLogStore:
    """Store whose Redis client was never initialized."""
    client = RedisClient(redis_url="redis://localhost:6379/0", max_retries=1, retry_delay=0)
    return WebhookLogStore(client, fallback_size=2)


def make_record(log_id: str = None, **kwargs) -> WebhookLogRecord:
    return WebhookLogRecord(
        id=log_id or new_log_id(),
        timestamp=datetime.now(timezone.utc),
        event="issue_comment",
        repository="octo/demo",
        user="alice",
        **kwargs
    )


def test_new_log_id_format():
    log_id = new_log_id()
    prefix, millis, suffix = log_id.split("_")

    assert prefix == "webhook"
    assert millis.isdigit()
    assert len(suffix) == 9


class TestRecordAndStatus:
    """Test counter consistency across status transitions."""

    @pytest.mark.asyncio
    async def test_record_counts_total_once(self, store: WebhookLogStore):
        record = make_record("webhook_1")
        await store.record_log(record)

        stats = await store.get_stats()
        assert stats.total == 1
        assert stats.processing == 1

        stored = await store.get_log("webhook_1")
        assert stored.status == WebhookStatus.PROCESSING
        assert stored.repository == "octo/demo"

    @pytest.mark.asyncio
    async def test_transition_moves_counter(self, store: WebhookLogStore):
        await store.record_log(make_record("webhook_1"))

        updated = await store.update_status("webhook_1", WebhookStatus.COMPLETED)

        assert updated.status == WebhookStatus.COMPLETED
        assert updated.processing_time_ms is not None
        stats = await store.get_stats()
        assert stats.total == 1
        assert stats.processing == 0
        assert stats.completed == 1

    @pytest.mark.asyncio
    async def test_ignored_counted_once(self, store: WebhookLogStore):
        await store.record_log(make_record("webhook_1"))
        await store.update_status("webhook_1", WebhookStatus.IGNORED)

        stats = await store.get_stats()
        assert stats.total == 1
        assert stats.ignored == 1
        assert stats.processing == 0

    @pytest.mark.asyncio
    async def test_same_status_does_not_touch_counters(self, store: WebhookLogStore):
        await store.record_log(make_record("webhook_1"))
        await store.update_status("webhook_1", WebhookStatus.ERROR, error="boom")
        await store.update_status("webhook_1", WebhookStatus.ERROR, error="boom again")

        stats = await store.get_stats()
        assert stats.error == 1
        assert stats.processing == 0
        assert (await store.get_log("webhook_1")).error == "boom again"

    @pytest.mark.asyncio
    async def test_processing_time_from_timestamp(self, store: WebhookLogStore):
        record = make_record("webhook_1")
        record.timestamp = datetime.now(timezone.utc) - timedelta(seconds=2)
        await store.record_log(record)

        updated = await store.update_status("webhook_1", WebhookStatus.COMPLETED)

        assert updated.processing_time_ms >= 2000

    @pytest.mark.asyncio
    async def test_unknown_or_missing_id(self, store: WebhookLogStore):
        assert await store.update_status("webhook_missing", WebhookStatus.COMPLETED) is None
        assert await store.update_status(None, WebhookStatus.COMPLETED) is None
        assert (await store.get_stats()).completed == 0

    @pytest.mark.asyncio
    async def test_append_action_keeps_counters(self, store: WebhookLogStore):
        await store.record_log(make_record("webhook_1"))
        await store.append_action("webhook_1", "Added 👀 reaction")
        await store.append_action("webhook_1", "Review requested by @alice")

        record = await store.get_log("webhook_1")
        assert record.actions == ["Added 👀 reaction", "Review requested by @alice"]
        assert (await store.get_stats()).total == 1


class TestListing:
    """Test recent log listing."""

    @pytest.mark.asyncio
    async def test_newest_first_and_trimmed(self, store: WebhookLogStore):
        for i in range(5):
            await store.record_log(make_record(f"webhook_{i}"))

        logs = await store.get_logs()

        assert [log.id for log in logs] == ["webhook_4", "webhook_3", "webhook_2"]

    @pytest.mark.asyncio
    async def test_filter_by_status(self, store: WebhookLogStore):
        await store.record_log(make_record("webhook_1"))
        await store.record_log(make_record("webhook_2"))
        await store.update_status("webhook_2", WebhookStatus.COMPLETED)

        logs = await store.get_logs(status=WebhookStatus.COMPLETED)

        assert [log.id for log in logs] == ["webhook_2"]


class TestFallback:
    """Test degraded mode when Redis is unreachable."""

    @pytest.mark.asyncio
    async def test_records_kept_in_memory(self, offline_store: WebhookLogStore):
        await offline_store.record_log(make_record("webhook_1"))
        await offline_store.update_status("webhook_1", WebhookStatus.COMPLETED)

        record = await offline_store.get_log("webhook_1")
        assert record.status == WebhookStatus.COMPLETED

        stats = await offline_store.get_stats()
        assert stats.total == 1
        assert stats.completed == 1

    @pytest.mark.asyncio
    async def test_fallback_is_bounded(self, offline_store: WebhookLogStore):
        for i in range(3):
            await offline_store.record_log(make_record(f"webhook_{i}"))

        logs = await offline_store.get_logs()

        assert [log.id for log in logs] == ["webhook_2", "webhook_1"]
        assert await offline_store.get_log("webhook_0") is None

    @pytest.mark.asyncio
    async def test_connection_failure_short_circuits(self):
        client = RedisClient(redis_url="redis://localhost:6379/0", max_retries=3, retry_delay=1.0)
        client._client = AsyncMock()
        client._client.set.side_effect = ConnectionError("down")
        store = WebhookLogStore(client, fallback_size=5)

        started = time.monotonic()
        await store.record_log(make_record("webhook_1"))
        await store.append_action("webhook_1", "Added 👀 reaction")
        await store.update_status("webhook_1", WebhookStatus.IGNORED)

        assert time.monotonic() - started < 0.5
        # One attempt, no backoff; later calls skip Redis
        assert client._client.set.await_count == 1
        client._client.get.assert_not_awaited()
        assert store.redis_available is False

        record = await store.get_log("webhook_1")
        assert record.actions == ["Added 👀 reaction"]
        assert record.status == WebhookStatus.IGNORED

    @pytest.mark.asyncio
    async def test_redis_retried_after_window(self, redis_client: RedisClient):
        store = WebhookLogStore(redis_client, retry_after_seconds=0)
        redis_client._client, fake_redis = AsyncMock(), redis_client._client
        redis_client._client.set.side_effect = ConnectionError("down")

        await store.record_log(make_record("webhook_1"))

        redis_client._client = fake_redis
        await store.record_log(make_record("webhook_2"))

        assert (await store.get_stats()).total == 1
        assert await fake_redis.get("webhook:webhook_2") is not None

    @pytest.mark.asyncio
    async def test_closed_port_does_not_block(self):
        client = RedisClient(redis_url="redis://127.0.0.1:1/0", retry_delay=1.0)
        client._client = redis.Redis.from_url(
            "redis://127.0.0.1:1/0",
            decode_responses=True,
            socket_connect_timeout=0.5,
            retry=Retry(NoBackoff(), 0),
        )
        store = WebhookLogStore(client)

        started = time.monotonic()
        await store.record_log(make_record("webhook_1"))
        for _ in range(3):
            await store.append_action("webhook_1", "action")
        await store.update_status("webhook_1", WebhookStatus.COMPLETED)

        assert time.monotonic() - started < 1.0
        assert (await store.get_log("webhook_1")).status == WebhookStatus.COMPLETED
        await client._client.aclose()
