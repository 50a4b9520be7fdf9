"""
Webhook log bookkeeping.

Stores one WebhookLogRecord per delivery in Redis and keeps aggregate
per-status counters consistent across status transitions. When Redis is
unreachable, records go to a small in-process ring buffer instead; that
buffer is lost on restart.

The store sits on the webhook acknowledgement path, so it makes a single
attempt per Redis call and, after a connection failure, skips Redis
entirely for ``retry_after_seconds``.
"""

import secrets
import string
import time
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from redis.exceptions import RedisError

from app.models.webhook_log import WebhookLogRecord, WebhookStats, WebhookStatus
from app.services.redis_client import RedisClient, RedisConnectionError
from app.utils.logging import get_logger

logger = get_logger(__name__)

STORE_ERRORS = (RedisConnectionError, RedisError)


class WebhookLogStore:
    """Redis-backed webhook log with a bounded local fallback."""

    LOG_KEY = "webhook:{log_id}"
    RECENT_KEY = "webhook:recent"
    STATS_KEY = "webhook:stats"

    def __init__(
        self,
        redis_client: RedisClient,
        ttl_seconds: int = 86400 * 7,
        max_logs: int = 1000,
        fallback_size: int = 100,
        retry_after_seconds: float = 30.0
    ):
        self.redis_client = redis_client.with_retries(1)
        self.ttl_seconds = ttl_seconds
        self.max_logs = max_logs
        self.retry_after_seconds = retry_after_seconds
        self._fallback: Deque[WebhookLogRecord] = deque(maxlen=fallback_size)
        self._unavailable_until = 0.0

    @property
    def redis_available(self) -> bool:
        return time.monotonic() >= self._unavailable_until

    async def _call(self, operation, *args, **kwargs):
        """
        Run one RedisClient operation, short-circuiting while Redis is marked down.

        Raises:
            RedisConnectionError: Redis is marked down or the call could not connect
            RedisError: Non-transient Redis failure
        """
        if not self.redis_available:
            raise RedisConnectionError("Redis marked unavailable, skipping")
        try:
            return await operation(*args, **kwargs)
        except RedisConnectionError:
            self._unavailable_until = time.monotonic() + self.retry_after_seconds
            logger.warning(f"Redis unreachable, webhook logs use the fallback for {self.retry_after_seconds}s")
            raise

    def _log_key(self, log_id: str) -> str:
        return self.LOG_KEY.format(log_id=log_id)

    async def _store(self, record: WebhookLogRecord) -> None:
        await self._call(
            self.redis_client.set_with_expiry,
            self._log_key(record.id),
            record.model_dump_json(),
            self.ttl_seconds
        )

    def _fallback_get(self, log_id: str) -> Optional[WebhookLogRecord]:
        for record in self._fallback:
            if record.id == log_id:
                return record
        return None

    def _fallback_put(self, record: WebhookLogRecord) -> None:
        existing = self._fallback_get(record.id)
        if existing is not None:
            self._fallback.remove(existing)
        self._fallback.appendleft(record)

    async def record_log(self, record: WebhookLogRecord) -> None:
        """
        Store a new record and count it once in the aggregate stats.

        Args:
            record: Freshly created webhook record
        """
        try:
            await self._store(record)
            await self._call(self.redis_client.lpush, self.RECENT_KEY, record.id)
            await self._call(self.redis_client.ltrim, self.RECENT_KEY, 0, self.max_logs - 1)
            await self._call(self.redis_client.hincrby, self.STATS_KEY, record.status.value, 1)
            await self._call(self.redis_client.hincrby, self.STATS_KEY, "total", 1)
            logger.debug(f"Webhook log stored in Redis: {record.id}")

        except STORE_ERRORS as e:
            logger.warning(f"Could not store webhook log in Redis, using fallback: {e}")
            self._fallback_put(record)

    async def save_log(self, record: WebhookLogRecord) -> None:
        """Overwrite a record's body (actions, error) without touching counters."""
        try:
            await self._store(record)
        except STORE_ERRORS as e:
            logger.warning(f"Could not save webhook log {record.id}, using fallback: {e}")
            self._fallback_put(record)

    async def get_log(self, log_id: str) -> Optional[WebhookLogRecord]:
        try:
            raw = await self._call(self.redis_client.get, self._log_key(log_id))
        except STORE_ERRORS as e:
            logger.warning(f"Could not read webhook log {log_id} from Redis: {e}")
            return self._fallback_get(log_id)

        if not raw:
            return self._fallback_get(log_id)

        return WebhookLogRecord.model_validate_json(raw)

    async def append_action(self, log_id: Optional[str], action: str) -> None:
        """Add a human-readable annotation to an existing record."""
        if not log_id:
            return

        record = await self.get_log(log_id)
        if record is None:
            logger.debug(f"Webhook log {log_id} not found, action dropped: {action}")
            return

        record.actions.append(action)
        await self.save_log(record)

    async def update_status(
        self,
        log_id: Optional[str],
        status: WebhookStatus,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None
    ) -> Optional[WebhookLogRecord]:
        """
        Move a record to ``status`` and shift its count between buckets.

        Args:
            log_id: Record id; a missing id is a no-op
            status: New status
            error: Error text to attach
            processing_time_ms: Explicit duration; derived from the record
                timestamp when omitted

        Returns:
            The updated record, or None when it could not be found
        """
        if not log_id:
            return None

        record = await self.get_log(log_id)
        if record is None:
            logger.warning(f"Webhook log {log_id} not found, status {status.value} not recorded")
            return None

        old_status = record.status
        record.status = status
        if error is not None:
            record.error = error
        if processing_time_ms is None:
            elapsed = datetime.now(timezone.utc) - _as_utc(record.timestamp)
            processing_time_ms = int(elapsed.total_seconds() * 1000)
        record.processing_time_ms = processing_time_ms

        try:
            await self._store(record)
            if old_status != status:
                await self._call(self.redis_client.hincrby, self.STATS_KEY, old_status.value, -1)
                await self._call(self.redis_client.hincrby, self.STATS_KEY, status.value, 1)
            logger.info(
                f"Webhook log {log_id}: {old_status.value} -> {status.value}",
                extra={"log_id": log_id}
            )

        except STORE_ERRORS as e:
            logger.warning(f"Could not update webhook log {log_id} in Redis, using fallback: {e}")
            self._fallback_put(record)

        return record

    async def get_logs(self, limit: int = 50, status: Optional[WebhookStatus] = None) -> List[WebhookLogRecord]:
        """Most recent records first, optionally filtered by status."""
        logs: List[WebhookLogRecord] = []

        try:
            log_ids = await self._call(self.redis_client.lrange, self.RECENT_KEY, 0, limit - 1)
            for log_id in log_ids:
                raw = await self._call(self.redis_client.get, self._log_key(log_id))
                if not raw:
                    continue
                try:
                    record = WebhookLogRecord.model_validate_json(raw)
                except ValueError as e:
                    logger.error(f"Error parsing webhook log {log_id}: {e}")
                    continue
                if status is None or record.status == status:
                    logs.append(record)

        except STORE_ERRORS as e:
            logger.warning(f"Could not read webhook logs from Redis, using fallback: {e}")
            return self._fallback_logs(limit, status)

        if not logs and self._fallback:
            return self._fallback_logs(limit, status)

        return logs

    def _fallback_logs(self, limit: int, status: Optional[WebhookStatus]) -> List[WebhookLogRecord]:
        records = [r for r in self._fallback if status is None or r.status == status]
        return records[:limit]

    async def get_stats(self) -> WebhookStats:
        """Aggregate counters; derived from the fallback buffer when Redis is down."""
        try:
            raw = await self._call(self.redis_client.hgetall, self.STATS_KEY)
        except STORE_ERRORS as e:
            logger.warning(f"Could not read webhook stats from Redis, using fallback: {e}")
            return self._fallback_stats()

        return WebhookStats(**{k: int(v) for k, v in raw.items() if k in WebhookStats.model_fields})

    def _fallback_stats(self) -> WebhookStats:
        counts = {s.value: 0 for s in WebhookStatus}
        for record in self._fallback:
            counts[record.status.value] += 1
        return WebhookStats(total=len(self._fallback), **counts)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_log_id() -> str:
    """Webhook record id: ``webhook_<epoch ms>_<9 random chars>``."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"webhook_{int(time.time() * 1000)}_{suffix}"


_webhook_log_store: Optional[WebhookLogStore] = None


def get_webhook_log_store() -> WebhookLogStore:
    """Get or create the global webhook log store."""
    global _webhook_log_store
    if _webhook_log_store is None:
        from app.config import settings
        from app.services.redis_client import get_redis_client

        _webhook_log_store = WebhookLogStore(
            get_redis_client(),
            ttl_seconds=settings.webhook_log_ttl_seconds,
            max_logs=settings.max_webhook_logs,
            fallback_size=settings.fallback_log_size
        )
    return _webhook_log_store
