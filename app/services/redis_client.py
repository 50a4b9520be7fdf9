"""
Redis client wrapper for review coordination and bookkeeping.

This service provides the Redis primitives the review pipeline relies on:
- Conditional set with expiry for per-PR locks
- Plain get/set with expiry for idempotency markers
- Hash counters for webhook and review statistics
- Capped lists for recent webhook logs and reviews

Includes connection pooling and retry logic for resilience.
"""

import logging
import asyncio
from typing import Optional, List, Dict, Any
from contextlib import asynccontextmanager
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError, ConnectionError, TimeoutError, WatchError


logger = logging.getLogger(__name__)


class RedisConnectionError(Exception):
    """Raised when Redis connection fails after retries."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Provides methods for:
    - Review locks (SET NX EX)
    - Processed / recent-comment markers (GET, SETEX)
    - Counters (HINCRBY)
    - Recent-item lists (LPUSH, LTRIM, LRANGE)
    """

    # Redis key templates
    LOCK_KEY = "lock:{owner}:{repo}:{pr_number}"
    PROCESSED_COMMENT_KEY = "processed_comment:{owner}:{repo}:{comment_id}"
    RECENT_COMMENT_KEY = "recent_comment:{owner}:{repo}:{pr_number}"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            max_retries: Maximum number of retry attempts for transient errors
            retry_delay: Base delay between retries (exponential backoff)
            connection_timeout: Connection timeout in seconds
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._parent: Optional["RedisClient"] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Should be called during application startup.

        Raises:
            RedisConnectionError: If the initial ping fails
        """
        try:
            if not self._redis_url:
                from app.config import settings
                self._redis_url = settings.redis_url

            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=10,
                decode_responses=True,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout,
                # Retries happen in _retry_operation only
                retry=Retry(NoBackoff(), 0)
            )

            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

    async def close(self) -> None:
        """
        Close Redis connection pool.

        Should be called during application shutdown.
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    def with_retries(self, max_retries: int) -> "RedisClient":
        """
        Return a client sharing this one's connection pool with its own retry budget.

        The shared pool is resolved at call time, so the view can be created
        before ``initialize()`` runs.
        """
        view = RedisClient(
            self._redis_url,
            max_retries=max_retries,
            retry_delay=self._retry_delay,
            connection_timeout=self._connection_timeout
        )
        view._parent = self
        return view

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Raises:
            RedisConnectionError: If client not initialized
        """
        client = self._parent._client if self._parent else self._client
        if not client:
            raise RedisConnectionError("Redis client not initialized. Call initialize() first.")

        yield client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Connection and timeout errors are retried with exponential backoff;
        other Redis errors are raised immediately.

        Raises:
            RedisConnectionError: If operation fails after all retries
        """
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)

            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Redis operation failed after {self._max_retries} attempts: {e}")

            except RedisError as e:
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise

        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    # ========== Key helpers ==========

    def lock_key(self, owner: str, repo: str, pr_number: int) -> str:
        return self.LOCK_KEY.format(owner=owner, repo=repo, pr_number=pr_number)

    def processed_comment_key(self, owner: str, repo: str, comment_id: int) -> str:
        return self.PROCESSED_COMMENT_KEY.format(owner=owner, repo=repo, comment_id=comment_id)

    def recent_comment_key(self, owner: str, repo: str, pr_number: int) -> str:
        return self.RECENT_COMMENT_KEY.format(owner=owner, repo=repo, pr_number=pr_number)

    # ========== String Operations ==========

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """
        Atomically set ``key`` only if it does not exist yet.

        Returns:
            True if the key was set, False if it already existed
        """
        async def _set():
            async with self._get_client() as client:
                return await client.set(key, value, nx=True, ex=ttl_seconds)

        result = await self._retry_operation(_set)
        return bool(result)

    async def get(self, key: str) -> Optional[str]:
        async def _get():
            async with self._get_client() as client:
                return await client.get(key)

        return await self._retry_operation(_get)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        async def _setex():
            async with self._get_client() as client:
                await client.set(key, value, ex=ttl_seconds)

        await self._retry_operation(_setex)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """
        Delete ``key`` only while it still holds ``expected``.

        Used to release a lock without removing one that has since expired
        and been taken by another run. The key is WATCHed, so a write between
        the comparison and the DEL aborts the transaction.

        Returns:
            True if the key was deleted
        """
        async def _delete():
            async with self._get_client() as client:
                async with client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    if current != expected:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    try:
                        await pipe.execute()
                    except WatchError:
                        logger.warning(f"Key {key} changed during conditional delete, left in place")
                        return False
                    return True

        return await self._retry_operation(_delete)

    # ========== Hash Operations ==========

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        async def _incr():
            async with self._get_client() as client:
                return await client.hincrby(key, field, amount)

        return await self._retry_operation(_incr)

    async def hgetall(self, key: str) -> Dict[str, str]:
        async def _hgetall():
            async with self._get_client() as client:
                return await client.hgetall(key)

        return await self._retry_operation(_hgetall) or {}

    async def hset(self, key: str, mapping: Dict[str, Any]) -> None:
        async def _hset():
            async with self._get_client() as client:
                await client.hset(key, mapping=mapping)

        await self._retry_operation(_hset)

    # ========== List Operations ==========

    async def lpush(self, key: str, value: str) -> int:
        async def _push():
            async with self._get_client() as client:
                return await client.lpush(key, value)

        return await self._retry_operation(_push)

    async def ltrim(self, key: str, start: int, end: int) -> None:
        async def _trim():
            async with self._get_client() as client:
                await client.ltrim(key, start, end)

        await self._retry_operation(_trim)

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        async def _range():
            async with self._get_client() as client:
                return await client.lrange(key, start, end)

        return await self._retry_operation(_range)

    # ========== Utility Methods ==========

    async def ping(self) -> bool:
        """
        Test Redis connection.

        Raises:
            RedisConnectionError: If ping fails
        """
        async def _ping():
            async with self._get_client() as client:
                return await client.ping()

        return await self._retry_operation(_ping)


_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """
    Get or create the global Redis client instance.

    Returns:
        RedisClient instance
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
