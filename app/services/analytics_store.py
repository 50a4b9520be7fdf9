"""
Review analytics stored in Redis.

Each completed review is saved as a JSON document with a 30 day expiry and
counted in per-user and global hashes.
"""

import json
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from redis.exceptions import RedisError

from app.models.review import ReviewRecord
from app.services.redis_client import RedisClient, RedisConnectionError
from app.utils.logging import get_logger

logger = get_logger(__name__)


def new_review_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"review_{int(time.time() * 1000)}_{suffix}"


class ReviewAnalyticsStore:
    """Persists review records and keeps usage counters."""

    REVIEW_KEY = "review:{review_id}"
    ALL_REVIEWS_KEY = "reviews:all"
    USER_STATS_KEY = "user:{user}:stats"
    USER_INFO_KEY = "user:{user}:info"
    GLOBAL_KEY = "analytics:global"

    def __init__(self, redis_client: RedisClient, ttl_seconds: int = 86400 * 30):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds

    async def save_review(self, record: ReviewRecord) -> Optional[str]:
        """
        Save a review and update counters.

        Args:
            record: Completed review

        Returns:
            The review id, or None when Redis could not be written
        """
        user = record.user
        try:
            await self.redis_client.set_with_expiry(
                self.REVIEW_KEY.format(review_id=record.id),
                record.model_dump_json(),
                self.ttl_seconds
            )
            await self.redis_client.lpush(self.ALL_REVIEWS_KEY, record.id)

            user_reviews = await self.redis_client.hincrby(
                self.USER_STATS_KEY.format(user=user), "reviews", 1
            )
            await self.redis_client.hset(
                self.USER_INFO_KEY.format(user=user),
                {
                    "lastActive": datetime.now(timezone.utc).isoformat(),
                    "totalReviews": user_reviews
                }
            )

            await self.redis_client.hincrby(self.GLOBAL_KEY, "totalReviews", 1)
            if user_reviews == 1:
                await self.redis_client.hincrby(self.GLOBAL_KEY, "totalUsers", 1)

            logger.info(f"Review analytics saved: {record.id}")
            return record.id

        except (RedisConnectionError, RedisError) as e:
            logger.error(f"Failed to save review analytics: {e}")
            return None

    async def get_global_analytics(self) -> Dict[str, int]:
        try:
            raw = await self.redis_client.hgetall(self.GLOBAL_KEY)
        except (RedisConnectionError, RedisError) as e:
            logger.error(f"Failed to read global analytics: {e}")
            return {"totalReviews": 0, "totalUsers": 0}

        return {
            "totalReviews": int(raw.get("totalReviews", 0)),
            "totalUsers": int(raw.get("totalUsers", 0))
        }

    async def get_recent_reviews(self, limit: int = 10) -> List[ReviewRecord]:
        reviews: List[ReviewRecord] = []
        try:
            review_ids = await self.redis_client.lrange(self.ALL_REVIEWS_KEY, 0, limit - 1)
            for review_id in review_ids:
                raw = await self.redis_client.get(self.REVIEW_KEY.format(review_id=review_id))
                if raw:
                    reviews.append(ReviewRecord.model_validate_json(raw))

        except (RedisConnectionError, RedisError) as e:
            logger.error(f"Failed to read recent reviews: {e}")

        return reviews

    async def get_user_stats(self, user: str) -> Optional[Dict[str, Any]]:
        """Review count and last activity for one user, None if unknown or unreadable."""
        try:
            stats = await self.redis_client.hgetall(self.USER_STATS_KEY.format(user=user))
            info = await self.redis_client.hgetall(self.USER_INFO_KEY.format(user=user))
        except (RedisConnectionError, RedisError) as e:
            logger.error(f"Failed to read stats for user {user}: {e}")
            return None

        if not stats and not info:
            return None

        return {
            "user": user,
            "reviews": int(stats.get("reviews", 0)),
            "lastActive": info.get("lastActive"),
        }


def review_summary(record: ReviewRecord) -> Dict[str, Any]:
    """Compact representation used by the analytics listing."""
    data = json.loads(record.model_dump_json(exclude={"review_content"}))
    data["review_length"] = len(record.review_content)
    return data


_analytics_store: Optional[ReviewAnalyticsStore] = None


def get_analytics_store() -> ReviewAnalyticsStore:
    """Get or create the global analytics store."""
    global _analytics_store
    if _analytics_store is None:
        from app.config import settings
        from app.services.redis_client import get_redis_client

        _analytics_store = ReviewAnalyticsStore(get_redis_client(), settings.review_ttl_seconds)
    return _analytics_store
