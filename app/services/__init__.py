"""Business logic services package."""

from app.services.redis_client import (
    RedisClient,
    RedisConnectionError,
    get_redis_client
)
from app.services.webhook_log_store import (
    WebhookLogStore,
    get_webhook_log_store
)
from app.services.analytics_store import (
    ReviewAnalyticsStore,
    get_analytics_store
)
from app.services.github_client import (
    GitHubClient,
    GitHubClientError,
    GitHubAccessError,
    GitHubAuthError,
    GitHubClientFactory,
    OfflineGitHubClient,
    get_github_client_factory
)

__all__ = [
    'RedisClient',
    'RedisConnectionError',
    'get_redis_client',
    'WebhookLogStore',
    'get_webhook_log_store',
    'ReviewAnalyticsStore',
    'get_analytics_store',
    'GitHubClient',
    'GitHubClientError',
    'GitHubAccessError',
    'GitHubAuthError',
    'GitHubClientFactory',
    'OfflineGitHubClient',
    'get_github_client_factory'
]
