"""
Operational endpoints: webhook logs, review analytics and service status.
"""

import os
import platform
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from redis.exceptions import RedisError

from app.config import settings
from app.models.api_response import AnalyticsResponse, WebhookLogsResponse
from app.models.webhook_log import WebhookLogRecord, WebhookStats, WebhookStatus
from app.services.analytics_store import get_analytics_store, review_summary
from app.services.github_client import get_github_client_factory
from app.services.redis_client import RedisConnectionError, get_redis_client
from app.services.review_orchestrator import get_review_orchestrator
from app.services.webhook_log_store import get_webhook_log_store
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["status"])

redis_client = get_redis_client()
webhook_log_store = get_webhook_log_store()
analytics_store = get_analytics_store()
review_orchestrator = get_review_orchestrator()
github_factory = get_github_client_factory()

_started_monotonic = time.monotonic()


def uptime_seconds() -> int:
    return int(time.monotonic() - _started_monotonic)


def format_uptime(seconds: int) -> str:
    """Render e.g. 93784 as "1d 2h 3m 4s"; zero-valued units other than seconds are omitted."""
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = [f"{value}{unit}" for value, unit in ((days, "d"), (hours, "h"), (minutes, "m")) if value]
    parts.append(f"{secs}s")
    return " ".join(parts)


@router.get("/webhooks/stats", response_model=WebhookStats)
async def get_webhook_stats() -> WebhookStats:
    return await webhook_log_store.get_stats()


@router.get("/webhooks/logs", response_model=WebhookLogsResponse)
async def get_webhook_logs(
    limit: int = Query(50, ge=1, le=1000),
    status: Optional[WebhookStatus] = None
) -> WebhookLogsResponse:
    """Most recent webhook deliveries, optionally filtered by status."""
    logs = await webhook_log_store.get_logs(limit=limit, status=status)
    stats = await webhook_log_store.get_stats()
    return WebhookLogsResponse(logs=logs, stats=stats)


@router.get("/webhooks/logs/{log_id}", response_model=WebhookLogRecord)
async def get_webhook_log(log_id: str) -> WebhookLogRecord:
    record = await webhook_log_store.get_log(log_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Webhook log {log_id} not found")
    return record


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics() -> AnalyticsResponse:
    data = await analytics_store.get_global_analytics()
    data["activeReviews"] = review_orchestrator.active_reviews
    return AnalyticsResponse(data=data)


@router.get("/analytics/reviews", response_model=AnalyticsResponse)
async def get_recent_reviews(limit: int = Query(10, ge=1, le=100)) -> AnalyticsResponse:
    reviews = await analytics_store.get_recent_reviews(limit)
    return AnalyticsResponse(data={"reviews": [review_summary(r) for r in reviews]})


@router.get("/analytics/users", response_model=AnalyticsResponse)
async def get_user_totals() -> AnalyticsResponse:
    totals = await analytics_store.get_global_analytics()
    users, reviews = totals["totalUsers"], totals["totalReviews"]
    return AnalyticsResponse(data={
        "totalUsers": users,
        "totalReviews": reviews,
        "averageReviewsPerUser": round(reviews / users) if users else 0,
    })


@router.get("/analytics/user/{user_id}", response_model=AnalyticsResponse)
async def get_user_analytics(user_id: str) -> AnalyticsResponse:
    stats = await analytics_store.get_user_stats(user_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="User not found")
    return AnalyticsResponse(data=stats)


@router.get("/analytics/dashboard", response_model=AnalyticsResponse)
async def get_dashboard() -> AnalyticsResponse:
    """Global analytics, webhook counters, recent reviews and bot identity in one payload."""
    stats = await webhook_log_store.get_stats()
    recent = await analytics_store.get_recent_reviews(5)
    return AnalyticsResponse(data={
        "global": await analytics_store.get_global_analytics(),
        "webhooks": stats.model_dump(),
        "recentActivity": [review_summary(r) for r in recent],
        "installations": await github_factory.count_installations(),
        "bot": {
            "status": "running",
            "uptime": uptime_seconds(),
            "models": {
                "default": settings.selected_model,
                "analysis": settings.analysis_model,
                "comment": settings.comment_model,
            },
        },
    })


@router.get("/models")
async def get_models():
    """Models used by each review stage."""
    return {
        "analysis_model": settings.analysis_model,
        "comment_model": settings.comment_model,
        "selected_model": settings.selected_model,
    }


@router.get("/status")
async def get_status():
    """Service status: auth mode, bot identity, in-flight reviews and Redis reachability."""
    try:
        await redis_client.ping()
        redis_status = "connected"
    except (RedisConnectionError, RedisError) as e:
        logger.warning(f"Redis ping failed: {e}")
        redis_status = "disconnected"

    return {
        "status": "running",
        "auth_mode": github_factory.auth_mode,
        "bot_username": settings.bot_username,
        "active_reviews": review_orchestrator.active_reviews,
        "redis": redis_status,
    }


@router.get("/status/uptime")
async def get_uptime():
    """Process uptime, bot configuration and webhook success rate."""
    stats = await webhook_log_store.get_stats()
    recent = await webhook_log_store.get_logs(limit=1)
    seconds = uptime_seconds()
    now = datetime.now(timezone.utc)

    return {
        "bot": {
            "status": "running",
            "uptime": {
                "seconds": seconds,
                "formatted": format_uptime(seconds),
                "started": (now - timedelta(seconds=seconds)).isoformat(),
                "lastUpdated": now.isoformat(),
            },
            "configuration": {
                "authMode": github_factory.auth_mode,
                "githubAppId": settings.github_app_id,
                "botUsername": settings.bot_username,
                "aiApi": settings.ai_api,
                "model": settings.model_id,
            },
            "lastActivity": recent[0].timestamp.isoformat() if recent else None,
            "pythonVersion": platform.python_version(),
            "platform": platform.system().lower(),
        },
        "webhooks": {
            **stats.model_dump(),
            "successRate": round(stats.completed / stats.total * 100) if stats.total else 0,
        },
        "system": {
            "timestamp": now.isoformat(),
            "pid": os.getpid(),
        },
    }


@router.get("/troubleshoot")
async def troubleshoot():
    """Check configuration and recent webhook deliveries for common setup problems."""
    issues = []
    recommendations = []

    auth_mode = github_factory.auth_mode
    has_app = bool(settings.github_app_id and settings.github_private_key)
    has_pat = bool(settings.github_token)
    has_ai = bool(settings.ai_api and settings.ai_key)

    if not has_app and not has_pat:
        issues.append("No GitHub authentication configured")
        recommendations.append(
            "Set GITHUB_APP_ID + GITHUB_PRIVATE_KEY for a GitHub App (recommended) "
            "or GITHUB_TOKEN for a personal access token"
        )

    if not has_ai:
        issues.append("AI API configuration missing")
        recommendations.append("Set AI_API and AI_KEY environment variables")

    stats = await webhook_log_store.get_stats()
    logs = await webhook_log_store.get_logs(limit=50)

    recent_errors = [log for log in logs if log.status == WebhookStatus.ERROR][:5]
    missing_installation = sum(1 for log in logs if log.error and "installation id" in log.error.lower())

    if missing_installation:
        issues.append(f"{missing_installation} webhook(s) failed due to missing installation ID")
        recommendations.append("Install your GitHub App on the target repository")

    if recent_errors:
        issues.append(f"{len(recent_errors)} recent webhook error(s)")
        recommendations.append("Check webhook logs for detailed error information")

    mention = f"@{settings.bot_username}".lower()
    bot_mentions = sum(1 for log in logs if mention in log.comment.lower())
    if bot_mentions == 0 and stats.total > 0:
        issues.append("No bot mentions found in webhook logs")
        recommendations.append(f"Make sure to mention @{settings.bot_username} in your PR comments")

    return {
        "status": "issues_found" if issues else "healthy",
        "issues": issues,
        "recommendations": recommendations,
        "stats": {
            "totalWebhooks": stats.total,
            "errors": stats.error,
            "completed": stats.completed,
            "botMentions": bot_mentions,
        },
        "configuration": {
            "authMode": auth_mode,
            "hasGitHubApp": has_app,
            "hasGitHubPAT": has_pat,
            "hasAI": has_ai,
            "botUsername": settings.bot_username,
        },
    }
