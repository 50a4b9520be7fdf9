"""Data models for the GitHub PR review bot."""

from .api_response import AnalyticsResponse, WebhookLogsResponse, WebhookResponse
from .review import (
    ChangedFile,
    FileAnalysis,
    PullRequestInfo,
    PullRequestSnapshot,
    ReviewRecord,
    ReviewRequest,
)
from .webhook_log import WebhookLogRecord, WebhookStats, WebhookStatus

__all__ = [
    # Review pipeline models
    "ReviewRequest",
    "ChangedFile",
    "PullRequestInfo",
    "PullRequestSnapshot",
    "FileAnalysis",
    "ReviewRecord",
    # Bookkeeping models
    "WebhookStatus",
    "WebhookLogRecord",
    "WebhookStats",
    # API response models
    "WebhookResponse",
    "WebhookLogsResponse",
    "AnalyticsResponse",
]
