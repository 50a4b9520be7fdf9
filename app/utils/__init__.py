"""
Utility modules for the PR review bot.
"""

from app.utils.logging import (
    get_logger,
    setup_logging,
    log_webhook_event,
    log_stage_transition,
    log_api_call,
    log_error_with_context,
)
from app.utils.mentions import (
    is_bot_mentioned,
    is_from_bot_self,
    should_trigger_review,
    limit_mentions,
)
from app.utils.metrics import (
    ReviewMetrics,
    track_api_call,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_webhook_event",
    "log_stage_transition",
    "log_api_call",
    "log_error_with_context",
    "is_bot_mentioned",
    "is_from_bot_self",
    "should_trigger_review",
    "limit_mentions",
    "ReviewMetrics",
    "track_api_call",
]
