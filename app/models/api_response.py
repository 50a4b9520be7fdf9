"""API response data models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .webhook_log import WebhookLogRecord, WebhookStats


class WebhookResponse(BaseModel):
    """Response from webhook handler."""

    status: str
    message: str
    log_id: Optional[str] = None


class WebhookLogsResponse(BaseModel):
    """Recent webhook records plus the aggregate counters."""

    logs: List[WebhookLogRecord]
    stats: WebhookStats


class AnalyticsResponse(BaseModel):
    """Envelope used by the analytics endpoints."""

    success: bool = True
    data: Dict[str, Any]
