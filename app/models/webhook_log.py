"""Webhook bookkeeping data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class WebhookStatus(str, Enum):
    """Lifecycle of a webhook delivery record."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    IGNORED = "ignored"


class WebhookLogRecord(BaseModel):
    """Append-only record of one webhook delivery and what was done with it."""

    id: str
    timestamp: datetime
    event: Optional[str] = None
    delivery_id: Optional[str] = None
    installation_id: Optional[int] = None
    repository: str = "Unknown"
    user: str = "Unknown"
    comment: str = ""
    is_pr: bool = False
    pr_number: Optional[int] = None
    status: WebhookStatus = WebhookStatus.PROCESSING
    processing_time_ms: Optional[int] = None
    error: Optional[str] = None
    actions: List[str] = Field(default_factory=list)


class WebhookStats(BaseModel):
    """Aggregate counters over all webhook records."""

    total: int = 0
    processing: int = 0
    completed: int = 0
    error: int = 0
    ignored: int = 0
