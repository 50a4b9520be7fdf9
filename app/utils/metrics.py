"""
Metrics collection and emission for observability.

This module provides metrics tracking for:
- Review run duration
- Files analyzed and skipped in Stage 1
- Characters of patch text analyzed
- Outbound API call counts and latency (GitHub, AI provider)
"""

import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from app.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class ReviewMetrics:
    """
    Collects metrics during one review orchestration run.

    Tracks:
    - Execution start/end time
    - Files analyzed / skipped
    - Characters analyzed
    - API call counts and latency
    """

    def __init__(self, owner: str, repo: str, pr_number: int):
        self.owner = owner
        self.repo = repo
        self.pr_number = pr_number

        # Timing metrics
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        # Analysis metrics
        self.files_analyzed: int = 0
        self.files_skipped: int = 0
        self.chars_analyzed: int = 0

        # API metrics
        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, list[float]] = {}

        self.status: str = "running"
        self.error_message: Optional[str] = None

    def start(self) -> None:
        """Mark review start."""
        self.start_time = datetime.now(timezone.utc)
        self.status = "running"

    def complete(self, status: str = "completed", error_message: Optional[str] = None) -> None:
        """
        Mark review completion.

        Args:
            status: Final status ('completed' or 'error')
            error_message: Error message if failed
        """
        self.end_time = datetime.now(timezone.utc)
        self.status = status
        self.error_message = error_message

        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        logger.info(
            f"Review metrics for {self.owner}/{self.repo}#{self.pr_number}",
            extra={"owner": self.owner, "repo": self.repo, **self.get_metrics_summary()}
        )

    def record_file_analyzed(self, skipped: bool = False) -> None:
        """Count one Stage-1 file, successful or replaced by a placeholder."""
        self.files_analyzed += 1
        if skipped:
            self.files_skipped += 1

    def record_chars_analyzed(self, count: int) -> None:
        self.chars_analyzed = count

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """
        Record API call and latency.

        Args:
            service: Service name (e.g., 'github', 'openai')
            duration_ms: Call duration in milliseconds
        """
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get summary of collected metrics.

        Returns:
            Dictionary of metrics
        """
        summary = {
            "repository": f"{self.owner}/{self.repo}",
            "pr_number": self.pr_number,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "files_analyzed": self.files_analyzed,
            "files_skipped": self.files_skipped,
            "chars_analyzed": self.chars_analyzed,
            "api_calls": self.api_calls,
        }

        if self.api_latencies:
            latency_stats = {}
            for service, latencies in self.api_latencies.items():
                if latencies:
                    latency_stats[service] = {
                        "count": len(latencies),
                        "min_ms": round(min(latencies), 2),
                        "max_ms": round(max(latencies), 2),
                        "avg_ms": round(sum(latencies) / len(latencies), 2),
                    }
            summary["api_latencies"] = latency_stats

        if self.error_message:
            summary["error_message"] = self.error_message

        return summary


@asynccontextmanager
async def track_api_call(
    metrics_collector: Optional[ReviewMetrics],
    service: str,
    logger_adapter,
    endpoint: str = "",
    method: str = ""
):
    """
    Context manager to track API call timing.

    Usage:
        async with track_api_call(metrics, "github", logger, "pulls.get", "GET"):
            pr = await github.get_pull_request(owner, repo, number)
    """
    start_time = time.time()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000

        if metrics_collector:
            metrics_collector.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )
