"""
Application configuration management.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis
    redis_url: str

    # AI provider (OpenAI-compatible endpoint)
    ai_api: str
    ai_key: str
    model_id: Optional[str] = None
    analysis_model: str = "your_analysis_model"  # Stage 1: per-file analysis
    comment_model: str = "your_comment_model"    # Stage 2: review synthesis

    # GitHub
    bot_username: str = "Xibe-review"
    github_app_id: Optional[str] = None
    github_private_key: Optional[str] = None
    github_token: Optional[str] = None

    # Webhook
    webhook_secret: Optional[str] = None  # Signature check is skipped when unset

    # Review pipeline
    lock_ttl_seconds: int = 600
    processed_marker_ttl_seconds: int = 86400
    recent_comment_ttl_seconds: int = 300
    max_patch_chars: int = 8000
    max_mentions_per_user: int = 2

    # Bookkeeping
    webhook_log_ttl_seconds: int = 86400 * 7
    max_webhook_logs: int = 1000
    fallback_log_size: int = 100
    review_ttl_seconds: int = 86400 * 30

    # Application
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def selected_model(self) -> str:
        """Model name recorded against a review in analytics."""
        return self.model_id or self.analysis_model


# Global settings instance
settings = Settings()
