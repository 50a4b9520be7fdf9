"""
Unit tests for configuration management.
"""

import pytest
from unittest.mock import patch
import os

from pydantic import ValidationError

from app.config import Settings


REQUIRED_ENV = {
    'REDIS_URL': 'redis://localhost:6379/0',
    'AI_API': 'https://ai.example.test',
    'AI_KEY': 'test_key',
}


def test_settings_loads_from_environment():
    """Test that settings can be loaded from environment variables."""
    with patch.dict(os.environ, {
        **REQUIRED_ENV,
        'BOT_USERNAME': 'review-bot',
        'COMMENT_MODEL': 'big-model',
        'GITHUB_TOKEN': 'ghp_test',
        'WEBHOOK_SECRET': 'test_secret',
        'LOG_LEVEL': 'DEBUG',
        'LOCK_TTL_SECONDS': '120',
    }):
        settings = Settings(_env_file=None)

        assert settings.redis_url == 'redis://localhost:6379/0'
        assert settings.ai_api == 'https://ai.example.test'
        assert settings.ai_key == 'test_key'
        assert settings.bot_username == 'review-bot'
        assert settings.comment_model == 'big-model'
        assert settings.github_token == 'ghp_test'
        assert settings.webhook_secret == 'test_secret'
        assert settings.log_level == 'DEBUG'
        assert settings.lock_ttl_seconds == 120


def test_settings_has_default_values():
    """Test that settings have appropriate default values."""
    with patch.dict(os.environ, REQUIRED_ENV, clear=True):
        settings = Settings(_env_file=None)

        assert settings.bot_username == 'Xibe-review'
        assert settings.log_level == 'INFO'
        assert settings.lock_ttl_seconds == 600
        assert settings.processed_marker_ttl_seconds == 86400
        assert settings.recent_comment_ttl_seconds == 300
        assert settings.max_patch_chars == 8000
        assert settings.max_mentions_per_user == 2
        assert settings.webhook_log_ttl_seconds == 604800
        assert settings.max_webhook_logs == 1000
        assert settings.fallback_log_size == 100
        assert settings.review_ttl_seconds == 2592000
        assert settings.webhook_secret is None


def test_selected_model_prefers_model_id():
    """Test the model recorded in analytics."""
    with patch.dict(os.environ, REQUIRED_ENV, clear=True):
        assert Settings(_env_file=None, analysis_model='small').selected_model == 'small'
        assert Settings(_env_file=None, model_id='pinned').selected_model == 'pinned'


def test_required_settings_missing():
    """Test that missing required settings fail validation."""
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
