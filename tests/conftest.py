"""
Shared test configuration.

Settings are instantiated at import time, so the required variables must be
present before any ``app`` module is imported.
"""

import os

os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("AI_API", "https://ai.example.test")
os.environ.setdefault("AI_KEY", "test_key")
