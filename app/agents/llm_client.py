"""
Client for the OpenAI-compatible chat completion endpoint.
"""

from typing import Optional

from openai import AsyncOpenAI

from app.utils.logging import get_logger
from app.utils.metrics import ReviewMetrics, track_api_call

logger = get_logger(__name__)


class LLMClient:
    """Wrapper for the AI provider's chat completion API."""

    def __init__(self, settings=None, client: Optional[AsyncOpenAI] = None):
        """Initialize the client from configuration."""
        if settings is None:
            from app.config import settings as app_settings
            settings = app_settings

        if client is None:
            client = AsyncOpenAI(
                api_key=settings.ai_key,
                base_url=f"{settings.ai_api.rstrip('/')}/v1",
            )
            logger.info(f"Initialized AI client for {settings.ai_api}")

        self.client = client

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        metrics: Optional[ReviewMetrics] = None,
    ) -> str:
        """
        Run one chat completion and return the first choice's text.

        Provider errors propagate to the caller.
        """
        async with track_api_call(metrics, "openai", logger, endpoint="chat.completions", method="POST"):
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
