"""
Chat webhook notification sink.
"""

import logging
from typing import Optional

import httpx

from controller.src.config import get_settings

logger = logging.getLogger(__name__)

class WebhookNotifier:
    """Posts notifications as JSON. Delivery problems are logged, never raised."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.webhook_url = settings.notify_webhook_url if webhook_url is None else webhook_url
        self.timeout = timeout or settings.notify_timeout

    async def notify(self, channel: str, severity: str, message: str) -> None:
        if not self.webhook_url:
            logger.info(f"[{channel}] {severity}: {message}")
            return

        payload = {
            "channel": channel,
            "severity": severity,
            "text": message,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to notify {channel}: {e}")
