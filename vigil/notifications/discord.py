"""Discord webhook notifier.

Push-only: just an httpx POST to a webhook URL, no bot gateway.
"""

from __future__ import annotations

import logging

import httpx

from vigil.health.events import FailureEvent
from vigil.notifications.templates import render, subject

logger = logging.getLogger(__name__)

# Discord rejects message content above 2000 characters
_MAX_CONTENT = 2000


class DiscordNotifier:
    """Sends failure reports to a Discord webhook."""

    def __init__(
        self,
        webhook_url: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._enabled = bool(self.webhook_url)

        if self._enabled:
            logger.info("Discord notifier enabled (webhook)")
        else:
            logger.info("Discord notifier disabled (no webhook_url)")

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send_message(self, text: str) -> bool:
        """Send a text message to the configured Discord webhook."""
        if not self._enabled:
            logger.debug("Discord: skipping send (not configured)")
            return False

        payload = {"content": text[:_MAX_CONTENT]}

        try:
            resp = await self._client.post(self.webhook_url, json=payload)
        except httpx.HTTPError:
            logger.exception("Discord send error")
            return False
        if resp.status_code in (200, 204):
            logger.debug("Discord: message sent")
            return True
        logger.warning("Discord send failed: %d %s", resp.status_code, resp.text[:200])
        return False

    async def deliver(self, event: FailureEvent) -> bool:
        text = f"🚨 **{subject(event)}**\n```{render(event).strip()}```"
        return await self.send_message(text)

    async def close(self) -> None:
        await self._client.aclose()
