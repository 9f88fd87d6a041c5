"""Failure notifications: mail, Slack, Telegram and Discord.

The scheduler hands every failure event to a ``Notifier``. Delivery errors
are logged and reported as ``False``; they never propagate into a sweep and
are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol

import httpx

from vigil.health.events import EventKind, FailureEvent
from vigil.notifications.templates import render, subject

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def deliver(self, event: FailureEvent) -> bool: ...


class NotifyLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# Emoji/icon mapping
_EMOJI = {
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
}

_LEVELS = {
    EventKind.HOST_UNREACHABLE: NotifyLevel.CRITICAL,
    EventKind.PROCESS_MISSING: NotifyLevel.CRITICAL,
    EventKind.REMOTE_SESSION_ERROR: NotifyLevel.WARNING,
}


def level_for(event: FailureEvent) -> NotifyLevel:
    return _LEVELS[event.kind]


class LogNotifier:
    """Writes the rendered report to a logger. Always succeeds."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    async def deliver(self, event: FailureEvent) -> bool:
        self._log.warning("%s\n%s", subject(event), render(event).strip())
        return True


class WebhookNotifier:
    """Slack / Telegram webhooks via httpx async."""

    def __init__(
        self,
        slack_webhook: str = "",
        telegram_token: str = "",
        telegram_chat_id: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.slack_webhook = slack_webhook
        self.telegram_token = telegram_token
        self.telegram_chat_id = telegram_chat_id
        self.timeout = timeout
        self._transport = transport

    @property
    def is_enabled(self) -> bool:
        return bool(self.slack_webhook or (self.telegram_token and self.telegram_chat_id))

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.is_enabled,
            "slack_configured": bool(self.slack_webhook),
            "telegram_configured": bool(self.telegram_token and self.telegram_chat_id),
        }

    async def deliver(self, event: FailureEvent) -> bool:
        if not self.is_enabled:
            return False
        level = level_for(event)
        text = (
            f"{_EMOJI[level]} *{subject(event)}*\n"
            f"```{render(event).strip()}```\n"
        )

        tasks = []
        if self.slack_webhook:
            tasks.append(self._send_slack(text))
        if self.telegram_token and self.telegram_chat_id:
            tasks.append(self._send_telegram(text))
        results = await asyncio.gather(*tasks)
        return all(results)

    async def _send_slack(self, text: str) -> bool:
        """POST to Slack incoming webhook."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.slack_webhook,
                    json={"text": text, "mrkdwn": True},
                )
            if resp.status_code != 200:
                logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
                return False
            return True
        except httpx.HTTPError as exc:
            logger.warning("Slack notification failed: %s", exc)
            return False

    async def _send_telegram(self, text: str) -> bool:
        """POST to Telegram Bot API."""
        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json={
                        "chat_id": self.telegram_chat_id,
                        "text": text,
                        "parse_mode": "Markdown",
                    },
                )
            if resp.status_code != 200:
                logger.warning("Telegram API returned %d: %s", resp.status_code, resp.text[:200])
                return False
            return True
        except httpx.HTTPError as exc:
            logger.warning("Telegram notification failed: %s", exc)
            return False


class NotificationManager:
    """Fans each event out to every configured channel.

    ``deliver`` is ``True`` only when every channel accepted the event. A
    channel that raises counts as a failed delivery.
    """

    def __init__(self, channels: Sequence[Notifier] = (), log: logging.Logger | None = None) -> None:
        self.channels = list(channels)
        self._log = log or logger

    async def deliver(self, event: FailureEvent) -> bool:
        ok = True
        for channel in self.channels:
            name = type(channel).__name__
            try:
                delivered = await channel.deliver(event)
            except Exception:
                self._log.exception("%s raised while delivering %s", name, event.kind.value)
                delivered = False
            if not delivered:
                self._log.warning("%s did not deliver %s", name, event.kind.value)
                ok = False
        return ok

    async def close(self) -> None:
        for channel in self.channels:
            close = getattr(channel, "close", None)
            if close is not None:
                await close()
