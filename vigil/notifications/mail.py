"""Mail notifier: one plain-text report per failure over SMTP."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Callable

from vigil.health.events import FailureEvent
from vigil.notifications.templates import render
from vigil.targets.registry import MailConfig

logger = logging.getLogger(__name__)

SMTPFactory = Callable[..., smtplib.SMTP]


class MailNotifier:
    """Mails the rendered report to the configured recipients.

    A fresh SMTP connection is made per message.
    """

    def __init__(
        self,
        config: MailConfig,
        smtp_factory: SMTPFactory = smtplib.SMTP,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self._smtp_factory = smtp_factory
        self.timeout = timeout
        logger.info(
            "Email server: %s:%d as %s -> %s",
            config.server, config.port, config.username or "(anonymous)", ", ".join(config.recipients),
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def build_message(self, event: FailureEvent) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.config.sender or self.config.username
        msg["To"] = ", ".join(self.config.recipients)
        msg["Subject"] = self.config.subject
        msg.set_content(render(event))
        return msg

    async def deliver(self, event: FailureEvent) -> bool:
        if not self.enabled:
            return False
        msg = self.build_message(event)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.critical("Could not send mail: %s", e)
            return False
        return True

    def _send(self, msg: EmailMessage) -> None:
        with self._smtp_factory(self.config.server, self.config.port, timeout=self.timeout) as smtp:
            if self.config.starttls:
                smtp.starttls()
            if self.config.username:
                smtp.login(self.config.username, self.config.password)
            smtp.send_message(msg)
