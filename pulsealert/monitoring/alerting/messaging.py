"""Messaging collaborators used by the email, Slack, and SMS channels.

Provider adapters live outside this package; they only need to satisfy
the ``Messenger`` protocol. ``LoggingMessenger`` is the default and just
records each send in the log.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Messenger(Protocol):
    """Outbound messaging provider. Each method may raise on failure."""

    async def send_email(self, to: list[str], subject: str, body: str) -> None: ...

    async def send_slack(self, channel: str, message: str) -> None: ...

    async def send_sms(self, to: str, message: str) -> None: ...


class LoggingMessenger:
    """Messenger that logs messages instead of sending them."""

    async def send_email(self, to: list[str], subject: str, body: str) -> None:
        logger.info("Email alert sent to=%s subject=%s", ",".join(to), subject)

    async def send_slack(self, channel: str, message: str) -> None:
        logger.info("Slack alert sent channel=%s", channel)

    async def send_sms(self, to: str, message: str) -> None:
        logger.info("SMS alert sent to=%s", to)
