"""Notification fan-out: deliver a triggered alert to every enabled channel.

Deliveries run concurrently and are fully isolated from each other. A
failure on one channel is logged with the alert id and channel kind and
recorded in the ``DispatchReport``; it never reaches sibling channels or
the caller. There is no retry here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from pulsealert.core.models.alerting import ChannelKind
from pulsealert.monitoring.alerting.errors import DeliveryError
from pulsealert.monitoring.alerting.messaging import LoggingMessenger, Messenger
from pulsealert.monitoring.alerting.models import Alert, AlertChannel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


@dataclass
class ChannelDelivery:
    """Outcome of one delivery attempt."""

    channel_kind: str
    delivered: bool
    error: str = ""


@dataclass
class DispatchReport:
    """Per-channel outcomes for one alert."""

    alert_id: str
    deliveries: list[ChannelDelivery] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(1 for d in self.deliveries if d.delivered)

    @property
    def failed_count(self) -> int:
        return sum(1 for d in self.deliveries if not d.delivered)

    @property
    def any_delivered(self) -> bool:
        return self.delivered_count > 0


def webhook_payload(alert: Alert) -> dict[str, Any]:
    """Build the JSON envelope POSTed to webhook channels."""
    return {
        "alert": {
            "id": alert.id,
            "severity": alert.severity.value,
            "title": alert.title,
            "description": alert.description,
            "timestamp": alert.timestamp.isoformat(),
            "metadata": alert.metadata,
        }
    }


def format_message(alert: Alert) -> str:
    """Plain-text rendering shared by email, Slack, and SMS."""
    lines = [
        f"[{alert.severity.value.upper()}] {alert.title}",
        alert.description,
        f"Alert ID: {alert.id}",
        f"Triggered at: {alert.timestamp.isoformat()}",
    ]
    value = alert.metadata.get("value")
    if value is not None:
        lines.append(f"Value: {value}")
    return "\n".join(line for line in lines if line)


class NotificationDispatcher:
    """Delivers alerts to webhook, email, Slack, and SMS channels.

    Args:
        messenger: Collaborator for email, Slack, and SMS.
        timeout: Per-channel delivery timeout in seconds.
        http_client: Shared httpx client for webhooks. When omitted a
            client is opened per webhook delivery.
    """

    def __init__(
        self,
        messenger: Messenger | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.messenger = messenger if messenger is not None else LoggingMessenger()
        self.timeout = timeout
        self._http_client = http_client

    async def dispatch(self, alert: Alert, channels: list[AlertChannel]) -> DispatchReport:
        """Deliver ``alert`` to every enabled channel concurrently.

        Args:
            alert: Alert to deliver.
            channels: The rule's channel list; disabled entries are skipped.

        Returns:
            DispatchReport with one entry per attempted channel.
        """
        enabled = [c for c in channels if c.enabled]
        report = DispatchReport(alert_id=alert.id)
        if not enabled:
            return report

        results = await asyncio.gather(*(self._deliver_isolated(alert, c) for c in enabled))
        report.deliveries.extend(results)

        logger.info(
            "Alert %s dispatched: %d delivered, %d failed",
            alert.id,
            report.delivered_count,
            report.failed_count,
        )
        return report

    async def _deliver_isolated(self, alert: Alert, channel: AlertChannel) -> ChannelDelivery:
        kind = channel.kind.value
        try:
            await asyncio.wait_for(self.deliver(alert, channel), self.timeout)
        except TimeoutError:
            logger.error(
                "Failed to send alert notification: rule_id=%s alert_id=%s channel_kind=%s error=timed out after %.1fs",
                alert.rule_id,
                alert.id,
                kind,
                self.timeout,
            )
            return ChannelDelivery(channel_kind=kind, delivered=False, error="timeout")
        except Exception as exc:
            logger.error(
                "Failed to send alert notification: rule_id=%s alert_id=%s channel_kind=%s error=%s",
                alert.rule_id,
                alert.id,
                kind,
                exc,
            )
            return ChannelDelivery(channel_kind=kind, delivered=False, error=str(exc))
        return ChannelDelivery(channel_kind=kind, delivered=True)

    async def deliver(self, alert: Alert, channel: AlertChannel) -> None:
        """Deliver to a single channel.

        Raises:
            DeliveryError: If the channel is misconfigured or delivery fails.
        """
        if channel.kind == ChannelKind.WEBHOOK:
            await self._send_webhook(alert, channel.config)
        elif channel.kind == ChannelKind.EMAIL:
            await self._send_email(alert, channel.config)
        elif channel.kind == ChannelKind.SLACK:
            await self._send_slack(alert, channel.config)
        elif channel.kind == ChannelKind.SMS:
            await self._send_sms(alert, channel.config)
        else:
            raise DeliveryError(alert.id, str(channel.kind), f"Unsupported alert channel type: {channel.kind}")

    async def _send_webhook(self, alert: Alert, config: dict[str, Any]) -> None:
        url = config.get("url")
        if not url:
            raise DeliveryError(alert.id, ChannelKind.WEBHOOK, "Webhook channel has no 'url' configured")

        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}
        payload = webhook_payload(alert)

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryError(alert.id, ChannelKind.WEBHOOK, f"Failed to send webhook alert: {exc}") from exc

        if not response.is_success:
            raise DeliveryError(
                alert.id,
                ChannelKind.WEBHOOK,
                f"Webhook request failed: {response.status_code}",
            )

        logger.info("Webhook alert sent: alert_id=%s url=%s status=%d", alert.id, url, response.status_code)

    async def _send_email(self, alert: Alert, config: dict[str, Any]) -> None:
        to = config.get("to")
        if not to:
            raise DeliveryError(alert.id, ChannelKind.EMAIL, "Email channel has no 'to' configured")
        recipients = [to] if isinstance(to, str) else list(to)
        subject = f"[{alert.severity.value.upper()}] {alert.title}"
        try:
            await self.messenger.send_email(recipients, subject, format_message(alert))
        except Exception as exc:
            raise DeliveryError(alert.id, ChannelKind.EMAIL, f"Failed to send email alert: {exc}") from exc

    async def _send_slack(self, alert: Alert, config: dict[str, Any]) -> None:
        channel = config.get("channel")
        if not channel:
            raise DeliveryError(alert.id, ChannelKind.SLACK, "Slack channel has no 'channel' configured")
        try:
            await self.messenger.send_slack(channel, format_message(alert))
        except Exception as exc:
            raise DeliveryError(alert.id, ChannelKind.SLACK, f"Failed to send Slack alert: {exc}") from exc

    async def _send_sms(self, alert: Alert, config: dict[str, Any]) -> None:
        to = config.get("to")
        if not to:
            raise DeliveryError(alert.id, ChannelKind.SMS, "SMS channel has no 'to' configured")
        message = f"[{alert.severity.value.upper()}] {alert.title} ({alert.id})"
        try:
            await self.messenger.send_sms(to, message)
        except Exception as exc:
            raise DeliveryError(alert.id, ChannelKind.SMS, f"Failed to send SMS alert: {exc}") from exc
