"""Tests for the notification fan-out: webhook wire contract and channel isolation."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from pulsealert.core.models.alerting import AlertSeverity, ChannelKind
from pulsealert.monitoring.alerting.errors import DeliveryError
from pulsealert.monitoring.alerting.models import Alert, AlertChannel
from pulsealert.monitoring.alerting.notifications import (
    NotificationDispatcher,
    format_message,
    webhook_payload,
)

WEBHOOK_URL = "https://hooks.example.com/alerts"


def _make_alert() -> Alert:
    return Alert(
        id="alert-123",
        rule_id="high_response_time",
        severity=AlertSeverity.MEDIUM,
        title="High Response Time Alert",
        description="Alert triggered for rule: High Response Time",
        timestamp=datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC),
        metadata={"rule": "High Response Time", "value": 2500.0},
    )


def _make_response(status_code: int) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    return response


def _mock_http_client(mock_cls: MagicMock, response: MagicMock | None = None, error: Exception | None = None) -> AsyncMock:
    mock_http = AsyncMock()
    mock_http.__aenter__ = AsyncMock(return_value=mock_http)
    mock_http.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_http.post = AsyncMock(side_effect=error)
    else:
        mock_http.post = AsyncMock(return_value=response)
    mock_cls.return_value = mock_http
    return mock_http


class RecordingMessenger:
    """Messenger that records sends and can be told to fail per kind."""

    def __init__(self, fail: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.emails: list[tuple[list[str], str, str]] = []
        self.slack: list[tuple[str, str]] = []
        self.sms: list[tuple[str, str]] = []

    async def send_email(self, to: list[str], subject: str, body: str) -> None:
        if "email" in self.fail:
            raise RuntimeError("SMTP relay refused connection")
        self.emails.append((to, subject, body))

    async def send_slack(self, channel: str, message: str) -> None:
        if "slack" in self.fail:
            raise RuntimeError("Slack API returned 500")
        self.slack.append((channel, message))

    async def send_sms(self, to: str, message: str) -> None:
        if "sms" in self.fail:
            raise RuntimeError("SMS gateway unavailable")
        self.sms.append((to, message))


# ============================================================
# Webhook wire contract
# ============================================================


class TestWebhookPayload:
    def test_envelope_shape(self) -> None:
        payload = webhook_payload(_make_alert())

        assert set(payload) == {"alert"}
        body = payload["alert"]
        assert body == {
            "id": "alert-123",
            "severity": "medium",
            "title": "High Response Time Alert",
            "description": "Alert triggered for rule: High Response Time",
            "timestamp": "2026-03-02T12:00:00+00:00",
            "metadata": {"rule": "High Response Time", "value": 2500.0},
        }

    def test_message_includes_severity_and_id(self) -> None:
        message = format_message(_make_alert())
        assert message.startswith("[MEDIUM] High Response Time Alert")
        assert "alert-123" in message
        assert "Value: 2500.0" in message


@pytest.mark.asyncio
class TestWebhookDelivery:
    async def test_posts_json_with_configured_headers(self) -> None:
        dispatcher = NotificationDispatcher()
        channel = AlertChannel(
            kind=ChannelKind.WEBHOOK,
            config={"url": WEBHOOK_URL, "headers": {"X-Api-Key": "secret"}},
        )

        with patch("pulsealert.monitoring.alerting.notifications.httpx.AsyncClient") as mock_cls:
            mock_http = _mock_http_client(mock_cls, _make_response(200))
            report = await dispatcher.dispatch(_make_alert(), [channel])

        assert report.delivered_count == 1
        call = mock_http.post.call_args
        assert call.args[0] == WEBHOOK_URL
        assert call.kwargs["headers"] == {"Content-Type": "application/json", "X-Api-Key": "secret"}
        assert call.kwargs["json"]["alert"]["id"] == "alert-123"

    async def test_non_2xx_is_delivery_failure(self) -> None:
        dispatcher = NotificationDispatcher()
        channel = AlertChannel(kind=ChannelKind.WEBHOOK, config={"url": WEBHOOK_URL})

        with patch("pulsealert.monitoring.alerting.notifications.httpx.AsyncClient") as mock_cls:
            _mock_http_client(mock_cls, _make_response(503))
            with pytest.raises(DeliveryError, match="503"):
                await dispatcher.deliver(_make_alert(), channel)

    async def test_missing_url_is_delivery_failure(self) -> None:
        dispatcher = NotificationDispatcher()

        with pytest.raises(DeliveryError) as exc_info:
            await dispatcher.deliver(_make_alert(), AlertChannel(kind=ChannelKind.WEBHOOK))

        assert exc_info.value.channel_kind == ChannelKind.WEBHOOK

    async def test_shared_client_used_when_given(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = NotificationDispatcher(http_client=client)
            channel = AlertChannel(kind=ChannelKind.WEBHOOK, config={"url": WEBHOOK_URL})
            report = await dispatcher.dispatch(_make_alert(), [channel])

        assert report.delivered_count == 1
        assert seen[0]["alert"]["severity"] == "medium"


# ============================================================
# Messaging channels
# ============================================================


@pytest.mark.asyncio
class TestMessagingChannels:
    async def test_email_slack_sms_payloads(self) -> None:
        messenger = RecordingMessenger()
        dispatcher = NotificationDispatcher(messenger)
        channels = [
            AlertChannel(kind=ChannelKind.EMAIL, config={"to": "oncall@example.com"}),
            AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#alerts"}),
            AlertChannel(kind=ChannelKind.SMS, config={"to": "+15550100"}),
        ]

        report = await dispatcher.dispatch(_make_alert(), channels)

        assert report.delivered_count == 3
        to, subject, body = messenger.emails[0]
        assert to == ["oncall@example.com"]
        assert subject == "[MEDIUM] High Response Time Alert"
        assert "alert-123" in body
        assert messenger.slack[0][0] == "#alerts"
        assert messenger.sms[0] == ("+15550100", "[MEDIUM] High Response Time Alert (alert-123)")

    async def test_missing_recipient_fails_only_that_channel(self) -> None:
        messenger = RecordingMessenger()
        dispatcher = NotificationDispatcher(messenger)
        channels = [
            AlertChannel(kind=ChannelKind.EMAIL, config={}),
            AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#alerts"}),
        ]

        report = await dispatcher.dispatch(_make_alert(), channels)

        assert [d.delivered for d in report.deliveries] == [False, True]
        assert "'to'" in report.deliveries[0].error


# ============================================================
# Fan-out isolation
# ============================================================


@pytest.mark.asyncio
class TestChannelIsolation:
    async def test_failing_channel_does_not_block_sibling(self, caplog: pytest.LogCaptureFixture) -> None:
        """Channels [A (throws), B (succeeds)]: B is delivered once, A is logged."""
        messenger = RecordingMessenger(fail={"email"})
        dispatcher = NotificationDispatcher(messenger)
        channels = [
            AlertChannel(kind=ChannelKind.EMAIL, config={"to": "oncall@example.com"}),
            AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#alerts"}),
        ]

        with caplog.at_level(logging.ERROR, logger="pulsealert.monitoring.alerting.notifications"):
            report = await dispatcher.dispatch(_make_alert(), channels)

        assert len(messenger.slack) == 1
        assert report.delivered_count == 1
        assert report.failed_count == 1
        assert report.any_delivered is True
        assert "rule_id=high_response_time" in caplog.text
        assert "alert_id=alert-123" in caplog.text
        assert "channel_kind=email" in caplog.text

    async def test_unreachable_webhook_and_working_slack(self, caplog: pytest.LogCaptureFixture) -> None:
        """Connection refused on the webhook is logged; Slack is still sent."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        messenger = RecordingMessenger()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = NotificationDispatcher(messenger, http_client=client)
            channels = [
                AlertChannel(kind=ChannelKind.WEBHOOK, config={"url": "http://127.0.0.1:9/unreachable"}),
                AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#alerts"}),
            ]
            with caplog.at_level(logging.ERROR, logger="pulsealert.monitoring.alerting.notifications"):
                report = await dispatcher.dispatch(_make_alert(), channels)

        assert len(messenger.slack) == 1
        webhook, slack = report.deliveries
        assert webhook.channel_kind == "webhook" and webhook.delivered is False
        assert "Connection refused" in webhook.error
        assert slack.delivered is True
        assert "channel_kind=webhook" in caplog.text

    async def test_disabled_channels_skipped_silently(self) -> None:
        messenger = RecordingMessenger()
        dispatcher = NotificationDispatcher(messenger)
        channels = [
            AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#muted"}, enabled=False),
            AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#alerts"}),
        ]

        report = await dispatcher.dispatch(_make_alert(), channels)

        assert [c for c, _ in messenger.slack] == ["#alerts"]
        assert len(report.deliveries) == 1

    async def test_no_enabled_channels_yields_empty_report(self) -> None:
        report = await NotificationDispatcher().dispatch(_make_alert(), [])
        assert report.deliveries == []
        assert report.any_delivered is False

    async def test_slow_channel_times_out_without_blocking_others(self) -> None:
        class SlowSlackMessenger(RecordingMessenger):
            async def send_slack(self, channel: str, message: str) -> None:
                await asyncio.sleep(5)

        messenger = SlowSlackMessenger()
        dispatcher = NotificationDispatcher(messenger, timeout=0.05)
        channels = [
            AlertChannel(kind=ChannelKind.SLACK, config={"channel": "#alerts"}),
            AlertChannel(kind=ChannelKind.SMS, config={"to": "+15550100"}),
        ]

        report = await dispatcher.dispatch(_make_alert(), channels)

        slack, sms = report.deliveries
        assert slack.delivered is False and slack.error == "timeout"
        assert sms.delivered is True
