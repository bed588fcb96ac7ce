"""Built-in alert rules loaded at service start-up."""

from __future__ import annotations

from pulsealert.core.config import Settings
from pulsealert.core.models.alerting import (
    Aggregation,
    AlertSeverity,
    ChannelKind,
    ConditionKind,
    ConditionOperator,
)
from pulsealert.monitoring.alerting.models import AlertChannel, AlertCondition, AlertRule


def default_rules(settings: Settings) -> list[AlertRule]:
    """Return the default rule set, all routed to the configured webhook."""

    def webhook() -> list[AlertChannel]:
        return [AlertChannel(kind=ChannelKind.WEBHOOK, config={"url": settings.alert_webhook_url})]

    return [
        AlertRule(
            id="high_error_rate",
            name="High Error Rate",
            condition=AlertCondition(
                kind=ConditionKind.ERROR_RATE,
                metric="error_count",
                operator=ConditionOperator.GT,
                value=5,  # percent
                window_minutes=5,
            ),
            severity=AlertSeverity.HIGH,
            throttle_minutes=15,
            channels=webhook(),
        ),
        AlertRule(
            id="high_response_time",
            name="High Response Time",
            condition=AlertCondition(
                kind=ConditionKind.THRESHOLD,
                metric="response_time",
                operator=ConditionOperator.GT,
                value=2000,  # ms
                window_minutes=10,
                aggregation=Aggregation.AVG,
            ),
            severity=AlertSeverity.MEDIUM,
            throttle_minutes=30,
            channels=webhook(),
        ),
        AlertRule(
            id="db_connection_errors",
            name="Database Connection Errors",
            condition=AlertCondition(
                kind=ConditionKind.THRESHOLD,
                metric="db_errors",
                operator=ConditionOperator.GT,
                value=10,
                window_minutes=5,
                aggregation=Aggregation.COUNT,
            ),
            severity=AlertSeverity.CRITICAL,
            throttle_minutes=5,
            channels=webhook(),
        ),
    ]
