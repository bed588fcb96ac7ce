"""Data structures for alert rules, channels, and alert instances.

Enum values match the StrEnums in ``pulsealert.core.models.alerting`` so
that in-memory alerts and persisted ``AlertRecord`` rows share one
vocabulary.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pulsealert.core.models.alerting import (
    Aggregation,
    AlertSeverity,
    ChannelKind,
    ConditionKind,
    ConditionOperator,
)


@dataclass
class AlertCondition:
    """Condition evaluated against sampled metrics on every tick.

    Attributes:
        kind: How the scalar is computed (threshold, error_rate, anomaly).
        metric: Metric name. For error_rate this is the error counter.
        operator: Comparison applied as ``scalar <operator> value``.
        value: Right-hand side of the comparison.
        window_minutes: Length of the sampling window ending now.
        aggregation: Aggregation applied within the window (optional).
        total_metric: Denominator metric for error_rate conditions.
        baseline_windows: Preceding windows averaged into the anomaly baseline.
    """

    kind: ConditionKind
    metric: str
    operator: ConditionOperator
    value: float
    window_minutes: int
    aggregation: Aggregation | None = None
    total_metric: str = "api_requests"
    baseline_windows: int = 4

    def __post_init__(self) -> None:
        self.kind = ConditionKind(self.kind)
        self.operator = ConditionOperator(self.operator)
        if self.aggregation is not None:
            self.aggregation = Aggregation(self.aggregation)

    def to_dict(self) -> dict[str, Any]:
        """Snapshot of the condition for alert metadata."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "metric": self.metric,
            "operator": self.operator.value,
            "value": self.value,
            "window_minutes": self.window_minutes,
            "aggregation": self.aggregation.value if self.aggregation else None,
        }
        if self.kind == ConditionKind.ERROR_RATE:
            data["total_metric"] = self.total_metric
        if self.kind == ConditionKind.ANOMALY:
            data["baseline_windows"] = self.baseline_windows
        return data


@dataclass
class AlertChannel:
    """A configured destination for alert notifications.

    Attributes:
        kind: Channel type (email, webhook, slack, sms).
        config: Channel-specific configuration (url, headers, to, channel).
        enabled: Disabled channels are skipped silently.
    """

    kind: ChannelKind
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def __post_init__(self) -> None:
        self.kind = ChannelKind(self.kind)


@dataclass
class AlertRule:
    """A named condition over a metric, with severity, channels, and throttle policy."""

    id: str
    name: str
    condition: AlertCondition
    severity: AlertSeverity = AlertSeverity.MEDIUM
    channels: list[AlertChannel] = field(default_factory=list)
    enabled: bool = True
    throttle_minutes: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.severity = AlertSeverity(self.severity)


@dataclass
class Alert:
    """An alert instance produced by a rule firing.

    Attributes:
        id: Unique alert identifier, generated at trigger time.
        rule_id: ID of the rule that fired.
        severity: Severity copied from the rule at trigger time.
        title: Human-readable title.
        description: Detailed description.
        timestamp: When the alert was created.
        resolved: Whether the alert has been resolved.
        resolved_at: When the alert was resolved.
        metadata: Rule name, condition snapshot, sampled value, resolved_by.
    """

    rule_id: str
    severity: AlertSeverity
    title: str
    description: str = ""
    id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            self.id = str(uuid.uuid4())
        self.severity = AlertSeverity(self.severity)

    @classmethod
    def from_rule(cls, rule: AlertRule, value: float, timestamp: datetime) -> Alert:
        """Build the alert for a rule whose condition matched ``value``."""
        return cls(
            rule_id=rule.id,
            severity=rule.severity,
            title=f"{rule.name} Alert",
            description=f"Alert triggered for rule: {rule.name}",
            timestamp=timestamp,
            metadata={
                "rule": rule.name,
                "condition": rule.condition.to_dict(),
                "value": value,
            },
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize alert for dashboards and logs."""
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "metadata": self.metadata,
        }
