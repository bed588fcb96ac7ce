"""Alerting models: severity/condition/channel enums, AlertRecord, MetricSample."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from pulsealert.core.database import Base


class AlertSeverity(enum.StrEnum):
    """Severity levels for alert rules, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER[self]

    def __lt__(self, other: object) -> bool:
        if isinstance(other, AlertSeverity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other: object) -> bool:
        if isinstance(other, AlertSeverity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other: object) -> bool:
        if isinstance(other, AlertSeverity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other: object) -> bool:
        if isinstance(other, AlertSeverity):
            return self.rank >= other.rank
        return NotImplemented


_SEVERITY_ORDER = {
    AlertSeverity.LOW: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.HIGH: 3,
    AlertSeverity.CRITICAL: 4,
}


class ConditionKind(enum.StrEnum):
    """How a rule turns sampled metrics into a scalar."""

    THRESHOLD = "threshold"
    ERROR_RATE = "error_rate"
    ANOMALY = "anomaly"


class ConditionOperator(enum.StrEnum):
    """Comparison between the evaluated scalar and the rule value."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


class Aggregation(enum.StrEnum):
    """Aggregation applied to metric samples within a window."""

    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MAX = "max"
    MIN = "min"


class ChannelKind(enum.StrEnum):
    """Notification channel types."""

    EMAIL = "email"
    WEBHOOK = "webhook"
    SLACK = "slack"
    SMS = "sms"


class AlertRecord(Base):
    """A persisted alert instance produced by a rule firing."""

    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_rule_id", "rule_id"),
        Index("ix_alerts_timestamp", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rule_id: Mapped[str] = mapped_column(String(255), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        Enum(AlertSeverity, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<AlertRecord(id={self.id}, rule_id='{self.rule_id}', resolved={self.resolved})>"


class MetricSample(Base):
    """A single recorded metric value at a point in time."""

    __tablename__ = "metric_samples"
    __table_args__ = (Index("ix_metric_samples_metric_recorded", "metric", "recorded_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    metric: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<MetricSample(metric='{self.metric}', value={self.value})>"
