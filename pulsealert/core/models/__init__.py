"""SQLAlchemy models for PulseAlert.

Re-exports all models and enums so callers can use
``from pulsealert.core.models import X``.
"""

from pulsealert.core.models.alerting import (
    Aggregation,
    AlertRecord,
    AlertSeverity,
    ChannelKind,
    ConditionKind,
    ConditionOperator,
    MetricSample,
)

__all__ = [
    "Aggregation",
    "AlertRecord",
    "AlertSeverity",
    "ChannelKind",
    "ConditionKind",
    "ConditionOperator",
    "MetricSample",
]
