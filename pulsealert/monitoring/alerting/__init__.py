"""Rule-based alerting for PulseAlert.

Re-exports the data model, the monitoring service, and its collaborators.
"""

from pulsealert.core.models.alerting import (
    Aggregation,
    AlertSeverity,
    ChannelKind,
    ConditionKind,
    ConditionOperator,
)
from pulsealert.monitoring.alerting.conditions import (
    ConditionEvaluator,
    anomaly_score,
    compare,
    error_rate,
)
from pulsealert.monitoring.alerting.defaults import default_rules
from pulsealert.monitoring.alerting.errors import (
    AlertingError,
    DeliveryError,
    PersistenceError,
    SamplingError,
    UnknownAlertError,
)
from pulsealert.monitoring.alerting.messaging import LoggingMessenger, Messenger
from pulsealert.monitoring.alerting.models import Alert, AlertChannel, AlertCondition, AlertRule
from pulsealert.monitoring.alerting.notifications import (
    ChannelDelivery,
    DispatchReport,
    NotificationDispatcher,
    webhook_payload,
)
from pulsealert.monitoring.alerting.sampler import (
    InMemoryMetricSampler,
    MetricSampler,
    RandomMetricSampler,
    SqlAlchemyMetricSampler,
)
from pulsealert.monitoring.alerting.service import MonitoringService, create_monitoring_service
from pulsealert.monitoring.alerting.store import (
    AlertStorage,
    AlertStore,
    InMemoryAlertStorage,
    SqlAlchemyAlertStorage,
)
from pulsealert.monitoring.alerting.throttle import ThrottleGate

__all__ = [
    # Enums
    "Aggregation",
    "AlertSeverity",
    "ChannelKind",
    "ConditionKind",
    "ConditionOperator",
    # Data model
    "Alert",
    "AlertChannel",
    "AlertCondition",
    "AlertRule",
    "default_rules",
    # Errors
    "AlertingError",
    "DeliveryError",
    "PersistenceError",
    "SamplingError",
    "UnknownAlertError",
    # Evaluation
    "ConditionEvaluator",
    "anomaly_score",
    "compare",
    "error_rate",
    "InMemoryMetricSampler",
    "MetricSampler",
    "RandomMetricSampler",
    "SqlAlchemyMetricSampler",
    "ThrottleGate",
    # Storage
    "AlertStorage",
    "AlertStore",
    "InMemoryAlertStorage",
    "SqlAlchemyAlertStorage",
    # Notifications
    "ChannelDelivery",
    "DispatchReport",
    "LoggingMessenger",
    "Messenger",
    "NotificationDispatcher",
    "webhook_payload",
    # Service
    "MonitoringService",
    "create_monitoring_service",
]
