"""Exception taxonomy for the alerting loop.

None of these escape the monitoring loop: each is caught at the boundary
of the external call that produced it and turned into a log event.
"""

from __future__ import annotations


class AlertingError(Exception):
    """Base exception for alerting errors."""


class SamplingError(AlertingError):
    """Raised when the metric source fails or returns unusable data.

    Attributes:
        metric: Name of the metric being sampled.
    """

    def __init__(self, metric: str, message: str = "") -> None:
        self.metric = metric
        super().__init__(message or f"Failed to sample metric '{metric}'")


class PersistenceError(AlertingError):
    """Raised when the alert storage backend rejects a write.

    Attributes:
        alert_id: Alert being written.
    """

    def __init__(self, alert_id: str, message: str = "") -> None:
        self.alert_id = alert_id
        super().__init__(message or f"Failed to persist alert {alert_id}")


class DeliveryError(AlertingError):
    """Raised when delivering an alert to a single channel fails.

    Attributes:
        alert_id: Alert being delivered.
        channel_kind: Kind of the failing channel.
    """

    def __init__(self, alert_id: str, channel_kind: str, message: str = "") -> None:
        self.alert_id = alert_id
        self.channel_kind = channel_kind
        super().__init__(message or f"Failed to deliver alert {alert_id} via {channel_kind}")


class UnknownAlertError(AlertingError):
    """An operation referenced an alert id that is not known."""

    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Unknown alert: {alert_id}")
