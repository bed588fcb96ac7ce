"""Alert Store: durable alert records, resolution state, and history.

``AlertStore`` sits on top of an ``AlertStorage`` backend (the persistent
collaborator) and reads active alerts from the in-memory index that the
monitoring service maintains.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsealert.core.models.alerting import AlertRecord
from pulsealert.monitoring.alerting.errors import PersistenceError, UnknownAlertError
from pulsealert.monitoring.alerting.models import Alert

logger = logging.getLogger(__name__)


class AlertStorage(Protocol):
    """Persistent alert storage consumed by the Alert Store."""

    async def insert(self, alert: Alert) -> bool: ...

    async def update(self, alert_id: str, fields: dict[str, Any]) -> None: ...

    async def query(self, limit: int) -> list[Alert]: ...

    async def get(self, alert_id: str) -> Alert | None: ...


# ── Storage backends ─────────────────────────────────────────────


class InMemoryAlertStorage:
    """Alert storage held in process memory (tests and local development)."""

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    async def insert(self, alert: Alert) -> bool:
        """Insert ``alert``; returns False when the id already exists."""
        if alert.id in self._alerts:
            return False
        self._alerts[alert.id] = _copy_alert(alert)
        return True

    async def update(self, alert_id: str, fields: dict[str, Any]) -> None:
        stored = self._alerts.get(alert_id)
        if stored is None:
            raise KeyError(alert_id)
        for key, value in fields.items():
            setattr(stored, key, dict(value) if key == "metadata" else value)

    async def query(self, limit: int) -> list[Alert]:
        ordered = sorted(self._alerts.values(), key=lambda a: a.timestamp, reverse=True)
        return [_copy_alert(a) for a in ordered[:limit]]

    async def get(self, alert_id: str) -> Alert | None:
        stored = self._alerts.get(alert_id)
        return _copy_alert(stored) if stored is not None else None


class SqlAlchemyAlertStorage:
    """Alert storage backed by the ``alerts`` table.

    Args:
        session_factory: Async session factory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, alert: Alert) -> bool:
        async with self._session_factory() as session:
            existing = await session.get(AlertRecord, alert.id)
            if existing is not None:
                return False
            session.add(_to_record(alert))
            try:
                await session.commit()
            except IntegrityError:
                # Concurrent insert of the same id won the race.
                await session.rollback()
                return False
        return True

    async def update(self, alert_id: str, fields: dict[str, Any]) -> None:
        values = dict(fields)
        if "metadata" in values:
            values["metadata_json"] = values.pop("metadata")
        async with self._session_factory() as session:
            result = await session.execute(update(AlertRecord).where(AlertRecord.id == alert_id).values(**values))
            await session.commit()
        if getattr(result, "rowcount", 1) == 0:
            raise KeyError(alert_id)

    async def query(self, limit: int) -> list[Alert]:
        stmt = select(AlertRecord).order_by(AlertRecord.timestamp.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [_from_record(r) for r in records]

    async def get(self, alert_id: str) -> Alert | None:
        async with self._session_factory() as session:
            record = await session.get(AlertRecord, alert_id)
        return _from_record(record) if record is not None else None


def _copy_alert(alert: Alert) -> Alert:
    return Alert(
        id=alert.id,
        rule_id=alert.rule_id,
        severity=alert.severity,
        title=alert.title,
        description=alert.description,
        timestamp=alert.timestamp,
        resolved=alert.resolved,
        resolved_at=alert.resolved_at,
        metadata=dict(alert.metadata),
    )


def _to_record(alert: Alert) -> AlertRecord:
    return AlertRecord(
        id=alert.id,
        rule_id=alert.rule_id,
        severity=alert.severity,
        title=alert.title,
        description=alert.description,
        timestamp=alert.timestamp,
        resolved=alert.resolved,
        resolved_at=alert.resolved_at,
        metadata_json=dict(alert.metadata),
    )


def _from_record(record: AlertRecord) -> Alert:
    return Alert(
        id=record.id,
        rule_id=record.rule_id,
        severity=record.severity,
        title=record.title,
        description=record.description,
        timestamp=record.timestamp,
        resolved=record.resolved,
        resolved_at=record.resolved_at,
        metadata=dict(record.metadata_json or {}),
    )


# ── Alert store ──────────────────────────────────────────────────


class AlertStore:
    """Source of truth for alert history and resolution state.

    Args:
        storage: Persistent storage backend.
        active_index: Map of alert id to Alert for unresolved and recently
            resolved alerts. Owned and populated by the monitoring service.
        clock: Returns the current instant (UTC).
    """

    def __init__(
        self,
        storage: AlertStorage,
        active_index: dict[str, Alert] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.storage = storage
        self._active = active_index if active_index is not None else {}
        self._clock = clock if clock is not None else (lambda: datetime.now(UTC))

    async def persist(self, alert: Alert) -> bool:
        """Insert a new alert record.

        A duplicate id (e.g. from a retried call) is a no-op.

        Returns:
            True if a record was written, False if it already existed.

        Raises:
            PersistenceError: If the storage backend fails.
        """
        try:
            inserted = await self.storage.insert(alert)
        except Exception as exc:
            raise PersistenceError(alert.id, f"Failed to persist alert {alert.id}: {exc}") from exc
        if not inserted:
            logger.info("Alert %s already persisted; skipping insert", alert.id)
        return inserted

    async def resolve(self, alert_id: str, resolved_by: str | None = None) -> Alert | None:
        """Mark an alert as resolved.

        Already-resolved alerts are left untouched. Unknown ids are logged
        as a warning and return None. Storage failures are logged; the
        in-memory resolution still stands.
        """
        alert = self._active.get(alert_id)
        if alert is None:
            try:
                alert = await self.storage.get(alert_id)
            except Exception:
                logger.exception("Failed to load alert %s for resolution", alert_id)
                return None
        if alert is None:
            logger.warning("%s; resolve ignored", UnknownAlertError(alert_id))
            return None
        if alert.resolved:
            return alert

        alert.resolved = True
        alert.resolved_at = self._clock()
        alert.metadata["resolved_by"] = resolved_by

        duration = alert.resolved_at - alert.timestamp
        logger.info(
            "Alert resolved: %s by=%s duration=%.0fs",
            alert_id,
            resolved_by,
            duration.total_seconds(),
        )

        try:
            await self.storage.update(
                alert_id,
                {"resolved": True, "resolved_at": alert.resolved_at, "metadata": dict(alert.metadata)},
            )
        except Exception as exc:
            error = PersistenceError(alert_id, f"Failed to update alert {alert_id}: {exc}")
            logger.error("%s", error)
        return alert

    async def history(self, limit: int = 100) -> list[Alert]:
        """Return the most recent ``limit`` alerts, newest first."""
        try:
            return await self.storage.query(limit)
        except Exception:
            logger.exception("Failed to get alert history")
            return []

    def active_alerts(self) -> list[Alert]:
        """Return unresolved alerts from the in-memory index."""
        return [a for a in self._active.values() if not a.resolved]

    def prune_resolved(self, retention: timedelta) -> int:
        """Drop resolved alerts older than ``retention`` from the active index.

        Returns:
            Number of entries removed.
        """
        cutoff = self._clock() - retention
        expired = [
            alert_id
            for alert_id, alert in self._active.items()
            if alert.resolved and alert.resolved_at is not None and alert.resolved_at <= cutoff
        ]
        for alert_id in expired:
            del self._active[alert_id]
        return len(expired)
