"""Monitoring service: rule registry, evaluation ticks, and the driver loop.

``MonitoringService`` owns the rule registry, the throttle gate, and the
in-memory active-alert index. On every tick it evaluates each enabled rule
independently; a matching, non-throttled rule produces an Alert that is
persisted first and then handed to the notification fan-out as a detached
task, so a slow channel never holds up the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsealert.core.config import Settings
from pulsealert.monitoring.alerting.conditions import ConditionEvaluator
from pulsealert.monitoring.alerting.defaults import default_rules
from pulsealert.monitoring.alerting.errors import PersistenceError, SamplingError
from pulsealert.monitoring.alerting.messaging import Messenger
from pulsealert.monitoring.alerting.models import Alert, AlertChannel, AlertRule
from pulsealert.monitoring.alerting.notifications import DispatchReport, NotificationDispatcher
from pulsealert.monitoring.alerting.sampler import (
    InMemoryMetricSampler,
    MetricSampler,
    SqlAlchemyMetricSampler,
)
from pulsealert.monitoring.alerting.store import (
    AlertStorage,
    AlertStore,
    InMemoryAlertStorage,
    SqlAlchemyAlertStorage,
)
from pulsealert.monitoring.alerting.throttle import ThrottleGate

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MonitoringService:
    """Rule-based monitoring loop with alert persistence and dispatch.

    One instance is built per process and handed to the scheduling driver
    and to any admin surface that lists or mutates rules.

    Args:
        sampler: Metric source.
        storage: Persistent alert storage (defaults to in-memory).
        dispatcher: Notification fan-out (defaults to a logging messenger).
        interval_seconds: Seconds between ticks of the driver loop.
        sampling_timeout: Per-call sampling timeout in seconds.
        shutdown_grace_seconds: How long ``stop`` waits for in-flight dispatches.
        active_retention: How long resolved alerts stay in the active index.
        history_limit: Default ``limit`` for ``alert_history``.
        clock: Returns the current instant (UTC).
    """

    def __init__(
        self,
        sampler: MetricSampler,
        storage: AlertStorage | None = None,
        dispatcher: NotificationDispatcher | None = None,
        *,
        interval_seconds: float = 60.0,
        sampling_timeout: float | None = 10.0,
        shutdown_grace_seconds: float = 5.0,
        active_retention: timedelta = timedelta(minutes=60),
        history_limit: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock if clock is not None else _utcnow
        self._rules: dict[str, AlertRule] = {}
        self._active_alerts: dict[str, Alert] = {}
        self._dispatch_tasks: set[asyncio.Task[None]] = set()
        self._reports: deque[DispatchReport] = deque(maxlen=200)
        self._tick_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False

        self.evaluator = ConditionEvaluator(sampler, timeout=sampling_timeout)
        self.throttle = ThrottleGate()
        if storage is None:
            storage = InMemoryAlertStorage()
        self.store = AlertStore(storage, self._active_alerts, clock=self._clock)
        self.dispatcher = dispatcher if dispatcher is not None else NotificationDispatcher()
        self.interval_seconds = interval_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.active_retention = active_retention
        self.history_limit = history_limit

    # -- Rule registry ---------------------------------------------------------

    def add_rule(self, rule: AlertRule) -> AlertRule:
        """Add a rule, replacing any existing rule with the same id."""
        self._rules[rule.id] = rule
        logger.info("Alert rule added: id=%s name=%s severity=%s", rule.id, rule.name, rule.severity.value)
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        """Remove a rule. Removing an unknown id is not an error.

        Returns:
            True if a rule was removed.
        """
        removed = self._rules.pop(rule_id, None) is not None
        self.throttle.forget(rule_id)
        if removed:
            logger.info("Alert rule removed: id=%s", rule_id)
        return removed

    def get_rule(self, rule_id: str) -> AlertRule | None:
        return self._rules.get(rule_id)

    def list_rules(self) -> list[AlertRule]:
        return list(self._rules.values())

    def enable_rule(self, rule_id: str) -> bool:
        rule = self._rules.get(rule_id)
        if rule is None:
            return False
        rule.enabled = True
        return True

    def disable_rule(self, rule_id: str) -> bool:
        rule = self._rules.get(rule_id)
        if rule is None:
            return False
        rule.enabled = False
        return True

    # -- Evaluation ------------------------------------------------------------

    async def check_rules(self) -> list[Alert]:
        """Run one tick: evaluate every enabled rule.

        Rules are evaluated concurrently and independently; a failure on one
        rule is logged and does not affect the others. A tick that starts
        while a previous tick is still running is skipped.

        Returns:
            Alerts triggered on this tick.
        """
        if self._tick_lock.locked():
            logger.warning("Previous alert check still running; skipping tick")
            return []

        async with self._tick_lock:
            now = self._clock()
            rules = [rule for rule in self._rules.values() if rule.enabled]
            results = await asyncio.gather(*(self._check_rule(rule, now) for rule in rules))
            triggered = [alert for alert in results if alert is not None]

            pruned = self.store.prune_resolved(self.active_retention)
            if pruned:
                logger.debug("Pruned %d resolved alerts from the active index", pruned)

        return triggered

    async def _check_rule(self, rule: AlertRule, now: datetime) -> Alert | None:
        try:
            matched, value = await self.evaluator.evaluate(rule.condition, now)
            if not matched:
                return None

            async with self.throttle.hold(rule.id):
                if self.throttle.is_throttled(rule.id, rule.throttle_minutes, now):
                    logger.debug("Alert rule %s matched but is throttled", rule.id)
                    return None
                alert = await self._trigger(rule, value, now)
                self.throttle.record_trigger(rule.id, now)
            return alert
        except SamplingError as exc:
            logger.warning("Skipping alert rule %s (%s) this tick: %s", rule.id, rule.name, exc)
        except Exception:
            logger.exception("Failed to evaluate alert rule %s (%s)", rule.id, rule.name)
        return None

    async def _trigger(self, rule: AlertRule, value: float, now: datetime) -> Alert:
        alert = Alert.from_rule(rule, value, now)

        logger.warning(
            "Alert triggered: %s alert_id=%s rule_id=%s severity=%s timestamp=%s",
            alert.title,
            alert.id,
            rule.id,
            alert.severity.value,
            alert.timestamp.isoformat(),
        )

        # Persist before dispatch so an abandoned delivery still leaves a record.
        try:
            await self.store.persist(alert)
        except PersistenceError as exc:
            logger.error("%s; dispatching anyway", exc)

        # Index after persist so a tick cancelled mid-write leaves nothing active.
        self._active_alerts[alert.id] = alert
        task = asyncio.create_task(self._dispatch(alert, list(rule.channels)), name=f"alert-dispatch-{alert.id}")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        return alert

    async def _dispatch(self, alert: Alert, channels: list[AlertChannel]) -> None:
        try:
            report = await self.dispatcher.dispatch(alert, channels)
        except Exception:
            logger.exception("Notification dispatch failed for alert %s", alert.id)
            return
        self._reports.append(report)

    # -- Alert queries ---------------------------------------------------------

    async def resolve_alert(self, alert_id: str, resolved_by: str | None = None) -> Alert | None:
        """Resolve an alert; unknown or already-resolved ids are no-ops."""
        return await self.store.resolve(alert_id, resolved_by)

    def active_alerts(self) -> list[Alert]:
        """Currently unresolved alerts, read from the in-memory index."""
        return self.store.active_alerts()

    async def alert_history(self, limit: int | None = None) -> list[Alert]:
        """Most recent alerts from storage, newest first."""
        return await self.store.history(limit if limit is not None else self.history_limit)

    def dispatch_reports(self) -> list[DispatchReport]:
        """Completed dispatch reports, oldest first."""
        return list(self._reports)

    # -- Driver loop -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the fixed-interval driver loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="alert-monitoring-loop")
        logger.info("Alert monitoring started (interval=%.1fs, rules=%d)", self.interval_seconds, len(self._rules))

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check_rules()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Alert check failed")

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for in-flight dispatches.

        Returns:
            Number of dispatches still pending when the timeout expired.
        """
        pending = set(self._dispatch_tasks)
        if not pending:
            return 0
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        return len(still_pending)

    async def stop(self) -> None:
        """Stop the driver loop, then let in-flight dispatches finish.

        Dispatches still running after ``shutdown_grace_seconds`` are
        cancelled. Their alerts are already persisted.
        """
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

        remaining = await self.drain(timeout=self.shutdown_grace_seconds)
        if remaining:
            logger.warning("Abandoning %d in-flight alert dispatches on shutdown", remaining)
            tasks = list(self._dispatch_tasks)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Alert monitoring stopped")


def create_monitoring_service(
    settings: Settings,
    *,
    sampler: MetricSampler | None = None,
    storage: AlertStorage | None = None,
    messenger: Messenger | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MonitoringService:
    """Build the process-wide monitoring service from settings.

    With a ``session_factory`` the SQL-backed sampler and storage are used
    unless explicit ones are passed; without one, in-memory versions are.
    Default rules are loaded when ``alert_default_rules_enabled`` is set.
    """
    if sampler is None:
        sampler = SqlAlchemyMetricSampler(session_factory) if session_factory is not None else InMemoryMetricSampler()
    if storage is None:
        storage = SqlAlchemyAlertStorage(session_factory) if session_factory is not None else InMemoryAlertStorage()

    service = MonitoringService(
        sampler,
        storage,
        NotificationDispatcher(messenger, timeout=settings.alert_delivery_timeout_seconds),
        interval_seconds=settings.alert_check_interval_seconds,
        sampling_timeout=settings.alert_sampling_timeout_seconds,
        shutdown_grace_seconds=settings.alert_shutdown_grace_seconds,
        active_retention=timedelta(minutes=settings.alert_active_retention_minutes),
        history_limit=settings.alert_history_limit,
        clock=clock,
    )

    if settings.alert_default_rules_enabled:
        for rule in default_rules(settings):
            service.add_rule(rule)

    logger.info("Alerting system initialized with %d rules", len(service.list_rules()))
    return service
