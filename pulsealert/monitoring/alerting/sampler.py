"""Metric sources consumed by the rule evaluator.

Every sampler exposes ``sample(metric, start, end, aggregation) -> float``.
The evaluator treats any exception or non-finite result as "no trigger this
tick" for the rule being checked.
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsealert.core.models.alerting import Aggregation, MetricSample
from pulsealert.monitoring.alerting.errors import SamplingError

logger = logging.getLogger(__name__)


class MetricSampler(Protocol):
    """Produces a scalar value for a named metric over a time window."""

    async def sample(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
    ) -> float: ...


def aggregate(values: list[float], aggregation: Aggregation) -> float:
    """Aggregate raw values; empty windows aggregate to 0."""
    if aggregation == Aggregation.COUNT:
        return float(len(values))
    if not values:
        return 0.0
    if aggregation == Aggregation.SUM:
        return float(sum(values))
    if aggregation == Aggregation.AVG:
        return float(sum(values) / len(values))
    if aggregation == Aggregation.MAX:
        return float(max(values))
    if aggregation == Aggregation.MIN:
        return float(min(values))
    raise ValueError(f"Unsupported aggregation: {aggregation}")


class InMemoryMetricSampler:
    """Metric source backed by points recorded in process memory.

    Points are kept per metric as ``(timestamp, value)`` pairs. A metric can
    also be pinned to a fixed value, which is returned for every window.
    """

    def __init__(self) -> None:
        self._points: dict[str, list[tuple[datetime, float]]] = defaultdict(list)
        self._fixed: dict[str, float] = {}

    def record(self, metric: str, value: float, at: datetime | None = None) -> None:
        """Record a single metric point."""
        self._points[metric].append((at or datetime.now(UTC), float(value)))

    def fix(self, metric: str, value: float) -> None:
        """Pin ``metric`` so every window samples to ``value``."""
        self._fixed[metric] = float(value)

    def clear(self, metric: str | None = None) -> None:
        if metric is None:
            self._points.clear()
            self._fixed.clear()
        else:
            self._points.pop(metric, None)
            self._fixed.pop(metric, None)

    async def sample(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
    ) -> float:
        if metric in self._fixed:
            return self._fixed[metric]
        values = [value for ts, value in self._points.get(metric, []) if start <= ts <= end]
        return aggregate(values, aggregation)


class RandomMetricSampler:
    """Synthetic metric source for demos and local development."""

    RANGES: dict[str, tuple[int, int]] = {
        "api_requests": (100, 1100),
        "error_count": (0, 10),
        "response_time": (0, 2000),
        "db_errors": (0, 12),
    }

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    async def sample(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
    ) -> float:
        bounds = self.RANGES.get(metric)
        if bounds is None:
            return 0.0
        return float(self._rng.randint(*bounds))


class SqlAlchemyMetricSampler:
    """Metric source that aggregates rows of the ``metric_samples`` table.

    Args:
        session_factory: Async session factory bound to the metrics database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _aggregate_column(aggregation: Aggregation):  # noqa: ANN205
        if aggregation == Aggregation.SUM:
            return func.sum(MetricSample.value)
        if aggregation == Aggregation.AVG:
            return func.avg(MetricSample.value)
        if aggregation == Aggregation.COUNT:
            return func.count(MetricSample.id)
        if aggregation == Aggregation.MAX:
            return func.max(MetricSample.value)
        if aggregation == Aggregation.MIN:
            return func.min(MetricSample.value)
        raise ValueError(f"Unsupported aggregation: {aggregation}")

    async def sample(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
    ) -> float:
        stmt = select(self._aggregate_column(aggregation)).where(
            MetricSample.metric == metric,
            MetricSample.recorded_at >= start,
            MetricSample.recorded_at <= end,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                value = result.scalar()
        except SQLAlchemyError as exc:
            raise SamplingError(metric, f"Metric query failed for '{metric}': {exc}") from exc

        if value is None:
            return 0.0
        return float(value)

    async def record(self, metric: str, value: float, at: datetime | None = None) -> None:
        """Insert a metric point."""
        async with self._session_factory() as session:
            session.add(MetricSample(metric=metric, value=float(value), recorded_at=at or datetime.now(UTC)))
            await session.commit()
        logger.debug("Recorded metric %s=%s", metric, value)
