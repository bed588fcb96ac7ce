"""Condition evaluation: turn a rule's condition into a scalar and compare it.

The three condition kinds share one pipeline: sample the metric source for
the window ``[now - window_minutes, now]``, compute a scalar, then compare
it with the rule value using the condition operator.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta

from pulsealert.core.models.alerting import Aggregation, ConditionKind, ConditionOperator
from pulsealert.monitoring.alerting.errors import SamplingError
from pulsealert.monitoring.alerting.models import AlertCondition
from pulsealert.monitoring.alerting.sampler import MetricSampler

logger = logging.getLogger(__name__)

DEFAULT_AGGREGATION = Aggregation.COUNT
ERROR_RATE_AGGREGATION = Aggregation.SUM


def compare(value: float, operator: ConditionOperator, threshold: float) -> bool:
    """Evaluate ``value <operator> threshold``."""
    if operator == ConditionOperator.GT:
        return value > threshold
    elif operator == ConditionOperator.GTE:
        return value >= threshold
    elif operator == ConditionOperator.LT:
        return value < threshold
    elif operator == ConditionOperator.LTE:
        return value <= threshold
    elif operator == ConditionOperator.EQ:
        return value == threshold
    return False


def error_rate(error_count: float, total_count: float) -> float:
    """Percentage of errors over the window; 0 when there was no traffic."""
    if total_count == 0:
        return 0.0
    return (error_count / total_count) * 100


def anomaly_score(current: float, historical_average: float) -> float:
    """Percent deviation from the historical average; 0 without a baseline."""
    if historical_average == 0:
        return 0.0
    return abs(current - historical_average) / historical_average * 100


def window_bounds(window_minutes: int, now: datetime) -> tuple[datetime, datetime]:
    """Return ``(now - window, now)``."""
    return now - timedelta(minutes=window_minutes), now


class ConditionEvaluator:
    """Computes condition scalars through a metric sampler.

    Every sampler call is bounded by ``timeout`` seconds. Failures,
    timeouts, and non-finite results surface as ``SamplingError``.

    Args:
        sampler: Metric source.
        timeout: Per-call sampling timeout in seconds (None disables it).
    """

    def __init__(self, sampler: MetricSampler, timeout: float | None = 10.0) -> None:
        self.sampler = sampler
        self.timeout = timeout

    async def _sample(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
    ) -> float:
        try:
            value = await asyncio.wait_for(
                self.sampler.sample(metric, start, end, aggregation),
                self.timeout,
            )
        except SamplingError:
            raise
        except TimeoutError as exc:
            raise SamplingError(metric, f"Sampling '{metric}' timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise SamplingError(metric, f"Sampling '{metric}' failed: {exc}") from exc

        try:
            value = float(value)
        except (TypeError, ValueError) as exc:
            raise SamplingError(metric, f"Sampler returned non-numeric value for '{metric}': {value!r}") from exc
        if not math.isfinite(value):
            raise SamplingError(metric, f"Sampler returned non-finite value for '{metric}': {value}")
        return value

    async def compute(self, condition: AlertCondition, now: datetime) -> float:
        """Compute the scalar that ``condition`` compares against its value.

        Args:
            condition: The rule condition.
            now: End of the sampling window.

        Returns:
            The evaluated scalar (always finite).

        Raises:
            SamplingError: If the metric source fails.
        """
        start, end = window_bounds(condition.window_minutes, now)

        if condition.kind == ConditionKind.THRESHOLD:
            return await self._sample(condition.metric, start, end, condition.aggregation or DEFAULT_AGGREGATION)

        if condition.kind == ConditionKind.ERROR_RATE:
            aggregation = condition.aggregation or ERROR_RATE_AGGREGATION
            errors = await self._sample(condition.metric, start, end, aggregation)
            total = await self._sample(condition.total_metric, start, end, aggregation)
            return error_rate(errors, total)

        if condition.kind == ConditionKind.ANOMALY:
            aggregation = condition.aggregation or DEFAULT_AGGREGATION
            current = await self._sample(condition.metric, start, end, aggregation)
            historical = await self._historical_average(condition, start, end, aggregation)
            return anomaly_score(current, historical)

        raise ValueError(f"Unsupported condition kind: {condition.kind}")

    async def _historical_average(
        self,
        condition: AlertCondition,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
    ) -> float:
        """Average of the same aggregation over the preceding windows."""
        windows = max(condition.baseline_windows, 1)
        width = end - start
        values = []
        for i in range(1, windows + 1):
            values.append(await self._sample(condition.metric, start - width * i, end - width * i, aggregation))
        return sum(values) / len(values)

    async def evaluate(self, condition: AlertCondition, now: datetime) -> tuple[bool, float]:
        """Compute the scalar and compare it with the condition value.

        Returns:
            Tuple of (matched, scalar).
        """
        value = await self.compute(condition, now)
        matched = compare(value, condition.operator, condition.value)
        logger.debug(
            "Condition %s(%s) = %.4f %s %s -> %s",
            condition.kind.value,
            condition.metric,
            value,
            condition.operator.value,
            condition.value,
            matched,
        )
        return matched, value
