"""Per-rule throttling of alert triggers.

Tracks the last trigger instant of every rule for the lifetime of the
process and enforces a minimum spacing between consecutive triggers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


class ThrottleGate:
    """Suppresses repeated triggers of the same rule within its cooldown.

    ``is_throttled`` is side-effect free; the last trigger time is only
    updated through ``record_trigger`` once a trigger has actually fired.
    ``hold`` serialises check-and-record per rule so that two concurrent
    evaluations of one rule cannot both pass the gate.
    """

    def __init__(self) -> None:
        self._last_triggers: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def is_throttled(self, rule_id: str, throttle_minutes: int, now: datetime) -> bool:
        """Return True if ``rule_id`` fired less than ``throttle_minutes`` ago.

        Args:
            rule_id: Rule being checked.
            throttle_minutes: Cooldown; 0 disables throttling.
            now: Current instant.
        """
        if throttle_minutes <= 0:
            return False
        last = self._last_triggers.get(rule_id)
        if last is None:
            return False
        return now - last < timedelta(minutes=throttle_minutes)

    def record_trigger(self, rule_id: str, now: datetime) -> None:
        """Record that ``rule_id`` fired at ``now``."""
        self._last_triggers[rule_id] = now

    def last_trigger(self, rule_id: str) -> datetime | None:
        return self._last_triggers.get(rule_id)

    def forget(self, rule_id: str) -> None:
        """Drop throttle state for a removed rule."""
        self._last_triggers.pop(rule_id, None)
        self._locks.pop(rule_id, None)

    @contextlib.asynccontextmanager
    async def hold(self, rule_id: str) -> AsyncIterator[None]:
        """Hold the per-rule lock for a check-then-record sequence."""
        lock = self._locks.setdefault(rule_id, asyncio.Lock())
        async with lock:
            yield
