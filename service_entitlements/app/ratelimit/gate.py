"""
Cooldown gate admitting at most one action per subject per interval.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from menu_shared.logging import get_logger
from menu_shared.metrics import MetricsCollector
from ..persistence.base import CooldownStore
from .models import GateDecision, GateOutcome, RateLimitedSubject

DEFAULT_MIN_INTERVAL = timedelta(seconds=30)


class CooldownGate:
    """
    Time-windowed admission control for a single subject.

    The check and the timestamp update happen in one store call, so two
    concurrent callers inside the same window cannot both be admitted.
    """

    def __init__(self, store: CooldownStore, min_interval: timedelta = DEFAULT_MIN_INTERVAL,
                 metrics: Optional[MetricsCollector] = None):
        if min_interval <= timedelta(0):
            raise ValueError("min_interval must be positive")
        self.store = store
        self.min_interval = min_interval
        self.metrics = metrics
        self.logger = get_logger("entitlements.ratelimit.gate")

    async def admit(self, subject: RateLimitedSubject, now: Optional[datetime] = None) -> GateDecision:
        """Admit the subject's action, or say how long to wait."""
        now = now or datetime.now(timezone.utc)

        if not subject.is_active:
            decision = GateDecision(outcome=GateOutcome.SUBJECT_INACTIVE)
            self._record(subject, decision)
            return decision

        attempt = await self.store.try_acquire(subject.id, now, self.min_interval)
        if attempt.acquired:
            decision = GateDecision(outcome=GateOutcome.ADMITTED, admitted_at=now)
        else:
            decision = GateDecision(
                outcome=GateOutcome.RATE_LIMITED,
                retry_after_seconds=self.retry_after(attempt.last_admitted_at, now, self.min_interval)
            )

        self._record(subject, decision)
        return decision

    @staticmethod
    def retry_after(last_admitted_at: Optional[datetime], now: datetime, min_interval: timedelta) -> int:
        """
        Whole seconds until the window reopens, rounded up.

        A rejection without a usable timestamp means another caller won the
        window just now, so the full interval applies. Clock skew that puts
        the last admission in the future counts as zero elapsed.
        """
        full = math.ceil(min_interval.total_seconds())
        if last_admitted_at is None:
            return full

        elapsed = max(now - last_admitted_at, timedelta(0))
        remaining = min_interval - elapsed
        if remaining <= timedelta(0):
            return full
        return math.ceil(remaining.total_seconds())

    def _record(self, subject: RateLimitedSubject, decision: GateDecision):
        self.logger.info(
            "Cooldown gate decision",
            subject_id=subject.id,
            organization_id=subject.organization_id,
            outcome=decision.outcome.value,
            retry_after_seconds=decision.retry_after_seconds
        )
        if self.metrics:
            self.metrics.increment_counter("rate_limit_decisions_total", outcome=decision.outcome.value)
