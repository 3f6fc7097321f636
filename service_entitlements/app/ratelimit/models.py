"""
Data models for the cooldown gate.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class GateOutcome(str, Enum):
    """Gate decision outcomes."""
    ADMITTED = "admitted"
    RATE_LIMITED = "rate_limited"
    SUBJECT_INACTIVE = "subject_inactive"


@dataclass
class RateLimitedSubject:
    """An entity whose action frequency is bounded."""
    id: str
    organization_id: str
    is_active: bool = True
    last_admitted_at: Optional[datetime] = None


@dataclass(frozen=True)
class CooldownAttempt:
    """
    Result of a store-side compare-and-set.

    ``last_admitted_at`` is the timestamp seen before the attempt; it may be
    stale when a concurrent caller won the same window.
    """
    acquired: bool
    last_admitted_at: Optional[datetime] = None


@dataclass(frozen=True)
class GateDecision:
    """Outcome of asking the gate to admit one action."""
    outcome: GateOutcome
    retry_after_seconds: Optional[int] = None
    admitted_at: Optional[datetime] = None

    @property
    def admitted(self) -> bool:
        return self.outcome == GateOutcome.ADMITTED
