"""Ledger state: shared configuration, per-user records and rolling aggregates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from .confidential import ConfidentialValue


CADENCE_SECONDS = 24 * 3600
STREAK_GRACE_SECONDS = 25 * 3600


@dataclass
class LedgerConfig:
    """Process-wide ledger settings, shared by reference.

    address and admin are fixed at creation. test_mode is only mutated
    through ScoreLedger.set_test_mode.
    """

    address: str
    admin: str
    test_mode: bool = False
    cadence_seconds: int = CADENCE_SECONDS
    streak_grace_seconds: int = STREAK_GRACE_SECONDS


@dataclass(frozen=True)
class Record:
    """One accepted submission. Immutable."""

    timestamp: int
    mileage_level: int
    score: ConfidentialValue


@dataclass
class UserState:
    records: list[Record] = field(default_factory=list)
    last_submit_time: int = 0
    consecutive_days: int = 0
    running_total: Optional[ConfidentialValue] = None
    running_count: int = 0
    previous_score: Optional[ConfidentialValue] = None
    current_score: Optional[ConfidentialValue] = None
    trend: Optional[ConfidentialValue] = None

    @property
    def record_count(self) -> int:
        return len(self.records)


class UserStats(NamedTuple):
    record_count: int
    consecutive_days: int
    last_submit_time: int


__all__ = [
    "CADENCE_SECONDS",
    "STREAK_GRACE_SECONDS",
    "LedgerConfig",
    "Record",
    "UserState",
    "UserStats",
]
