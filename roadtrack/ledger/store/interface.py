"""Persistence protocols for the ledger and the coprocessor.

Implementations: SqlLedgerStore (SQLAlchemy, v1).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from roadtrack.ledger.state import LedgerConfig, UserState


@dataclass
class StoredSettings:
    address: str
    admin: str
    test_mode: bool = False


@dataclass
class StoredUser:
    """Persisted UserState, with confidential values as handles."""

    last_submit_time: int = 0
    consecutive_days: int = 0
    running_count: int = 0
    running_total_handle: Optional[str] = None
    previous_score_handle: Optional[str] = None
    current_score_handle: Optional[str] = None
    trend_handle: Optional[str] = None
    # (timestamp, mileage_level, score_handle) in append order
    records: list[tuple[int, int, str]] = field(default_factory=list)


@runtime_checkable
class LedgerStore(Protocol):
    """Reads/writes ledger settings and per-user state."""

    def load_settings(self) -> StoredSettings | None:
        ...

    def save_settings(self, config: LedgerConfig) -> None:
        ...

    def load_users(self) -> dict[str, StoredUser]:
        ...

    def save_user(
        self, user: str, state: UserState, grants: list[tuple[str, str]] | None = None,
    ) -> None:
        """Persist state and (handle, principal) grants in one transaction.

        Records are append-only. Grants written here are read back through
        CiphertextStore.load_grants.
        """
        ...


@runtime_checkable
class CiphertextStore(Protocol):
    """Reads/writes coprocessor ciphertexts and access grants."""

    def save_ciphertext(
        self, handle: str, ledger_address: str, ciphertext: str, exponent: int,
    ) -> None:
        ...

    def save_grant(self, handle: str, principal: str) -> None:
        ...

    def load_ciphertexts(self) -> list[tuple[str, str, str, int]]:
        """(handle, ledger_address, ciphertext, exponent) rows."""
        ...

    def load_grants(self) -> list[tuple[str, str]]:
        """(handle, principal) rows."""
        ...


__all__ = ["CiphertextStore", "LedgerStore", "StoredSettings", "StoredUser"]
