"""Confidential score ledger: submission cadence, streaks and encrypted aggregates.

Each user may submit one encrypted score per 24h. On acceptance the ledger
appends a record, extends the running total and count, recomputes the
trend as current - previous score and grants the submitter decrypt access
on every confidential value it now owns for them.

Submissions are serialized per user. Everything a submission changes is
computed on a fresh UserState first. The state and the owner grants are
persisted together (if a store is attached) and only then swapped in, so
readers never observe a partial update.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Callable

import bittensor as bt

from .confidential import ConfidentialValue, Coprocessor
from .errors import (
    CadenceViolation,
    IndexOutOfRange,
    NoRecords,
    NoTrend,
    NotInTestMode,
    Unauthorized,
)
from .models import EncryptedInput
from .signer import short_principal
from .state import LedgerConfig, Record, UserState, UserStats

if TYPE_CHECKING:
    from .store.interface import LedgerStore, StoredUser


# Returned for aggregates that were never initialized (no submissions yet).
EMPTY_HANDLE = "0x" + "0" * 64


class ScoreLedger:
    """Per-user encrypted score history with rolling aggregates."""

    def __init__(
        self,
        config: LedgerConfig,
        coprocessor: Coprocessor,
        store: LedgerStore | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.config = config
        self.coprocessor = coprocessor
        self._store = store
        self._clock = clock or (lambda: int(time.time()))
        self._users: dict[str, UserState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._config_lock = threading.Lock()

    @classmethod
    def restore(
        cls,
        config: LedgerConfig,
        coprocessor: Coprocessor,
        store: LedgerStore,
        clock: Callable[[], int] | None = None,
    ) -> ScoreLedger:
        """Rebuild a ledger from its store.

        Address, admin and test mode recorded at creation win over config.
        """
        persisted = store.load_settings()
        if persisted is None:
            store.save_settings(config)
        else:
            if (persisted.address, persisted.admin) != (config.address, config.admin):
                bt.logging.warning({"ledger_restore": {
                    "event": "config_overridden",
                    "address": persisted.address,
                    "admin": short_principal(persisted.admin),
                }})
            config.address = persisted.address
            config.admin = persisted.admin
            config.test_mode = persisted.test_mode

        coprocessor.restore()
        ledger = cls(config, coprocessor, store=store, clock=clock)
        for user, stored in store.load_users().items():
            ledger._users[user] = ledger._rebuild(stored)
        bt.logging.info({"ledger_restore": {"event": "restored", "users": len(ledger._users), "test_mode": config.test_mode}})
        return ledger

    def _rebuild(self, stored: StoredUser) -> UserState:
        def _value(handle: str | None) -> ConfidentialValue | None:
            return self.coprocessor.lookup(handle) if handle else None

        return UserState(
            records=[
                Record(timestamp, mileage_level, self.coprocessor.lookup(handle))
                for timestamp, mileage_level, handle in stored.records
            ],
            last_submit_time=stored.last_submit_time,
            consecutive_days=stored.consecutive_days,
            running_total=_value(stored.running_total_handle),
            running_count=stored.running_count,
            previous_score=_value(stored.previous_score_handle),
            current_score=_value(stored.current_score_handle),
            trend=_value(stored.trend_handle),
        )

    def _user_lock(self, user: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user)
            if lock is None:
                lock = self._locks[user] = threading.Lock()
            return lock

    def _commit(
        self, user: str, state: UserState, grants: list[tuple[str, str]] | None = None,
    ) -> None:
        """Persist state and grants in one step, then publish both.

        Nothing changes in memory if persisting fails.
        """
        grants = grants or []
        if self._store is not None:
            self._store.save_user(user, state, grants)
        else:
            self.coprocessor.persist_grants(grants)
        self.coprocessor.apply_grants(grants)
        self._users[user] = state

    # -- Submission --

    def submit(
        self,
        caller: str,
        encrypted_score: EncryptedInput,
        proof: str,
        mileage_level: int,
    ) -> UserStats:
        """Accept one encrypted score from caller.

        Raises CadenceViolation inside the 24h window (unless test mode is
        on) and InvalidProof when the coprocessor rejects the input.
        """
        with self._user_lock(caller):
            now = self._clock()
            current = self._users.get(caller)
            last = current.last_submit_time if current else 0

            if (
                not self.config.test_mode
                and last != 0
                and now - last < self.config.cadence_seconds
            ):
                bt.logging.info({"ledger_submit": {"event": "rejected", "user": short_principal(caller), "reason": "cadence", "elapsed": now - last}})
                raise CadenceViolation("only one submission per day")

            score = self.coprocessor.verify_input(
                encrypted_score, proof, self.config.address, caller,
            )
            updated = self._apply(current or UserState(), score, mileage_level, now)
            self._commit(caller, updated, self._owner_grants(caller, updated))

        bt.logging.info({"ledger_submit": {
            "event": "accepted",
            "user": short_principal(caller),
            "records": updated.record_count,
            "streak": updated.consecutive_days,
            "handle": score.handle[:18],
        }})
        return UserStats(updated.record_count, updated.consecutive_days, updated.last_submit_time)

    def _apply(
        self,
        prev: UserState,
        score: ConfidentialValue,
        mileage_level: int,
        now: int,
    ) -> UserState:
        if not prev.records:
            streak = 1
        elif now - prev.last_submit_time <= self.config.streak_grace_seconds:
            streak = prev.consecutive_days + 1
        else:
            streak = 1

        total = score if prev.running_total is None else prev.running_total.add(score)
        previous = prev.current_score
        # Recomputed from the last two scores, never accumulated.
        trend = score.subtract(previous) if previous is not None else None

        return UserState(
            records=[*prev.records, Record(now, mileage_level, score)],
            last_submit_time=now,
            consecutive_days=streak,
            running_total=total,
            running_count=prev.running_count + 1,
            previous_score=previous,
            current_score=score,
            trend=trend,
        )

    def _owner_grants(self, owner: str, state: UserState) -> list[tuple[str, str]]:
        return self.coprocessor.missing_grants(
            [state.current_score, state.running_total, state.trend], owner,
        )

    # -- Admin switch --

    @property
    def admin(self) -> str:
        return self.config.admin

    def is_test_mode(self) -> bool:
        return self.config.test_mode

    def set_test_mode(self, caller: str, enabled: bool) -> None:
        if caller != self.config.admin:
            bt.logging.warning({"ledger_admin": {"event": "rejected", "op": "set_test_mode", "caller": short_principal(caller)}})
            raise Unauthorized("only the admin can change test mode")

        with self._config_lock:
            if self._store is not None:
                self._store.save_settings(replace(self.config, test_mode=enabled))
            self.config.test_mode = enabled
        bt.logging.info({"ledger_admin": {"event": "test_mode", "enabled": enabled}})

    def reset_submit_time(self, caller: str, user: str) -> None:
        """Clear user's cadence gate. Streak, records and aggregates are kept."""
        if caller != self.config.admin:
            bt.logging.warning({"ledger_admin": {"event": "rejected", "op": "reset_submit_time", "caller": short_principal(caller)}})
            raise Unauthorized("only the admin can reset submit times")
        if not self.config.test_mode:
            raise NotInTestMode("test mode is not enabled")

        with self._user_lock(user):
            current = self._users.get(user)
            if current is None:
                bt.logging.debug({"ledger_admin": {"event": "reset_noop", "user": short_principal(user)}})
                return
            self._commit(user, replace(current, last_submit_time=0))
        bt.logging.info({"ledger_admin": {"event": "submit_time_reset", "user": short_principal(user)}})

    # -- Queries --

    def _state(self, user: str) -> UserState:
        return self._users.get(user) or UserState()

    def get_user_stats(self, user: str) -> UserStats:
        state = self._state(user)
        return UserStats(state.record_count, state.consecutive_days, state.last_submit_time)

    def get_record_count(self, user: str) -> int:
        return self._state(user).record_count

    def get_record(self, user: str, index: int) -> tuple[int, int, str]:
        """(timestamp, mileage_level, score_handle) of the index-th record."""
        records = self._state(user).records
        if not 0 <= index < len(records):
            raise IndexOutOfRange(f"record index {index} out of range ({len(records)} records)")
        record = records[index]
        return record.timestamp, record.mileage_level, record.score.handle

    def get_latest_record(self, user: str) -> Record:
        records = self._state(user).records
        if not records:
            raise NoRecords("user has no records")
        return records[-1]

    def get_average_data(self, user: str) -> tuple[str, int]:
        """(running_total_handle, running_count). Division is left to the owner."""
        state = self._state(user)
        if state.running_total is None:
            return EMPTY_HANDLE, 0
        return state.running_total.handle, state.running_count

    def get_trend(self, user: str) -> str:
        trend = self._state(user).trend
        if trend is None:
            raise NoTrend("at least two submissions are required")
        return trend.handle


__all__ = ["EMPTY_HANDLE", "ScoreLedger"]
