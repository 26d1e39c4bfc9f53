"""SQLAlchemy-backed LedgerStore and CiphertextStore.

One database holds both the ledger tables and the coprocessor tables.
Each save runs in its own transaction; save_user writes the derived state,
any new records and the owner grants together.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .interface import StoredSettings, StoredUser
from .schema import (
    AccessGrantRow,
    Base,
    CiphertextRow,
    LedgerSettingsRow,
    ScoreRecordRow,
    UserStateRow,
)

if TYPE_CHECKING:
    from roadtrack.ledger.state import LedgerConfig, UserState


def _handle(value) -> str | None:
    return value.handle if value is not None else None


class SqlLedgerStore:
    """Relational persistence for ledger state, ciphertexts and grants."""

    def __init__(self, url: str = "sqlite:///roadtrack.db", echo: bool = False):
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # Single shared connection so every session sees the same DB
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(self.engine, expire_on_commit=False)

    def close(self) -> None:
        self.engine.dispose()

    # -- LedgerStore --

    def load_settings(self) -> StoredSettings | None:
        with self._session() as session:
            row = session.get(LedgerSettingsRow, 1)
            if row is None:
                return None
            return StoredSettings(address=row.address, admin=row.admin, test_mode=row.test_mode)

    def save_settings(self, config: LedgerConfig) -> None:
        with self._session.begin() as session:
            session.merge(LedgerSettingsRow(
                id=1,
                address=config.address,
                admin=config.admin,
                test_mode=config.test_mode,
            ))

    def save_user(
        self, user: str, state: UserState, grants: list[tuple[str, str]] | None = None,
    ) -> None:
        with self._session.begin() as session:
            session.merge(UserStateRow(
                user=user,
                last_submit_time=state.last_submit_time,
                consecutive_days=state.consecutive_days,
                running_count=state.running_count,
                running_total_handle=_handle(state.running_total),
                previous_score_handle=_handle(state.previous_score),
                current_score_handle=_handle(state.current_score),
                trend_handle=_handle(state.trend),
            ))
            persisted = session.scalar(
                select(func.count()).select_from(ScoreRecordRow).where(ScoreRecordRow.user == user)
            ) or 0
            for seq, record in enumerate(state.records[persisted:], start=persisted):
                session.add(ScoreRecordRow(
                    user=user,
                    seq=seq,
                    timestamp=record.timestamp,
                    mileage_level=record.mileage_level,
                    score_handle=record.score.handle,
                ))
            for handle, principal in grants or []:
                session.merge(AccessGrantRow(handle=handle, principal=principal))

    def load_users(self) -> dict[str, StoredUser]:
        with self._session() as session:
            states = session.scalars(select(UserStateRow)).all()
            records = session.scalars(
                select(ScoreRecordRow).order_by(ScoreRecordRow.user, ScoreRecordRow.seq)
            ).all()

        users = {
            row.user: StoredUser(
                last_submit_time=row.last_submit_time,
                consecutive_days=row.consecutive_days,
                running_count=row.running_count,
                running_total_handle=row.running_total_handle,
                previous_score_handle=row.previous_score_handle,
                current_score_handle=row.current_score_handle,
                trend_handle=row.trend_handle,
            )
            for row in states
        }
        for rec in records:
            stored = users.get(rec.user)
            if stored is not None:
                stored.records.append((rec.timestamp, rec.mileage_level, rec.score_handle))
        return users

    # -- CiphertextStore --

    def save_ciphertext(
        self, handle: str, ledger_address: str, ciphertext: str, exponent: int,
    ) -> None:
        with self._session.begin() as session:
            session.merge(CiphertextRow(
                handle=handle,
                ledger_address=ledger_address,
                ciphertext=ciphertext,
                exponent=exponent,
            ))

    def save_grant(self, handle: str, principal: str) -> None:
        with self._session.begin() as session:
            session.merge(AccessGrantRow(handle=handle, principal=principal))

    def load_ciphertexts(self) -> list[tuple[str, str, str, int]]:
        with self._session() as session:
            rows = session.scalars(select(CiphertextRow)).all()
        return [(r.handle, r.ledger_address, r.ciphertext, r.exponent) for r in rows]

    def load_grants(self) -> list[tuple[str, str]]:
        with self._session() as session:
            rows = session.scalars(select(AccessGrantRow)).all()
        return [(r.handle, r.principal) for r in rows]


__all__ = ["SqlLedgerStore"]
