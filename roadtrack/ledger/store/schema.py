"""SQLAlchemy tables for ledger and coprocessor persistence."""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class LedgerSettingsRow(Base):
    """Singleton table holding the settings fixed at ledger creation.

    Always contains exactly one row (id=1).
    """

    __tablename__ = "ledger_settings"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        default=1,
        comment="Singleton row (always id=1)",
    )
    address: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Ledger address encrypted inputs are bound to",
    )
    admin: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="SS58 address of the admin principal",
    )
    test_mode: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Cadence bypass flag",
    )


class UserStateRow(Base):
    """Derived per-user state. Confidential values are stored as handles."""

    __tablename__ = "user_state"

    user: Mapped[str] = mapped_column(String, primary_key=True)
    last_submit_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    consecutive_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    running_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    running_total_handle: Mapped[str | None] = mapped_column(String(66))
    previous_score_handle: Mapped[str | None] = mapped_column(String(66))
    current_score_handle: Mapped[str | None] = mapped_column(String(66))
    trend_handle: Mapped[str | None] = mapped_column(String(66))


class ScoreRecordRow(Base):
    """Append-only submission records, ordered by seq within a user."""

    __tablename__ = "score_record"

    user: Mapped[str] = mapped_column(String, primary_key=True)
    seq: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        comment="0-based append index within the user's history",
    )
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mileage_level: Mapped[int] = mapped_column(Integer, nullable=False)
    score_handle: Mapped[str] = mapped_column(String(66), nullable=False)


class CiphertextRow(Base):
    __tablename__ = "ciphertext"

    handle: Mapped[str] = mapped_column(String(66), primary_key=True)
    ledger_address: Mapped[str] = mapped_column(String, nullable=False)
    ciphertext: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Paillier ciphertext as a decimal string",
    )
    exponent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AccessGrantRow(Base):
    __tablename__ = "access_grant"

    handle: Mapped[str] = mapped_column(String(66), primary_key=True)
    principal: Mapped[str] = mapped_column(String, primary_key=True)


__all__ = [
    "AccessGrantRow",
    "Base",
    "CiphertextRow",
    "LedgerSettingsRow",
    "ScoreRecordRow",
    "UserStateRow",
]
