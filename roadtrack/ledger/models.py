"""Pydantic models for the confidential score ledger wire format.

Two groups:
- Capability payloads: EncryptedInput (client -> ledger) and
  DecryptionAuthorization (owner -> decryption oracle)
- API views: request/response bodies used by the HTTP server and client
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, Field


HANDLE_PATTERN = r"^0x[0-9a-f]{64}$"


class MileageLevel(IntEnum):
    """Trip length bucket recorded next to each score."""

    UNKNOWN = 0
    SHORT = 1
    MEDIUM = 2
    LONG = 3

    @classmethod
    def describe(cls, level: int) -> "MileageLevel":
        """Map a stored level to a known bucket (out-of-range -> UNKNOWN)."""
        try:
            return cls(level)
        except ValueError:
            return cls.UNKNOWN


# ---------------------------------------------------------------------------
# Capability payloads
# ---------------------------------------------------------------------------


class EncryptedInput(BaseModel):
    """A client-encrypted score bound to one (ledger, user) pair."""

    handle: str = Field(pattern=HANDLE_PATTERN)
    ciphertext: str = Field(
        pattern=r"^[0-9]+$",
        description="Paillier ciphertext as a decimal string",
    )
    exponent: int = 0
    ledger_address: str = Field(min_length=1)
    user: str = Field(min_length=1)


class DecryptionAuthorization(BaseModel):
    """Owner-signed permission to reveal handles of the listed ledgers.

    Valid from start_timestamp for duration_days. The signature covers
    every other field.
    """

    user: str = Field(min_length=1)
    ledger_addresses: list[str] = Field(min_length=1)
    start_timestamp: int = Field(ge=0)
    duration_days: int = Field(ge=1, le=365)
    signature: str = ""

    def covers(self, now: int) -> bool:
        end = self.start_timestamp + self.duration_days * 86_400
        return self.start_timestamp <= now < end


# ---------------------------------------------------------------------------
# API views
# ---------------------------------------------------------------------------


class SubmitRequest(BaseModel):
    encrypted_score: EncryptedInput
    proof: str = Field(min_length=1)
    # uint8 width of the original record field; the ledger itself does not
    # restrict the value further.
    mileage_level: int = Field(ge=0, le=255)


class UserStatsView(BaseModel):
    user: str
    record_count: int = 0
    consecutive_days: int = 0
    last_submit_time: int = 0


class RecordView(BaseModel):
    index: int
    timestamp: int
    mileage_level: int
    score_handle: str


class RecordListView(BaseModel):
    user: str
    records: list[RecordView] = Field(default_factory=list)


class AverageDataView(BaseModel):
    """Encrypted running total and plaintext count (division is off-ledger)."""

    user: str
    total_handle: str
    count: int


class TrendView(BaseModel):
    user: str
    trend_handle: str


class LedgerInfo(BaseModel):
    address: str
    admin: str
    test_mode: bool
    public_key_n: str = Field(description="Paillier modulus as a decimal string")


class SetTestModeRequest(BaseModel):
    enabled: bool


class ResetSubmitTimeRequest(BaseModel):
    user: str = Field(min_length=1)


class RevealRequest(BaseModel):
    handle: str = Field(pattern=HANDLE_PATTERN)
    authorization: DecryptionAuthorization


class RevealResponse(BaseModel):
    handle: str
    value: int


class ErrorResponse(BaseModel):
    error: str
    detail: str = ""


class ScoreSummary(BaseModel):
    """Owner-side statistics over decrypted scores."""

    count: int = 0
    average: float | None = None
    highest: int | None = None
    lowest: int | None = None
    trend: int | None = None


__all__ = [
    "HANDLE_PATTERN",
    "AverageDataView",
    "DecryptionAuthorization",
    "EncryptedInput",
    "ErrorResponse",
    "LedgerInfo",
    "MileageLevel",
    "RecordListView",
    "RecordView",
    "ResetSubmitTimeRequest",
    "RevealRequest",
    "RevealResponse",
    "ScoreSummary",
    "SetTestModeRequest",
    "SubmitRequest",
    "TrendView",
    "UserStatsView",
]
