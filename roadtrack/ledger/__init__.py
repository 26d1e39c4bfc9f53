"""Confidential driving-score ledger.

Users submit one encrypted safety score per day. The ledger keeps each
user's history, streak, encrypted running total and encrypted trend;
only the owner can have those values decrypted, through the coprocessor.

- confidential: Paillier-backed ConfidentialValue handles and the Coprocessor
- ledger: ScoreLedger (cadence, streaks, aggregates, admin test mode)
- store: SQLAlchemy persistence
- api: authenticated HTTP server and client
"""

from .confidential import ConfidentialValue, Coprocessor, encrypt_input
from .errors import (
    AccessDenied,
    CadenceViolation,
    IndexOutOfRange,
    InvalidProof,
    LedgerError,
    NoRecords,
    NoTrend,
    NotInTestMode,
    Unauthorized,
    UnknownHandle,
)
from .ledger import EMPTY_HANDLE, ScoreLedger
from .models import DecryptionAuthorization, EncryptedInput, MileageLevel
from .state import LedgerConfig, Record, UserState, UserStats

__all__ = [
    "EMPTY_HANDLE",
    "AccessDenied",
    "CadenceViolation",
    "ConfidentialValue",
    "Coprocessor",
    "DecryptionAuthorization",
    "EncryptedInput",
    "IndexOutOfRange",
    "InvalidProof",
    "LedgerConfig",
    "LedgerError",
    "MileageLevel",
    "NoRecords",
    "NoTrend",
    "NotInTestMode",
    "Record",
    "ScoreLedger",
    "Unauthorized",
    "UnknownHandle",
    "UserState",
    "UserStats",
    "encrypt_input",
]
