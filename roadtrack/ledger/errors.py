"""Typed rejections for the score ledger and its confidential-value capability.

Every error is a synchronous precondition failure: the call is rejected and
no state is mutated. Each class carries a stable ``code`` so transports can
round-trip the exact reason (see ``error_from_code``).
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger rejections."""

    code = "ledger_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class CadenceViolation(LedgerError):
    """Second submission inside the 24h cadence window."""

    code = "cadence_violation"


class InvalidProof(LedgerError):
    """Encrypted input failed validity-proof verification."""

    code = "invalid_proof"


class Unauthorized(LedgerError):
    code = "unauthorized"


class NotInTestMode(LedgerError):
    code = "not_in_test_mode"


class IndexOutOfRange(LedgerError):
    code = "index_out_of_range"


class NoRecords(LedgerError):
    code = "no_records"


class NoTrend(LedgerError):
    """Fewer than two submissions exist for the user."""

    code = "no_trend"


class AccessDenied(LedgerError):
    """Decryption oracle refused to reveal a handle."""

    code = "access_denied"


class UnknownHandle(LedgerError):
    code = "unknown_handle"


_BY_CODE: dict[str, type[LedgerError]] = {
    cls.code: cls
    for cls in (
        CadenceViolation,
        InvalidProof,
        Unauthorized,
        NotInTestMode,
        IndexOutOfRange,
        NoRecords,
        NoTrend,
        AccessDenied,
        UnknownHandle,
    )
}


def error_from_code(code: str, message: str = "") -> LedgerError:
    """Rebuild a typed error from its wire code (unknown codes -> LedgerError)."""
    cls = _BY_CODE.get(code, LedgerError)
    return cls(message)


__all__ = [
    "AccessDenied",
    "CadenceViolation",
    "IndexOutOfRange",
    "InvalidProof",
    "LedgerError",
    "NoRecords",
    "NoTrend",
    "NotInTestMode",
    "Unauthorized",
    "UnknownHandle",
    "error_from_code",
]
