from .interface import CiphertextStore, LedgerStore, StoredSettings, StoredUser
from .sql import SqlLedgerStore

__all__ = [
    "CiphertextStore",
    "LedgerStore",
    "SqlLedgerStore",
    "StoredSettings",
    "StoredUser",
]
