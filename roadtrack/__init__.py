"""Road safety driving-score ledger with confidential scores."""

__version__ = "0.1.0"
