from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""


class InvalidRequestError(LedgerError, ValueError):
    """Input rejected before the store was touched. Never retried."""


class StoreUnavailableError(LedgerError, RuntimeError):
    """A query needs durable state but no persistent store is configured."""


class LedgerInvariantError(LedgerError, RuntimeError):
    """The store broke its own uniqueness contract; treat as a bug."""
