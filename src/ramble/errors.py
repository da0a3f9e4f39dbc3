"""
Ramble error taxonomy.

Transient errors (``is_transient = True``) are retried by rotating the
endpoint pool. Retrieval also rotates on PinRejected. Everything else is
surfaced to the caller immediately.
"""

from __future__ import annotations

from typing import Any, Optional


class RambleError(Exception):
    """Base exception for ramble errors."""

    is_transient: bool = False


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StoreError(RambleError):
    """Base exception for content store failures."""

    def __init__(self, message: str, endpoint: Optional[Any] = None):
        super().__init__(message)
        self.endpoint = endpoint


class StoreUnavailable(StoreError):
    """Raised when a storage node cannot be reached."""

    is_transient = True


class StoreRejected(StoreError):
    """Raised when a storage node refuses an add."""
    pass


class NotFoundOrEmpty(StoreError):
    """Raised when a node answers but has no content for the hash (yet)."""

    is_transient = True


class PinRejected(StoreError):
    """Raised when a storage node refuses to pin a hash."""
    pass


# =============================================================================
# PAYLOAD / RETRY ERRORS
# =============================================================================


class MalformedPayload(RambleError):
    """Raised when fetched content is not a JSON object envelope."""
    pass


class StorageExhausted(RambleError):
    """Raised when every endpoint in the pool has been tried."""

    def __init__(self, message: str, attempts: int = 0, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class BroadcastFailed(RambleError):
    """Raised when replicating a payload to one endpoint fails."""

    def __init__(self, message: str, endpoint: Optional[Any] = None, cause: Optional[Exception] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.cause = cause


# =============================================================================
# LEDGER ERRORS
# =============================================================================


class LedgerError(RambleError):
    """Base exception for ledger collaborator failures."""
    pass


class LedgerQueryFailed(LedgerError):
    """Raised when a ledger query returns an error."""
    pass


class NoLogs(LedgerError):
    """Raised when a log query returns nothing to correlate."""
    pass


# =============================================================================
# CALLER ERRORS
# =============================================================================


class ParameterError(RambleError, ValueError):
    """Raised synchronously when the caller supplies malformed arguments."""
    pass
