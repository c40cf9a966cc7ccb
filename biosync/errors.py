"""
Error taxonomy for the sync engine.

Only ResetNotConfirmedError is meant to reach the caller; everything else is
logged and retried or falls back internally.
"""


class SyncError(Exception):
    """Base class for biosync errors."""

    retryable = False


class RemoteUnavailableError(SyncError):
    """Remote replica could not be reached. Retry on the next tick."""

    retryable = True


class ResetNotConfirmedError(SyncError):
    """reset_all() was called without explicit confirmation."""


class SessionClosedError(SyncError):
    """Operation attempted on a session that has been torn down."""
