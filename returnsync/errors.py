"""
Error types raised by the sync engine.

Per-item and per-message errors are caught where they occur and degrade to
"no change" for that item. Only DeadlineExceeded and whole-subtask failures
reach the run outcome.
"""


class SyncError(Exception):
    """Base class for sync engine errors."""


class AuthError(SyncError):
    """Missing, invalid or unrefreshable OAuth token."""


class NetworkError(SyncError):
    """A single remote call failed. Retried on the next run, never mid-run."""


class DecodeError(SyncError):
    """A response or message could not be decoded."""


class DeadlineExceeded(SyncError):
    """The run's safety deadline elapsed before the work finished."""


class SchedulingDenied(SyncError):
    """The host refused a job registration or scheduling request."""
