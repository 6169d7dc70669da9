"""Core utilities shared between the sync engine and adapters."""

from .async_utils import pause, run_sync
from .errors import (
    AdapterError,
    AdapterFailure,
    ErrorKind,
    PersistenceError,
    PreconditionError,
    SyncError,
    describe_error,
)

__all__ = [
    "AdapterError",
    "AdapterFailure",
    "ErrorKind",
    "PersistenceError",
    "PreconditionError",
    "SyncError",
    "describe_error",
    "pause",
    "run_sync",
]
