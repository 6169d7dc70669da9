"""Tagged error types shared by the sync engine and its adapters.

Errors are classified by *kind* so callers branch on the category rather
than on message text:

- ``adapter`` -- a source or destination call failed (unreachable,
  unauthorized, not found, malformed response).  Reported per item.
- ``precondition`` -- required configuration is missing.  Normally
  surfaced as a ``skip`` action with a reason instead of being raised.
- ``persistence`` -- the state store or audit log could not be written.
  Always fatal for the run.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Category of a sync error."""

    ADAPTER = "adapter"
    PRECONDITION = "precondition"
    PERSISTENCE = "persistence"


class AdapterFailure(str, Enum):
    """Reason an adapter call failed."""

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"


# Corrective hints shown next to the error message in reports.
_HINTS: dict[str, str] = {
    AdapterFailure.UNAUTHORIZED.value: "Check the API token and its permissions.",
    AdapterFailure.NOT_FOUND.value: "Verify the object still exists on the remote side.",
    AdapterFailure.UNAVAILABLE.value: "Retry later or check connectivity.",
    AdapterFailure.MALFORMED.value: "The remote returned an unexpected response; check versions.",
    ErrorKind.PRECONDITION.value: "Check the sync configuration.",
    ErrorKind.PERSISTENCE.value: "Check free disk space and permissions of the data directory.",
}


class SyncError(Exception):
    """Base class for all errors raised by the sync core.

    Args:
        message: Human-readable description.
        kind: Error category.
    """

    kind: ErrorKind = ErrorKind.ADAPTER

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def hint(self) -> str:
        return _HINTS.get(self.kind.value, "")

    def to_dict(self) -> dict[str, Any]:
        """Structured form used in item results and run summaries."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "hint": self.hint,
        }


class AdapterError(SyncError):
    """A source or destination adapter call failed.

    Args:
        message: Human-readable description.
        reason: Why the call failed.
    """

    kind = ErrorKind.ADAPTER

    def __init__(
        self,
        message: str,
        reason: AdapterFailure = AdapterFailure.UNAVAILABLE,
    ) -> None:
        super().__init__(message)
        self.reason = reason

    @property
    def hint(self) -> str:
        return _HINTS.get(self.reason.value, "")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data


class PreconditionError(SyncError):
    """Required configuration for an operation is missing."""

    kind = ErrorKind.PRECONDITION


class PersistenceError(SyncError):
    """Durable state could not be read or written."""

    kind = ErrorKind.PERSISTENCE


def describe_error(exc: BaseException) -> dict[str, Any]:
    """Return a structured description of *exc* for run summaries.

    Non-``SyncError`` exceptions are reported with kind ``None`` and their
    class name so an unexpected failure is still distinguishable.
    """
    if isinstance(exc, SyncError):
        return exc.to_dict()
    return {
        "kind": None,
        "type": type(exc).__name__,
        "message": str(exc),
    }
