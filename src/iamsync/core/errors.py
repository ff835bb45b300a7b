"""
Error taxonomy for iamsync.

Record-level errors (InvalidRecord, EmptyDerivedKey) are collected as values
and never abort a run. GraphIntegrityViolation aborts before any remote call.
RemoteCallFailed is raised by service adapters and turned into a FAILED
outcome by the reconciler once retries are exhausted.
"""

from __future__ import annotations

from typing import Tuple


class IamSyncError(Exception):
    """Base error for iamsync."""


class ConfigError(IamSyncError):
    """Raised when runtime configuration cannot be resolved."""


class SourceError(IamSyncError):
    """Raised when the records file cannot be read."""


class KeyDerivationError(IamSyncError):
    """Raised when a key transform is unknown or misbehaves."""


class RecordError(IamSyncError):
    """Base for per-record rejections; carries the input row index."""

    def __init__(self, index: int, message: str) -> None:
        self.index = index
        super().__init__(f"row {index}: {message}")


class InvalidRecord(RecordError):
    """A raw record is missing required fields or has blank ones.

    Attributes:
        index: Position of the row in the input sequence.
        fields: Names of the offending fields, in required-field order.
    """

    def __init__(self, index: int, fields: Tuple[str, ...]) -> None:
        self.fields = tuple(fields)
        super().__init__(index, "missing or blank field(s): " + ", ".join(self.fields))


class EmptyDerivedKey(RecordError):
    """The key transform produced an empty string for an identity."""

    def __init__(self, index: int, display_name: str) -> None:
        self.display_name = display_name
        super().__init__(index, f"derived key is empty for {display_name!r}")


class GraphIntegrityViolation(IamSyncError):
    """The desired-state graph broke one of its own invariants (builder bug)."""


class RemoteCallFailed(IamSyncError):
    """A call to the remote IAM service failed.

    Attributes:
        operation: Service method name (e.g. ``create_user``).
        resource: User key or group name the call targeted.
        retryable: True for throttling, 5xx and transport errors.
        code: Provider error code when known.
    """

    def __init__(
        self,
        operation: str,
        resource: str,
        message: str,
        *,
        retryable: bool = False,
        code: str = "",
    ) -> None:
        self.operation = operation
        self.resource = resource
        self.retryable = retryable
        self.code = code
        self.message = message
        super().__init__(f"{operation}({resource}) failed: {message}")


class DependencySkipped(IamSyncError):
    """An operation was not attempted because a prerequisite did not apply."""

    def __init__(self, missing: Tuple[str, ...]) -> None:
        self.missing = tuple(missing)
        super().__init__("dependency-failed: " + ", ".join(self.missing))
