"""Exception hierarchy for tk-proxy."""

from __future__ import annotations

from typing import Any


class TkProxyError(Exception):
    """Base class for all tk-proxy errors."""


class ValidationError(TkProxyError):
    """Malformed or missing input in an upload, report file or configuration."""


class InvalidDurationError(ValidationError):
    """A duration string is not ``<positive-integer><s|m|h|d>``."""


class InvalidConfigError(ValidationError):
    """A configuration value is out of range."""


class InvalidClientIdError(ValidationError):
    """A client id is empty after trimming."""


class InvalidUploadError(ValidationError):
    """A capture upload body could not be accepted."""


class InvalidReportError(ValidationError):
    """A JSON document does not contain a usable report."""


class AuthorizationError(TkProxyError):
    """Bearer token missing or not matching."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NothingToMergeError(TkProxyError):
    """There is no data to build a combined report from."""


class EmptyInputError(NothingToMergeError):
    """``combine`` was called with no reports."""


class NoContributionRowsError(NothingToMergeError):
    """Every input report has zero daily contributions."""


class NoCapturesAvailableError(NothingToMergeError):
    """The server holds no client snapshots."""


class StorageError(TkProxyError):
    """A filesystem read or write failed."""


class CommandError(TkProxyError):
    """The tokscale CLI failed or produced unusable output."""


class SubmissionError(TkProxyError):
    """The remote accounting service rejected a submission or was unreachable."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload or {}
