"""Exception types raised by the REMORES and Canvas clients."""

from __future__ import annotations


class ScrapeError(Exception):
    """REMORES could not be reached, rejected us, or returned unusable markup."""


class ParseFailure(ScrapeError):
    """A named field could not be located in a REMORES page.

    Attributes:
        field: Name of the missing field (e.g. ``"date"``, ``"email"``).
        context: Short description of where the field was expected.
    """

    def __init__(self, field: str, context: str = "") -> None:
        self.field = field
        self.context = context
        message = f"Could not find '{field}' in REMORES response"
        if context:
            message += f" ({context})"
        super().__init__(message)


class ApiError(Exception):
    """A Canvas API call failed.

    Attributes:
        status: HTTP status code, or None when no response was received.
        message: Human readable description.
        url: The URL that was requested.
        retryable: Overrides the status-based is_transient when not None.
    """

    def __init__(self, status: int | None, message: str, url: str = "", retryable: bool | None = None) -> None:
        self.status = status
        self.message = message
        self.url = url
        self.retryable = retryable
        prefix = f"HTTP {status}" if status is not None else "Request failed"
        super().__init__(f"{prefix}: {message}" + (f" ({url})" if url else ""))

    @property
    def is_auth(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_transient(self) -> bool:
        """Connection failures, rate limiting and server errors are worth retrying."""
        if self.retryable is not None:
            return self.retryable
        return self.status is None or self.status == 429 or self.status >= 500


class DownloadCancelled(Exception):
    """The operator interrupted the run while a request or file write was in progress."""
