"""Exceptions raised by pylistsync."""

from typing import Any, Optional


class ListSyncError(Exception):
    """Base exception for all pylistsync errors."""


class ListSyncConfigError(ListSyncError):
    """Configuration is missing or invalid."""


class LocalStorageError(ListSyncError):
    """A write or read against the local store failed.

    This is fatal to the calling operation and is never retried by the
    sync engine.
    """


class RemoteError(ListSyncError):
    """A remote gateway operation failed.

    Attributes:
        retriable: True when the operation may succeed on a later pass
            (network, rate limit, server error, or a failure that is not
            caused by the record itself).
        aborts_pass: True when the failure concerns the backend or the
            credentials rather than one record. The push pass stops and
            leaves every queued record untouched.
        status_code: HTTP status code, if the failure came from a response.
    """

    retriable = False
    aborts_pass = False

    def __init__(
        self,
        message: str,
        retriable: Optional[bool] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        if retriable is not None:
            self.retriable = retriable
        self.status_code = status_code


class RemoteNetworkError(RemoteError):
    """Connection, DNS or timeout failure."""

    retriable = True


class RemoteRateLimitError(RemoteError):
    """The backend rejected the request with 429."""

    retriable = True


class RemoteServerError(RemoteError):
    """5xx response from the backend."""

    retriable = True


class RemoteAuthenticationError(RemoteError):
    """Invalid or expired credentials."""

    retriable = True
    aborts_pass = True


class RemotePermissionError(RemoteError):
    """Credentials are valid but the row is not accessible."""

    retriable = True
    aborts_pass = True


class RemoteNotFoundError(RemoteError):
    """The collection does not exist (wrong URL or schema)."""

    retriable = True
    aborts_pass = True


class RemoteValidationError(RemoteError):
    """The backend rejected the payload (constraint or schema violation)."""


class RemoteInvalidResponseError(RemoteError):
    """The backend answered with something that is not the expected JSON.

    Typically a captive portal or proxy page.
    """

    retriable = True
    aborts_pass = True


class SyncIncompleteError(ListSyncError):
    """A manual sync finished with failures.

    Attributes:
        stats: Combined push/pull statistics of the failed sync
    """

    def __init__(self, message: str, stats: dict[str, Any]):
        super().__init__(message)
        self.stats = stats
