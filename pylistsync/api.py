"""HTTP client for a PostgREST-compatible list backend."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import httpx

from .config import config
from .exceptions import (
    ListSyncConfigError,
    RemoteAuthenticationError,
    RemoteError,
    RemoteInvalidResponseError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemotePermissionError,
    RemoteRateLimitError,
    RemoteServerError,
    RemoteValidationError,
)
from .models import EntityKind
from .sync.gateway import ChangeCallback, ChangePoller
from .utils import (
    DEFAULT_HTTP_RETRIES,
    DEFAULT_RETRY_DELAY,
    format_timestamp,
    parse_iso_timestamp,
)

logger = logging.getLogger(__name__)


class RemoteClient:
    """Client for the remote list store.

    Implements the ``RemoteGateway`` contract used by the sync engine:
    rows are inserted with ``POST /{table}``, updated with
    ``PATCH /{table}?id=eq.{id}``, deleted with ``DELETE /{table}?id=eq.{id}``
    and pulled with ``GET /{table}?updated_at=gt.{ts}&order=updated_at.asc``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        max_retries: int = DEFAULT_HTTP_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        poll_interval: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: Optional API key (uses config if not provided)
            api_url: Optional API URL (uses config if not provided)
            max_retries: In-call retry attempts for transient errors (default: 2)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            poll_interval: Seconds between change polls of subscriptions
            transport: Optional httpx transport (used for testing)
        """
        self.api_key = api_key or config.api_key
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._transport = transport

        if not self.api_key:
            raise ListSyncConfigError(
                "API key not configured. "
                "Please set LISTSYNC_API_KEY or run 'listsync init'."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Extract the error message from a PostgREST error body."""
        try:
            if response.content:
                data = response.json()
                if isinstance(data, dict):
                    msg = (
                        data.get("message")
                        or data.get("error")
                        or data.get("details")
                        or data.get("hint")
                    )
                    if msg:
                        return f": {msg}"
        except ValueError:
            pass
        return ""

    def _map_http_error(self, e: httpx.HTTPStatusError) -> RemoteError:
        """Translate an HTTP error status into a RemoteError.

        Args:
            e: The HTTP error exception

        Returns:
            Exception to raise; its ``retriable`` flag tells the caller
            whether a later attempt may succeed
        """
        status_code = e.response.status_code
        detail = self._error_detail(e.response)

        if status_code == 401:
            return RemoteAuthenticationError(
                f"Invalid API key or unauthorized access{detail}",
                status_code=status_code,
            )
        if status_code == 403:
            return RemotePermissionError(
                f"Access forbidden{detail}", status_code=status_code
            )
        if status_code == 404:
            return RemoteNotFoundError(
                f"Resource not found{detail}", status_code=status_code
            )
        if status_code == 429:
            return RemoteRateLimitError(
                "Rate limit exceeded - please try again later",
                status_code=status_code,
            )
        if status_code in (400, 409, 422):
            return RemoteValidationError(
                f"Request rejected with status {status_code}{detail}",
                status_code=status_code,
            )
        if 500 <= status_code < 600:
            return RemoteServerError(
                f"Server error {status_code}{detail}", status_code=status_code
            )
        return RemoteError(
            f"API request failed with status {status_code}{detail}",
            retriable=True,
            status_code=status_code,
        )

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request with retry logic.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments passed to httpx

        Returns:
            Parsed JSON body, or None for empty responses

        Raises:
            RemoteError: If the request fails after all retries
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        last_exception: RemoteError | None = None
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                error = self._map_http_error(e)
                last_exception = error
                if (
                    error.retriable
                    and not error.aborts_pass
                    and attempt < self.max_retries
                ):
                    # Special handling for rate limits: use Retry-After header
                    retry_after = e.response.headers.get("Retry-After")
                    if isinstance(error, RemoteRateLimitError) and (
                        retry_after and retry_after.isdigit()
                    ):
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {endpoint} failed ({error}), "
                        f"retry {attempt + 1}/{self.max_retries} in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = RemoteNetworkError(f"Network error: {e}")
                last_exception = error
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {endpoint} network error, "
                        f"retry {attempt + 1}/{self.max_retries} in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                raise error from e

            if not response.content:
                return None

            content_type = response.headers.get("Content-Type", "")
            if "json" not in content_type:
                raise RemoteInvalidResponseError(
                    f"Unexpected response type: {content_type}"
                )
            try:
                return response.json()
            except ValueError as e:
                raise RemoteInvalidResponseError(
                    "Invalid JSON response from server"
                ) from e

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise RemoteError("Request failed after all retry attempts")

    # =========================
    # Row operations
    # =========================

    def insert(self, kind: EntityKind, record: dict[str, Any]) -> None:
        """Insert a row into the kind's collection.

        The insert is an upsert on ``id``, so repeating a create whose
        response was lost does not fail with a duplicate key.
        """
        kind = EntityKind(kind)
        self._request(
            "POST",
            f"/{kind.collection}",
            json=record,
            headers={"Prefer": "return=minimal,resolution=merge-duplicates"},
        )

    def update(
        self, kind: EntityKind, entity_id: str, partial_record: dict[str, Any]
    ) -> None:
        """Update the columns given in ``partial_record`` of one row."""
        kind = EntityKind(kind)
        self._request(
            "PATCH",
            f"/{kind.collection}",
            params={"id": f"eq.{entity_id}"},
            json=partial_record,
            headers={"Prefer": "return=minimal"},
        )

    def delete(self, kind: EntityKind, entity_id: str) -> None:
        """Delete one row by id."""
        kind = EntityKind(kind)
        self._request(
            "DELETE",
            f"/{kind.collection}",
            params={"id": f"eq.{entity_id}"},
        )

    def fetch_changes_since(
        self, kind: EntityKind, timestamp: datetime, limit: int
    ) -> list[dict[str, Any]]:
        """Fetch rows with ``updated_at`` newer than ``timestamp``.

        Args:
            kind: Entity kind to query
            timestamp: Exclusive lower bound
            limit: Maximum number of rows

        Returns:
            Rows ordered by updated_at ascending (empty if nothing changed)

        Raises:
            RemoteInvalidResponseError: If the body is not a list of rows
        """
        kind = EntityKind(kind)
        result = self._request(
            "GET",
            f"/{kind.collection}",
            params={
                "select": "*",
                "updated_at": f"gt.{format_timestamp(timestamp)}",
                "order": "updated_at.asc",
                "limit": str(limit),
            },
        )
        if result is None:
            return []
        if not isinstance(result, list) or not all(
            isinstance(row, dict) for row in result
        ):
            raise RemoteInvalidResponseError(
                f"Expected a list of rows from {kind.collection}"
            )
        return result

    def get_latest_updated_at(self, kind: EntityKind) -> datetime | None:
        """Return the newest ``updated_at`` of a collection, if any rows exist."""
        kind = EntityKind(kind)
        result = self._request(
            "GET",
            f"/{kind.collection}",
            params={
                "select": "updated_at",
                "order": "updated_at.desc",
                "limit": "1",
            },
        )
        if not result:
            return None
        return parse_iso_timestamp(result[0].get("updated_at"))

    def subscribe_to_changes(
        self, kinds: Iterable[EntityKind], callback: ChangeCallback
    ) -> ChangePoller:
        """Notify ``callback`` when a collection changes.

        Notifications are hints produced by polling the newest
        ``updated_at``; they carry no row data.

        Returns:
            Running poller; call ``close()`` to unsubscribe
        """
        return ChangePoller(
            probe=self.get_latest_updated_at,
            kinds=kinds,
            callback=callback,
            interval=self.poll_interval,
        ).start()

    def check_connection(self) -> bool:
        """Test whether the backend is reachable with the current credentials."""
        try:
            self._request(
                "GET", f"/{EntityKind.LISTS.collection}", params={"limit": "0"}
            )
            return True
        except RemoteError as e:
            logger.debug(f"Connection check failed: {e}")
            return False
