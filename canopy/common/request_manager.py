"""Request manager for fetching pages.

SyncRequestManager encapsulates the httpx client and is the single place
where transport outcomes are classified:

- a 2xx response is returned as its decoded body (str);
- any other status is returned as a FetchError value (definitive, not retried);
- timeouts and dropped connections raise TransientException subclasses;
- every other transport fault raises FetchFailedException.

Per-request options (``http_options``) are passed through from the stage.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from canopy.common.exceptions import (
    FetchFailedException,
    NetworkException,
    RequestTimeoutException,
)
from canopy.data_types import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class SyncRequestManager:
    """Manages HTTP requests for the synchronous driver.

    Example::

        with SyncRequestManager(timeout=10.0) as manager:
            body = manager.fetch("https://example.com/", {})
    """

    def __init__(
        self,
        timeout: float | None = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the request manager.

        Args:
            timeout: Default request timeout in seconds. None means no timeout.
            headers: Headers sent with every request.
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
                in tests.
        """
        self.timeout = timeout
        self._client = httpx.Client(
            timeout=timeout,
            headers=headers,
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        self._client.close()

    def __enter__(self) -> SyncRequestManager:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def fetch(self, url: str, http_options: dict[str, Any]) -> str | FetchError:
        """Fetch a URL and return its body or a FetchError.

        Args:
            url: Absolute URL to fetch.
            http_options: Pass-through options. Recognized keys: ``timeout``,
                ``follow_redirects``, ``headers``, ``params``, ``cookies`` and
                ``encoding`` (overrides the charset httpx detects).

        Returns:
            The decoded body for 2xx responses, a FetchError otherwise.

        Raises:
            RequestTimeoutException: If the request times out.
            NetworkException: If the connection fails.
            FetchFailedException: For any other transport fault.
        """
        options = dict(http_options)
        encoding = options.pop("encoding", None)
        timeout = options.get("timeout", self.timeout)

        try:
            response = self._client.get(url, **options)
        except httpx.TimeoutException as e:
            raise RequestTimeoutException(url=url, timeout_seconds=timeout) from e
        except httpx.NetworkError as e:
            raise NetworkException(url=url, reason=str(e)) from e
        except (httpx.TransportError, httpx.InvalidURL) as e:
            raise FetchFailedException(url=url, reason=str(e)) from e

        if encoding:
            response.encoding = encoding

        if not response.is_success:
            logger.debug(f"HTTP {response.status_code} from {url}")
            return FetchError(
                url=url,
                status_code=response.status_code,
                headers=dict(response.headers),
                body=response.text,
            )

        return response.text
