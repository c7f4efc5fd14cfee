"""Exception types for scrape errors.

Every error carries a ``kind`` telling the driver how it should be treated:

- TRANSIENT: the transport may succeed on retry (timeouts, dropped
  connections). Retried by the fetch loop, never seen by stages.
- DEFINITIVE: the server answered with a well-formed error. Never retried;
  routed to the stage's error handler.
- FATAL: the run cannot continue (configuration errors, exhausted retries,
  broken scraper assumptions).
"""

from typing import Any

from canopy.data_types import FailureKind


class CanopyException(Exception):
    """Base class for all canopy errors."""

    kind: FailureKind = FailureKind.FATAL


# --- Scraper assumptions -----------------------------------------------------


class ScraperAssumptionException(CanopyException):
    """A stage found a page that doesn't look the way it expected.

    Attributes:
        message: What was expected and what was found.
        request_url: URL of the offending page.
        context: Extra details (selector, counts, parser error, ...), listed
            one per line in the formatted message.
    """

    def __init__(
        self,
        message: str,
        request_url: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.request_url = request_url
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self.message, f"URL: {self.request_url}"]
        if self.context:
            lines.append("Context:")
            lines.extend(f"  {key}: {value}" for key, value in self.context.items())
        return "\n".join(lines)


def _describe_bounds(expected_min: int, expected_max: int | None) -> str:
    if expected_max is None:
        return f"at least {expected_min}"
    if expected_min == expected_max:
        return f"exactly {expected_min}"
    return f"between {expected_min} and {expected_max}"


class HTMLStructuralAssumptionException(ScraperAssumptionException):
    """A checked selector matched too few or too many nodes.

    Raised by CheckedHtmlElement. ``is_element_query`` is False for queries
    returning strings (text nodes, attribute values).
    """

    def __init__(
        self,
        selector: str,
        selector_type: str,
        description: str,
        expected_min: int,
        expected_max: int | None,
        actual_count: int,
        request_url: str,
        is_element_query: bool = True,
    ) -> None:
        self.selector = selector
        self.selector_type = selector_type
        self.description = description
        self.expected_min = expected_min
        self.expected_max = expected_max
        self.actual_count = actual_count
        self.is_element_query = is_element_query

        super().__init__(
            f"HTML structure mismatch: Expected "
            f"{_describe_bounds(expected_min, expected_max)} elements for "
            f"'{description}', but found {actual_count}",
            request_url,
            {
                "selector": selector,
                "selector_type": selector_type,
                "expected_min": expected_min,
                "expected_max": "unlimited"
                if expected_max is None
                else expected_max,
                "actual_count": actual_count,
                "is_element_query": is_element_query,
            },
        )


# --- Transport failures ------------------------------------------------------


class TransientException(CanopyException):
    """Base class for transport errors that might resolve on retry.

    The fetch loop catches these and tries again, up to the stage's
    ``retries`` bound.
    """

    kind = FailureKind.TRANSIENT


class RequestTimeoutException(TransientException):
    """The transport gave up waiting for ``url``.

    ``timeout_seconds`` is the effective timeout, or None when unbounded.
    """

    def __init__(self, url: str, timeout_seconds: float | None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is None:
            self.message = f"Request to {url} timed out"
        else:
            self.message = (
                f"Request to {url} timed out after {timeout_seconds}s"
            )
        super().__init__(self.message)


class NetworkException(TransientException):
    """Raised when the connection fails before a response arrives."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        self.message = f"Network error while fetching {url}: {reason}"
        super().__init__(self.message)


class FetchFailedException(CanopyException):
    """Raised for transport faults that retrying cannot fix.

    Invalid URLs, unsupported schemes and proxy misconfiguration end up here.
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        self.message = f"Unable to fetch {url}: {reason}"
        super().__init__(self.message)


class RetriesExhaustedException(CanopyException):
    """Raised when every fetch attempt for a URL failed transiently."""

    def __init__(self, url: str, retries: int) -> None:
        self.url = url
        self.retries = retries
        self.message = f"Maximum number of retries ({retries}) exceeded: {url}"
        super().__init__(self.message)


class DefinitiveFetchException(CanopyException):
    """Raised by the default error handler for non-404 error responses.

    Attributes:
        url: The URL that returned the error.
        status_code: The HTTP status code received.
        error: The FetchError value returned by the transport.
    """

    kind = FailureKind.DEFINITIVE

    def __init__(self, url: str, error: Any) -> None:
        self.url = url
        self.error = error
        self.status_code = error.status_code
        self.message = f"HTTP {error.status_code} from {url}"
        super().__init__(self.message)


# --- Configuration errors ----------------------------------------------------


class UnknownStageException(CanopyException):
    """Raised when a stage identifier cannot be resolved."""

    def __init__(self, identifier: str, reason: str = "") -> None:
        self.identifier = identifier
        self.reason = reason
        self.message = f"Unable to resolve stage: {identifier}"
        if reason:
            self.message = f"{self.message} ({reason})"
        super().__init__(self.message)


class MissingTemplateFieldException(CanopyException):
    """Raised when a cache-key template names a field the context lacks."""

    def __init__(self, template: str, field: str) -> None:
        self.template = template
        self.field = field
        self.message = (
            f"Cache template {template!r} references missing field {field!r}"
        )
        super().__init__(self.message)


class MissingURLException(CanopyException):
    """Raised when a stage is invoked on a context with no fetchable URL."""

    def __init__(self, stage_name: str, context: dict[str, Any]) -> None:
        self.stage_name = stage_name
        self.context = context
        self.message = f"{stage_name}: no URL to fetch for context {context!r}"
        super().__init__(self.message)
