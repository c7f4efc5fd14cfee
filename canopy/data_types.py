"""Data types shared between stages, the stage executor and the driver.

A scrape is a tree of contexts. A context is a plain dict; the reserved keys
below have meaning to the driver and the stage executor, every other key is
data that flows from parent to child down the tree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

Context = dict[str, Any]

# Reserved context keys
PROCESSOR = "processor"
URL = "url"
CACHE_KEY = "cache_key"


class FailureKind(Enum):
    """How a failure is treated by the fetch loop and the driver.

    Values:
        TRANSIENT: Retried up to the stage's retry bound.
        DEFINITIVE: Not retried; handed to the stage's error handler.
        FATAL: Aborts the run.
    """

    TRANSIENT = "transient"
    DEFINITIVE = "definitive"
    FATAL = "fatal"


@dataclass(frozen=True)
class FetchError:
    """A well-formed error response from the transport.

    Returned (not raised) by the transport for non-2xx responses, so the
    retry loop can hand it to the stage's error handler untouched.

    Attributes:
        url: The URL that was fetched.
        status_code: HTTP status code of the response.
        headers: Response headers.
        body: Decoded response body, which may carry an error page.
    """

    url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def kind(self) -> FailureKind:
        return FailureKind.DEFINITIVE

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


@dataclass(frozen=True)
class StageInfo:
    """Metadata about a registered stage.

    Used by the CLI to list the stages a module defines.

    Attributes:
        name: The bare stage name.
        qualified_name: ``module.path:name`` identifier.
        cache_template: The stage's cache template, if any.
        cached: Whether the stage derives a cache key at all.
        updatable: Whether the stage honours the ``update`` call option.
        cache_fields: Context fields the cache template reads.
    """

    name: str
    qualified_name: str
    cache_template: str | None
    cached: bool
    updatable: bool
    cache_fields: tuple[str, ...] = ()
