"""Stage options and their layering.

Options come from three layers, merged with precedence::

    stage-declared > call-scoped > DEFAULT_OPTIONS

A layer only overrides the fields that were explicitly set on it, so
``StageOptions(retries=2)`` as call options changes the retry bound and
nothing else.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    PositiveInt,
)

from canopy.common.cache import CacheBackend, sanitize_cache
from canopy.common.checked_html import parse_html
from canopy.common.exceptions import DefinitiveFetchException
from canopy.common.request_manager import SyncRequestManager
from canopy.common.templating import format_template
from canopy.data_types import URL, Context, FetchError

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / "canopy-data"


def default_error_handler(url: str, error: FetchError) -> list[Context]:
    """Warn about 404s yielding empty results, raise on other errors."""
    if error.not_found:
        logger.warning(
            f"Download returned error 404 Not Found, pruning scrape tree: {url}"
        )
        return []
    raise DefinitiveFetchException(url, error)


def default_process_fn(document: Any, context: Context) -> Context:
    return {"document": document}


def default_url_fn(context: Context) -> str | None:
    return context.get(URL)


class StageOptions(BaseModel):
    """Configuration for running a stage.

    Attributes:
        cache_template: Template for the cache key (see format_template).
        cache_key_fn: Function deriving the cache key from the input context.
            Takes precedence over cache_template.
        error_handler: Called as ``error_handler(url, fetch_error)`` for
            non-2xx responses; its return value becomes the stage result.
        html_cache: Raw body cache. True for the default filesystem location,
            falsy for none, or a CacheBackend.
        processed_cache: Processed result cache, same conventions.
        parse_fn: ``parse_fn(body, context)`` returns a document.
        process_fn: ``process_fn(document, context)`` returns a context or
            an iterable of contexts.
        retries: Number of transport attempts per fetch.
        retry_base_delay: Base of the exponential backoff between attempts,
            in seconds. 0 retries immediately.
        updatable: Stage-level opt-in to forced refresh.
        update: Call-scoped request to refresh updatable stages.
        url_fn: Function returning the URL to fetch for a context.
        only: Predicate, pattern map, or list of pattern maps used to filter
            contexts at every level of the tree.
        postprocess: Transform applied to the contexts of every level.
        http_options: Passed through to the transport.
        request_manager: Transport used for fetching. The driver supplies one
            when this is unset.
        data_dir: Root directory of the default filesystem caches.
        compress_html: zstd-compress bodies in the default HTML cache.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True, extra="forbid", frozen=True
    )

    cache_template: str | None = None
    cache_key_fn: Callable[[Context], str] | None = None
    error_handler: Callable[[str, FetchError], Iterable[Context]] = (
        default_error_handler
    )
    html_cache: bool | CacheBackend | None = True
    processed_cache: bool | CacheBackend | None = True
    parse_fn: Callable[[str, Context], Any] = parse_html
    process_fn: Callable[[Any, Context], Any] = default_process_fn
    retries: PositiveInt = 5
    retry_base_delay: NonNegativeFloat = 0.0
    updatable: bool = False
    update: bool = False
    url_fn: Callable[[Context], str | None] = default_url_fn
    only: Any = None
    postprocess: Callable[[Iterable[Context]], Iterable[Context]] | None = None
    http_options: dict[str, Any] = Field(default_factory=dict)
    request_manager: SyncRequestManager | None = None
    data_dir: Path = DEFAULT_DATA_DIR
    compress_html: bool = False

    def explicit(self) -> dict[str, Any]:
        """Return the fields explicitly set on this layer."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def merged_with(self, *layers: StageOptions | None) -> StageOptions:
        """Return a copy with each layer's explicit fields applied in order."""
        update: dict[str, Any] = {}
        for layer in layers:
            if layer is not None:
                update.update(layer.explicit())
        if not update:
            return self
        return self.model_copy(update=update)

    def html_cache_backend(self) -> CacheBackend:
        return sanitize_cache(
            self.html_cache,
            self.data_dir / "cache" / "html",
            compress=self.compress_html,
        )

    def processed_cache_backend(self) -> CacheBackend:
        return sanitize_cache(
            self.processed_cache, self.data_dir / "cache" / "processed"
        )

    def cache_key_function(self) -> Callable[[Context], str] | None:
        """Return the function deriving cache keys, or None if uncached."""
        if self.cache_key_fn is not None:
            return self.cache_key_fn
        if self.cache_template is not None:
            template = self.cache_template
            return lambda context: format_template(template, context)
        return None


DEFAULT_OPTIONS = StageOptions()


def make_options(
    options: StageOptions | None = None, **overrides: Any
) -> StageOptions:
    """Build call options from an optional base plus keyword overrides.

    Example::

        make_options(html_cache=False, update=True)
    """
    if not overrides:
        return options or StageOptions()
    layer = StageOptions(**overrides)
    if options is None:
        return layer
    return options.merged_with(layer)
