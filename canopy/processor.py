"""Stage execution.

run_stage performs a single stage of scraping:

1. merge the option layers (stage > call > defaults);
2. derive the cache key from the input context;
3. serve the processed result from cache unless a refresh is forced;
4. otherwise download the page (raw cache first, then the transport with
   retries), parse it, transform it and normalize the result;
5. store the normalized result in the processed cache.

download is the fetch-with-retry half of that contract.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from canopy.common.cache import CacheBackend
from canopy.common.exceptions import (
    MissingURLException,
    RetriesExhaustedException,
    TransientException,
)
from canopy.common.options import DEFAULT_OPTIONS, StageOptions
from canopy.common.request_manager import SyncRequestManager
from canopy.common.urls import merge_urls
from canopy.data_types import CACHE_KEY, PROCESSOR, URL, Context, FetchError

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY = 60.0


def download(
    url: str,
    cache_key: str | None,
    html_cache: CacheBackend,
    force: bool,
    http_options: dict[str, Any],
    retries: int,
    request_manager: SyncRequestManager,
    retry_base_delay: float = 0.0,
) -> str | FetchError:
    """Return the body of ``url``, from the HTML cache if possible.

    On a cache miss (or when ``force`` is set) the page is fetched, trying up
    to ``retries`` times while the transport fails transiently. A successful
    body is stored under ``cache_key`` before being returned.

    Returns:
        The page body, or the FetchError the transport returned for a
        non-2xx response. Error responses are never retried.

    Raises:
        RetriesExhaustedException: If every attempt failed transiently.
    """
    if cache_key and not force:
        cached = html_cache.load_raw(cache_key)
        if cached is not None:
            return cached

    logger.info(f"Downloading {url} -> {cache_key}")
    for attempt in range(retries):
        try:
            result = request_manager.fetch(url, http_options)
        except TransientException as e:
            logger.warning(
                f"{e.message}, retrying ({attempt + 1}/{retries})"
            )
            if retry_base_delay and attempt + 1 < retries:
                time.sleep(min(retry_base_delay * 2**attempt, MAX_RETRY_DELAY))
            continue

        if isinstance(result, FetchError):
            return result
        if cache_key:
            html_cache.save_raw(cache_key, result)
        return result

    raise RetriesExhaustedException(url, retries)


def ensure_seq(result: Any) -> list[Context]:
    """Wrap a single context in a list; turn None into an empty list."""
    if result is None:
        return []
    if isinstance(result, Mapping):
        return [dict(result)]
    return [dict(ctx) for ctx in result]


def ensure_processors(contexts: Iterable[Context]) -> list[Context]:
    """Drop contexts that name a stage but have no URL to fetch for it."""
    kept = []
    for ctx in contexts:
        if ctx.get(PROCESSOR) and not ctx.get(URL):
            logger.warning(f"Context has a processor but no URL, skipping: {ctx!r}")
            continue
        kept.append(ctx)
    return kept


def resolve_urls(contexts: Iterable[Context], base_url: str) -> list[Context]:
    """Resolve every context's URL against the URL of the page it came from."""
    return [
        {**ctx, URL: merge_urls(base_url, ctx[URL])} if ctx.get(URL) else ctx
        for ctx in contexts
    ]


def run_stage(
    stage_name: str,
    input_context: Context,
    call_options: StageOptions | None,
    stage_options: StageOptions | None,
) -> list[Context]:
    """Perform a single stage of scraping.

    Args:
        stage_name: Name of the stage, for logging.
        input_context: The context being expanded (without ``processor``).
        call_options: Options supplied by the caller of the scrape.
        stage_options: Options declared by the stage.

    Returns:
        The stage's child contexts.

    Raises:
        MissingURLException: If ``url_fn`` yields no URL.
        RetriesExhaustedException: If the page could not be downloaded.
        DefinitiveFetchException: From the default error handler.
    """
    options = DEFAULT_OPTIONS.merged_with(call_options, stage_options)
    if options.request_manager is None:
        raise ValueError(
            f"{stage_name}: no request_manager configured; run stages through "
            "the driver or pass one in the call options"
        )

    html_cache = options.html_cache_backend()
    processed_cache = options.processed_cache_backend()
    cache_key_fn = options.cache_key_function()
    cache_key = cache_key_fn(input_context) if cache_key_fn else None
    force = options.update and options.updatable

    if cache_key and not force:
        cached = processed_cache.load_value(cache_key)
        if cached is not None:
            return cached

    url = options.url_fn(input_context)
    if not url:
        raise MissingURLException(stage_name, input_context)
    context = {**input_context, URL: url, CACHE_KEY: cache_key}

    src = download(
        url,
        cache_key,
        html_cache,
        force,
        options.http_options,
        options.retries,
        options.request_manager,
        options.retry_base_delay,
    )

    if isinstance(src, FetchError):
        processed = ensure_seq(options.error_handler(url, src))
    else:
        document = options.parse_fn(src, context)
        processed = ensure_seq(options.process_fn(document, context))
        processed = resolve_urls(ensure_processors(processed), url)

    if cache_key:
        processed_cache.save_value(cache_key, processed)
    else:
        logger.info(f"{stage_name}: not caching since no cache key is configured")

    return processed
