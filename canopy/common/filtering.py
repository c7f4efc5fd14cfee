"""Per-level filtering and post-processing of contexts.

The driver applies both to every sequence of contexts it is about to expand,
at every depth of the scrape tree, using the same call options each time.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from canopy.common.options import StageOptions
    from canopy.data_types import Context


def allows(m1: Mapping[str, Any], m2: Mapping[str, Any]) -> bool:
    """True if all keys in m1 that are also in m2 have equal values in both."""
    return all(m1[k] == m2[k] for k in m1.keys() & m2.keys())


def _patterns(only: Any) -> list[Mapping[str, Any]]:
    if isinstance(only, Mapping):
        return [only]
    return list(only)


def filter_contexts(
    contexts: Iterable[Context], options: StageOptions
) -> Iterable[Context]:
    """Keep the contexts accepted by the ``only`` option.

    ``only`` is either a predicate over a context, or one or more pattern
    maps; a context passes if it is compatible (see :func:`allows`) with at
    least one pattern.
    """
    only = options.only
    if only is None:
        return contexts
    if callable(only):
        return filter(only, contexts)
    patterns = _patterns(only)
    return (ctx for ctx in contexts if any(allows(p, ctx) for p in patterns))


def postprocess_contexts(
    contexts: Iterable[Context], options: StageOptions
) -> Iterable[Context]:
    """Apply the ``postprocess`` option, if set."""
    if options.postprocess is None:
        return contexts
    return options.postprocess(contexts)


def prepare_contexts(
    contexts: Iterable[Context], options: StageOptions
) -> Iterator[Context]:
    """Filter then post-process a sequence of contexts."""
    return iter(postprocess_contexts(filter_contexts(contexts, options), options))
