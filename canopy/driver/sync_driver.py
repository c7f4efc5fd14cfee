"""Synchronous, demand-driven scrape driver.

The driver expands a sequence of contexts into a flat sequence of leaf
records. Every context naming a ``processor`` is expanded through that stage;
each child is merged over its parent (child keys win, every other parent key
is inherited), the children are filtered and post-processed with the call
options, and the result is expanded recursively. Contexts without a
processor are leaves and are yielded without their ``url``.

Everything is a generator: a page is only fetched when the consumer asks for
a leaf that needs it, so taking the first few records of a huge tree only
costs the fetches on the path to those records. Output order is depth-first
in input order.

Example usage::

    for record in scrape("myproject.site:seed", html_cache=False):
        print(record)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from canopy.common.decorators import Stage
from canopy.common.filtering import prepare_contexts
from canopy.common.options import StageOptions, make_options
from canopy.common.registry import StageRegistry, resolve_seed, resolve_stage
from canopy.common.request_manager import SyncRequestManager
from canopy.data_types import PROCESSOR, URL, Context

logger = logging.getLogger(__name__)

Seed = str | Iterable[Context]


def do_scrape(
    contexts: Iterable[Context],
    options: StageOptions,
    scope: str | None = None,
    registry: StageRegistry | None = None,
    stop_event: threading.Event | None = None,
) -> Iterator[Context]:
    """Lazily expand ``contexts`` into leaf records.

    Args:
        contexts: Contexts to expand, already filtered and post-processed.
        options: Call options, used by every stage and at every depth.
        scope: Default module path for bare stage names.
        registry: Stage registry (the global one if None).
        stop_event: When set, expansion stops before the next context.

    Yields:
        Leaf records, depth-first.

    Raises:
        UnknownStageException: When a context names an unknown stage.
    """
    for ctx in contexts:
        if stop_event is not None and stop_event.is_set():
            logger.info("Stop requested, not expanding further contexts")
            return

        processor = ctx.get(PROCESSOR)
        if not processor:
            yield {k: v for k, v in ctx.items() if k != URL}
            continue

        if isinstance(processor, Stage):
            stage = processor
        else:
            stage = resolve_stage(processor, scope, registry)
        input_context = {k: v for k, v in ctx.items() if k != PROCESSOR}
        children = stage(input_context, options)
        merged = ({**input_context, **child} for child in children)
        yield from do_scrape(
            prepare_contexts(merged, options),
            options,
            scope,
            registry,
            stop_event,
        )


class SyncDriver:
    """Runs a scrape from a seed and reports its lifecycle.

    The driver owns the transport for the duration of the run unless one is
    passed in, either directly or through the call options.

    Example usage::

        records = []
        driver = SyncDriver("myproject.site:seed", on_data=records.append)
        driver.run()
    """

    def __init__(
        self,
        seed: Seed,
        options: StageOptions | None = None,
        scope: str | None = None,
        registry: StageRegistry | None = None,
        request_manager: SyncRequestManager | None = None,
        on_data: Callable[[Context], None] | None = None,
        on_run_start: Callable[[str], None] | None = None,
        on_run_complete: Callable[[str, str, Exception | None], None]
        | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            seed: Seed contexts, or a ``"module.path:function"`` identifier
                naming a zero-argument function returning them.
            options: Call options applied to every stage.
            scope: Default module path for bare stage names. Defaults to the
                seed's module when the seed is an identifier.
            registry: Stage registry (the global one if None).
            request_manager: Transport to use if the options don't carry one.
            on_data: Invoked with each leaf record by run().
            on_run_start: Invoked with the seed name when the run starts.
            on_run_complete: Invoked with the seed name, the status
                ("completed", "stopped" or "error") and the error, if any.
            stop_event: When set, the driver stops before expanding the next
                context.
        """
        self.seed = seed
        self.options = options or StageOptions()
        self.scope = scope
        self.registry = registry
        self.request_manager = request_manager
        self.on_data = on_data
        self.on_run_start = on_run_start
        self.on_run_complete = on_run_complete
        self.stop_event = stop_event

    @property
    def seed_name(self) -> str:
        return self.seed if isinstance(self.seed, str) else "<contexts>"

    def _seed_contexts(self) -> tuple[Iterable[Context], str | None]:
        if isinstance(self.seed, str):
            contexts, seed_scope = resolve_seed(self.seed, self.scope)
            return contexts, self.scope or seed_scope
        return self.seed, self.scope

    def iter_records(self) -> Iterator[Context]:
        """Lazily produce the leaf records of the scrape."""
        if self.on_run_start:
            self.on_run_start(self.seed_name)

        options = self.options
        owned_manager: SyncRequestManager | None = None
        if options.request_manager is None:
            manager = self.request_manager
            if manager is None:
                manager = owned_manager = SyncRequestManager()
            options = options.merged_with(StageOptions(request_manager=manager))

        status = "completed"
        error: Exception | None = None
        try:
            contexts, scope = self._seed_contexts()
            yield from do_scrape(
                prepare_contexts(contexts, options),
                options,
                scope,
                self.registry,
                self.stop_event,
            )
            if self.stop_event is not None and self.stop_event.is_set():
                status = "stopped"
        except GeneratorExit:
            # The consumer stopped pulling records
            status = "stopped"
            raise
        except Exception as e:
            status = "error"
            error = e
            raise
        finally:
            if owned_manager is not None:
                owned_manager.close()
            if self.on_run_complete:
                self.on_run_complete(self.seed_name, status, error)

    def run(self) -> int:
        """Run the scrape to completion, passing each record to on_data.

        Returns:
            The number of leaf records produced.
        """
        count = 0
        for record in self.iter_records():
            if self.on_data:
                self.on_data(record)
            count += 1
        return count


def scrape(
    seed: Seed,
    options: StageOptions | None = None,
    *,
    scope: str | None = None,
    registry: StageRegistry | None = None,
    stop_event: threading.Event | None = None,
    **option_overrides: Any,
) -> Iterator[Context]:
    """Scrape from ``seed`` and lazily yield the leaf records.

    Args:
        seed: Seed contexts, or a ``"module.path:function"`` identifier.
        options: Base call options.
        scope: Default module path for bare stage names.
        registry: Stage registry (the global one if None).
        stop_event: Cooperative cancellation flag.
        **option_overrides: StageOptions fields applied over ``options``.

    Example::

        records = list(scrape(seed, html_cache=False, processed_cache=False))
    """
    driver = SyncDriver(
        seed,
        options=make_options(options, **option_overrides),
        scope=scope,
        registry=registry,
        stop_event=stop_event,
    )
    return driver.iter_records()
