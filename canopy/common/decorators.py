"""The @stage decorator.

A stage is a named unit of work: fetch one page, turn it into child
contexts. Decorating a transform function with @stage turns it into a Stage
object and registers it under ``"<module>:<name>"``::

    @stage(updatable=True)
    def number_page(page, context):
        for link in page.checked_xpath("//a", "links", min_count=0):
            yield {"processor": "number_page", "url": href(link)}

The decorated function becomes the stage's ``process_fn``; every other keyword
argument is a StageOptions field declared by the stage, which takes
precedence over the options of the scrape call.

A second stage can reuse a transform under different options::

    number_page_uncached = stage(process_number_page, name="number_page_uncached")
"""

from __future__ import annotations

from collections.abc import Callable
from functools import update_wrapper
from typing import Any, overload

from canopy.common.options import StageOptions
from canopy.common.registry import StageRegistry, default_registry
from canopy.common.templating import template_fields
from canopy.data_types import Context, StageInfo


class Stage:
    """A registered stage.

    Calling a stage runs it through the stage executor::

        children = my_stage({"url": "https://example.com/"}, call_options)

    Attributes:
        name: The bare stage name.
        module: Module path the stage is registered under.
        options: The options the stage declares.
    """

    def __init__(self, name: str, module: str, options: StageOptions) -> None:
        self.name = name
        self.module = module
        self.options = options

    @property
    def qualified_name(self) -> str:
        return f"{self.module}:{self.name}"

    def __repr__(self) -> str:
        return f"<Stage {self.qualified_name}>"

    def __call__(
        self, context: Context, call_options: StageOptions | None = None
    ) -> list[Context]:
        from canopy.processor import run_stage

        return run_stage(self.name, context, call_options, self.options)

    def info(self) -> StageInfo:
        template = self.options.cache_template
        return StageInfo(
            name=self.name,
            qualified_name=self.qualified_name,
            cache_template=template,
            cached=self.options.cache_key_function() is not None,
            updatable=self.options.updatable,
            cache_fields=tuple(template_fields(template)) if template else (),
        )


def define_stage(
    name: str,
    module: str,
    registry: StageRegistry | None = None,
    **options: Any,
) -> Stage:
    """Create and register a stage from options alone.

    Useful for stages whose ``process_fn`` is passed as an option or that
    rely on the default transform.
    """
    new_stage = Stage(name, module, StageOptions(**options))
    if registry is None:
        registry = default_registry
    return registry.register(new_stage)


@overload
def stage(func: Callable[..., Any], /, **kwargs: Any) -> Stage: ...


@overload
def stage(
    func: None = None, /, **kwargs: Any
) -> Callable[[Callable[..., Any]], Stage]: ...


def stage(
    func: Callable[..., Any] | None = None,
    /,
    *,
    name: str | None = None,
    module: str | None = None,
    registry: StageRegistry | None = None,
    **options: Any,
) -> Stage | Callable[[Callable[..., Any]], Stage]:
    """Turn a transform function into a registered Stage.

    Can be used as ``@stage``, ``@stage(...)`` or called directly with a
    function.

    Args:
        func: The transform, called as ``func(document, context)``.
        name: Stage name (default: the function's name).
        module: Module path to register under (default: the function's
            module).
        registry: Registry to add the stage to (default: the global one).
        **options: StageOptions fields declared by the stage.
    """

    def decorator(fn: Callable[..., Any]) -> Stage:
        new_stage = define_stage(
            name or fn.__name__,
            module or fn.__module__,
            registry=registry,
            process_fn=fn,
            **options,
        )
        update_wrapper(new_stage, fn, updated=())
        return new_stage

    if func is not None:
        return decorator(func)
    return decorator
