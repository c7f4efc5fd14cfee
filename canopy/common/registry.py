"""Stage registry and identifier resolution.

Stages are identified by ``"module.path:name"`` strings, the same form the
CLI uses for seeds. A bare ``"name"`` is resolved against a default scope
(a module path), which the driver takes from the seed when the seed itself
is given as an identifier.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from canopy.common.exceptions import UnknownStageException
from canopy.data_types import Context, StageInfo

if TYPE_CHECKING:
    from canopy.common.decorators import Stage

logger = logging.getLogger(__name__)


def split_identifier(identifier: str) -> tuple[str | None, str]:
    """Split ``"module:name"`` into its parts; bare names have no module."""
    if ":" in identifier:
        module_path, name = identifier.rsplit(":", 1)
        return module_path or None, name
    return None, identifier


def _import_attribute(module_path: str, name: str, identifier: str) -> Any:
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise UnknownStageException(
            identifier, f"could not import module '{module_path}': {e}"
        ) from e
    try:
        return getattr(module, name)
    except AttributeError as e:
        raise UnknownStageException(
            identifier, f"module '{module_path}' has no attribute '{name}'"
        ) from e


class StageRegistry:
    """Mapping from qualified stage identifiers to Stage objects."""

    def __init__(self) -> None:
        self._stages: dict[str, Stage] = {}

    def register(self, stage: Stage) -> Stage:
        """Add a stage under its qualified name, replacing any previous one."""
        if stage.qualified_name in self._stages:
            logger.debug(f"Re-registering stage {stage.qualified_name}")
        self._stages[stage.qualified_name] = stage
        return stage

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._stages

    def __iter__(self):
        return iter(self._stages.values())

    def __len__(self) -> int:
        return len(self._stages)

    def unregister_module(self, module_path: str) -> None:
        """Forget every stage registered from ``module_path``."""
        for qualified_name in [
            q for q, s in self._stages.items() if s.module == module_path
        ]:
            del self._stages[qualified_name]

    def list_stages(self, module_path: str | None = None) -> list[StageInfo]:
        """Describe the registered stages, optionally for one module only."""
        return sorted(
            (
                s.info()
                for s in self._stages.values()
                if module_path is None or s.module == module_path
            ),
            key=lambda info: info.qualified_name,
        )

    def resolve(self, identifier: str, scope: str | None = None) -> Stage:
        """Resolve a stage identifier to a Stage.

        Args:
            identifier: ``"module.path:name"`` or a bare ``"name"``.
            scope: Module path bare names are resolved against. Without a
                scope, a bare name must match exactly one registered stage.

        Raises:
            UnknownStageException: If nothing (or more than one stage)
                matches.
        """
        from canopy.common.decorators import Stage

        module_path, name = split_identifier(identifier)
        module_path = module_path or scope

        if module_path is None:
            matches = [s for s in self._stages.values() if s.name == name]
            if len(matches) == 1:
                return matches[0]
            reason = (
                "no default scope and no registered stage with that name"
                if not matches
                else "ambiguous without a scope: "
                + ", ".join(sorted(s.qualified_name for s in matches))
            )
            raise UnknownStageException(identifier, reason)

        qualified_name = f"{module_path}:{name}"
        if qualified_name in self._stages:
            return self._stages[qualified_name]

        # Importing the module runs its @stage decorators
        attribute = _import_attribute(module_path, name, identifier)
        if not isinstance(attribute, Stage):
            raise UnknownStageException(
                identifier, f"'{qualified_name}' is not a stage"
            )
        return attribute


default_registry = StageRegistry()


def resolve_stage(
    identifier: str,
    scope: str | None = None,
    registry: StageRegistry | None = None,
) -> Stage:
    """Resolve ``identifier`` in ``registry`` (the default registry if None)."""
    if registry is None:
        registry = default_registry
    return registry.resolve(identifier, scope)


def resolve_seed(
    identifier: str, scope: str | None = None
) -> tuple[Iterable[Context], str | None]:
    """Resolve a seed identifier and call it.

    Args:
        identifier: ``"module.path:function"`` naming a zero-argument
            function that returns the seed contexts, or a bare name
            resolved against ``scope``.
        scope: Default module path for bare names.

    Returns:
        The seed contexts and the module path they came from, which becomes
        the default scope for the scrape.

    Raises:
        UnknownStageException: If the identifier can't be resolved.
    """
    module_path, name = split_identifier(identifier)
    module_path = module_path or scope
    if module_path is None:
        raise UnknownStageException(identifier, "seed needs a module path")
    seed_fn: Callable[[], Iterable[Context]] = _import_attribute(
        module_path, name, identifier
    )
    if not callable(seed_fn):
        raise UnknownStageException(identifier, "seed is not callable")
    return seed_fn(), module_path
