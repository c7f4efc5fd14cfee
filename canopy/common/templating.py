"""Micro-templating for cache keys.

Templates contain variable names introduced by a colon, e.g.
``"courts/:court-id/:page"``. Each name is looked up in the stage's input
context and substituted in place.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from canopy.common.exceptions import MissingTemplateFieldException

TOKEN_RE = re.compile(r":([a-z_-]+)")


def template_fields(template: str) -> list[str]:
    """Return the field names a template references, left to right.

    Hyphens in a token become underscores, so ``:court-id`` names the
    ``court_id`` field. Duplicates are kept.
    """
    return [m.group(1).replace("-", "_") for m in TOKEN_RE.finditer(template)]


def format_template(
    template: str, lookup: Mapping[str, Any] | Callable[[str], Any]
) -> str:
    """Fill in a template string with values from ``lookup``.

    Args:
        template: String with ``:name`` tokens.
        lookup: A mapping, or a callable taking a field name and returning
            its value.

    Returns:
        The template with each token replaced by ``str(value)``. Text
        outside tokens is kept verbatim.

    Raises:
        MissingTemplateFieldException: If a referenced field is absent from
            the mapping, or the callable returns None for it.

    Example::

        format_template(":group/:user/index", {"user": "joe", "group": "admins"})
        # => "admins/joe/index"
    """

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1).replace("-", "_")
        if callable(lookup):
            value = lookup(name)
        else:
            value = lookup.get(name)
        if value is None:
            raise MissingTemplateFieldException(template, name)
        return str(value)

    return TOKEN_RE.sub(substitute, template)
