"""Page parsing and checked HTML querying.

The stage executor hands each downloaded body to the stage's ``parse_fn``.
This module provides the stock parse functions:

- parse_html: lxml document wrapped in CheckedHtmlElement (the default)
- parse_text: the body string itself
- parse_json: the decoded JSON value

CheckedHtmlElement validates selector results against expected counts, so a
site layout change surfaces as an HTMLStructuralAssumptionException instead
of silently producing empty records.
"""

from __future__ import annotations

import json
from typing import Any, overload

from lxml import html as lxml_html
from lxml.html import HtmlElement

from canopy.common.exceptions import (
    HTMLStructuralAssumptionException,
    ScraperAssumptionException,
)
from canopy.data_types import URL, Context


class CheckedHtmlElement:
    """An lxml element whose queries state how many matches they expect.

    Each query takes a description of what it selects plus ``min_count`` and
    ``max_count`` bounds. A result outside the bounds raises, naming the page
    URL, so broken assumptions about a site are caught where they are made.
    Other attributes are looked up on the wrapped element.

    Example::

        rows = page.checked_css("table.dockets tr", "docket rows")
        [title] = page.checked_xpath("//h1", "title", max_count=1)
    """

    def __init__(self, element: HtmlElement, url: str = "") -> None:
        self._element = element
        self.url = url

    @property
    def element(self) -> HtmlElement:
        return self._element

    def _mismatch(
        self,
        selector: str,
        selector_type: str,
        description: str,
        bounds: tuple[int, int | None],
        found: int,
        is_element_query: bool = True,
    ) -> HTMLStructuralAssumptionException:
        min_count, max_count = bounds
        return HTMLStructuralAssumptionException(
            selector=selector,
            selector_type=selector_type,
            description=description,
            expected_min=min_count,
            expected_max=max_count,
            actual_count=found,
            request_url=self.url,
            is_element_query=is_element_query,
        )

    def _wrap(self, results: list[Any]) -> list[CheckedHtmlElement]:
        return [
            CheckedHtmlElement(r, self.url)
            for r in results
            if isinstance(r, HtmlElement)
        ]

    @overload
    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
        *,
        type: type[str],
    ) -> list[str]: ...

    @overload
    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[CheckedHtmlElement]: ...

    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
        *,
        type: type[str] | None = None,
    ) -> list[CheckedHtmlElement] | list[str]:
        """Run an XPath query and check the number of matches.

        With ``type=str`` only string results (text nodes, attribute
        values) are kept and returned; otherwise only elements are.

        Raises:
            HTMLStructuralAssumptionException: If fewer than ``min_count`` or
                more than ``max_count`` results were kept.

        Example::

            hrefs = page.checked_xpath("//a/@href", "links", type=str)
        """
        raw = self._element.xpath(xpath)
        found: list[Any]
        if type is str:
            found = [str(r) for r in raw if isinstance(r, str)]
        else:
            found = self._wrap(raw)
        if not _within(len(found), min_count, max_count):
            raise self._mismatch(
                xpath,
                "xpath",
                description,
                (min_count, max_count),
                len(found),
                is_element_query=type is not str,
            )
        return found

    def checked_css(
        self,
        selector: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[CheckedHtmlElement]:
        """Run a CSS query and check the number of matches.

        An unparseable selector is reported like an empty result.
        """
        bounds = (min_count, max_count)
        try:
            found = self._wrap(self._element.cssselect(selector))
        except Exception as e:
            raise self._mismatch(selector, "css", description, bounds, 0) from e
        if not _within(len(found), min_count, max_count):
            raise self._mismatch(
                selector, "css", description, bounds, len(found)
            )
        return found

    def text(self) -> str:
        """Return the element's text content, whitespace-stripped."""
        return self._element.text_content().strip()

    def __getattr__(self, name: str) -> Any:
        # Copy and pickle protocol lookups must not reach the wrapped element
        if name.startswith("__") or name == "_element":
            raise AttributeError(name)
        return getattr(self._element, name)


def _within(count: int, min_count: int, max_count: int | None) -> bool:
    return count >= min_count and (max_count is None or count <= max_count)


def href(element: CheckedHtmlElement | HtmlElement | None) -> str | None:
    """Return the link target of an element.

    For an ``<a>`` element, its ``href``; for anything else, the ``href`` of
    the first ``<a>`` below it; None if there is no link.
    """
    if element is None:
        return None
    if isinstance(element, CheckedHtmlElement):
        element = element.element
    if element.tag == "a":
        return element.get("href")
    links = element.xpath(".//a")
    return href(links[0]) if links else None


def parse_html(body: str, context: Context) -> CheckedHtmlElement:
    """Parse a page body into a CheckedHtmlElement."""
    url = context.get(URL) or ""
    try:
        return CheckedHtmlElement(lxml_html.fromstring(body), url)
    except Exception as e:
        raise ScraperAssumptionException(
            f"Failed to parse HTML: {e}",
            request_url=url,
            context={"error": str(e)},
        ) from e


def parse_text(body: str, context: Context) -> str:
    """Return the page body unchanged."""
    return body


def parse_json(body: str, context: Context) -> Any:
    """Decode a JSON page body."""
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ScraperAssumptionException(
            f"Failed to parse JSON: {e}",
            request_url=context.get(URL) or "",
            context={"error": str(e)},
        ) from e
