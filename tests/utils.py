"""Test utilities shared by the canopy tests."""

from collections.abc import Callable
from typing import Any

import httpx


def collect_results() -> tuple[Callable[[Any], None], list[Any]]:
    """Create a callback that collects results in a list.

    Returns:
        A tuple of (callback_function, results_list).

    Example:
        callback, results = collect_results()
        driver = SyncDriver(seed, on_data=callback)
        driver.run()
        assert len(results) > 0
    """
    results: list[Any] = []

    def callback(data: Any) -> None:
        results.append(data)

    return callback, results


class FakeSite:
    """An in-memory website served through ``httpx.MockTransport``.

    Pages are registered by path. Every request is recorded in ``hits``, so
    tests can assert how many fetches a scrape performed.

    Example:
        site = FakeSite({"/": "<html>...</html>"})
        manager = SyncRequestManager(transport=site.transport())
    """

    def __init__(
        self,
        pages: dict[str, str] | None = None,
        fallback: Callable[[str], str | None] | None = None,
    ) -> None:
        self.pages = dict(pages or {})
        self.fallback = fallback
        self.statuses: dict[str, int] = {}
        self.timeouts: dict[str, int] = {}
        self.hits: list[str] = []

    def set_status(self, path: str, status_code: int) -> None:
        self.statuses[path] = status_code

    def set_timeouts(self, path: str, count: int) -> None:
        """Make the next ``count`` requests for ``path`` time out."""
        self.timeouts[path] = count

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.hits.append(str(request.url))

        if self.timeouts.get(path, 0) > 0:
            self.timeouts[path] -= 1
            raise httpx.ReadTimeout("timed out", request=request)

        if path in self.statuses:
            return httpx.Response(
                self.statuses[path], text=f"<html><h1>Error {path}</h1></html>"
            )

        body = self.pages.get(path)
        if body is None and self.fallback is not None:
            body = self.fallback(path)
        if body is None:
            return httpx.Response(404, text="<html><h1>Not Found</h1></html>")
        return httpx.Response(200, html=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)
