"""Shared fixtures for the canopy tests."""

import logging
from collections.abc import Generator

import pytest

from canopy.common.request_manager import SyncRequestManager
from tests.scraper.numbers import dummy_site_content
from tests.utils import FakeSite


def _number_page(path: str) -> str | None:
    try:
        return dummy_site_content(int(path.strip("/")))
    except ValueError:
        return None


@pytest.fixture(autouse=True)
def _quiet_logs(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="canopy")


@pytest.fixture
def number_site() -> FakeSite:
    """The numbered dummy site: page N links to pages 10N..10N+9."""
    return FakeSite(fallback=_number_page)


@pytest.fixture
def number_manager(
    number_site: FakeSite,
) -> Generator[SyncRequestManager, None, None]:
    """A request manager serving the numbered dummy site."""
    manager = SyncRequestManager(transport=number_site.transport())
    yield manager
    manager.close()


@pytest.fixture
def site() -> FakeSite:
    """An empty fake site for tests to populate."""
    return FakeSite()


@pytest.fixture
def manager(site: FakeSite) -> Generator[SyncRequestManager, None, None]:
    """A request manager serving the ``site`` fixture."""
    manager = SyncRequestManager(transport=site.transport())
    yield manager
    manager.close()
