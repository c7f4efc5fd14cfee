"""Recursive scrape-tree framework.

A scrape is described as a composition of small stage functions. Each stage
fetches one page and turns it into child contexts, some of which name the
next stage to run. The driver expands that tree lazily into a flat sequence
of leaf records.
"""

from canopy.common.decorators import Stage, stage
from canopy.driver.sync_driver import SyncDriver, do_scrape, scrape

__all__ = ["Stage", "SyncDriver", "do_scrape", "scrape", "stage"]
