"""CSV export of scraped records."""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Sequence
from itertools import chain
from pathlib import Path
from typing import Any

from canopy.common.options import StageOptions
from canopy.data_types import Context
from canopy.driver.sync_driver import Seed, scrape

logger = logging.getLogger(__name__)


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def save_dataset_to_csv(
    records: Iterable[Context],
    output: Path | str,
    fields: Sequence[str] | None = None,
) -> int:
    """Write records to a CSV file, one row per record.

    Args:
        records: The records to write. Consumed lazily.
        output: Path of the CSV file to create.
        fields: Column order. Defaults to the keys of the first record.
            Values for columns a record lacks are written as empty strings.

    Returns:
        The number of rows written.
    """
    iterator = iter(records)
    first = next(iterator, None)
    if fields is None:
        fields = list(first) if first is not None else []

    count = 0
    with open(output, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(fields)
        if first is None:
            return count
        for record in chain([first], iterator):
            writer.writerow([_cell(record.get(k)) for k in fields])
            count += 1

    logger.info(f"Wrote {count} rows to {output}")
    return count


def scrape_csv(
    seed: Seed,
    output: Path | str,
    options: StageOptions | None = None,
    *,
    all_keys: bool = True,
    **option_overrides: Any,
) -> int:
    """Scrape ``seed`` and save the records as CSV.

    With ``all_keys`` the scrape runs twice: once to collect the union of
    all record keys, which become the (sorted) columns, and once more with
    ``update=False`` to write the rows, so the second pass is served from
    cache wherever the first one stored results.
    """
    if not all_keys:
        return save_dataset_to_csv(
            scrape(seed, options, **option_overrides), output
        )

    # Both passes read the seed
    if not isinstance(seed, str):
        seed = list(seed)

    keys: set[str] = set()
    for record in scrape(seed, options, **option_overrides):
        keys.update(record)
    option_overrides["update"] = False
    return save_dataset_to_csv(
        scrape(seed, options, **option_overrides), output, sorted(keys)
    )
