"""canopy CLI: run scrapes and inspect stages.

Usage:
    canopy stages module.path                  # List the stages a module defines
    canopy run module.path:seed                # Print records as JSON lines
    canopy run module.path:seed -o out.csv     # Save records as CSV
    canopy run module.path:seed --no-html-cache --update
"""

from __future__ import annotations

import importlib
import json
import logging
from itertools import islice
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from canopy.common.exceptions import CanopyException
from canopy.common.options import DEFAULT_DATA_DIR, StageOptions
from canopy.common.registry import default_registry


@click.group()
@click.version_option(package_name="canopy")
def cli() -> None:
    """canopy: recursive scrape-tree framework CLI."""


@cli.command()
@click.argument("module")
def stages(module: str) -> None:
    """List the stages registered by MODULE.

    MODULE is a dotted import path, e.g. ``myproject.site``.
    """
    try:
        importlib.import_module(module)
    except ImportError as e:
        raise click.BadParameter(
            f"Could not import module '{module}': {e}"
        ) from e

    infos = default_registry.list_stages(module)
    if not infos:
        click.echo("No stages found.")
        return

    for info in infos:
        tags = []
        if info.cache_template:
            tag = f"cache: {info.cache_template}"
            if info.cache_fields:
                tag = f"{tag} ({', '.join(info.cache_fields)})"
            tags.append(tag)
        elif info.cached:
            tags.append("cache: custom key")
        else:
            tags.append("uncached")
        if info.updatable:
            tags.append("updatable")
        click.echo(f"{info.qualified_name}  [{', '.join(tags)}]")


def _json_default(value: Any) -> str:
    return str(value)


@cli.command()
@click.argument("seed")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write records to this CSV file instead of stdout.",
)
@click.option(
    "--html-cache/--no-html-cache",
    default=True,
    show_default=True,
    help="Cache downloaded pages.",
)
@click.option(
    "--processed-cache/--no-processed-cache",
    default=True,
    show_default=True,
    help="Cache processed stage results.",
)
@click.option(
    "--update", is_flag=True, help="Refetch pages of updatable stages."
)
@click.option(
    "--retries",
    type=click.IntRange(min=1),
    default=5,
    show_default=True,
    help="Fetch attempts per page.",
)
@click.option(
    "--timeout",
    type=float,
    default=5.0,
    show_default=True,
    help="Request timeout in seconds.",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=str(DEFAULT_DATA_DIR),
    show_default=True,
    help="Root directory of the default caches.",
)
@click.option(
    "--compress-html", is_flag=True, help="zstd-compress cached pages."
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many records.",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def run(
    seed: str,
    output: str | None,
    html_cache: bool,
    processed_cache: bool,
    update: bool,
    retries: int,
    timeout: float,
    data_dir: str,
    compress_html: bool,
    limit: int | None,
    verbose: bool,
) -> None:
    """Run a scrape and emit its records.

    SEED is an import path in the form module.path:function, naming a
    function that returns the seed contexts.

    \b
    Examples:
        canopy run myproject.site:seed
        canopy run myproject.site:seed -o records.csv
        canopy run myproject.site:seed --update --limit 10
    """
    from canopy.driver.sync_driver import scrape
    from canopy.export import save_dataset_to_csv, scrape_csv

    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        options = StageOptions(
            html_cache=html_cache,
            processed_cache=processed_cache,
            update=update,
            retries=retries,
            http_options={"timeout": timeout},
            data_dir=Path(data_dir),
            compress_html=compress_html,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    try:
        if output is not None:
            if limit is None:
                count = scrape_csv(seed, output, options)
            else:
                count = save_dataset_to_csv(
                    islice(scrape(seed, options), limit), output
                )
            click.echo(f"Wrote {count} records to {output}", err=True)
            return

        records = scrape(seed, options)
        if limit is not None:
            records = islice(records, limit)
        for record in records:
            click.echo(json.dumps(record, default=_json_default))
    except CanopyException as e:
        raise click.ClickException(str(e)) from e


def main() -> None:
    """Entry point for the ``canopy`` console script."""
    cli()
