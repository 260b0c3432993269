"""Node indexer CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from nodeindexer import __version__

if TYPE_CHECKING:
    from nodeindexer.config import Config
    from nodeindexer.index.client import IndexClient
    from nodeindexer.infrastructure.pipeline import CyclePipeline, CycleResult

logger = logging.getLogger("nodeindexer")


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    """Route all ``nodeindexer.*`` loggers through a stderr RichHandler."""
    from rich.console import Console
    from rich.logging import RichHandler

    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.version_option(version=__version__, prog_name="nodeindexer")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Node indexer - keep the node index in sync with the crawler dump."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


def _load_config(env: str | None, config_path: Path | None) -> Config:
    from nodeindexer.config import ConfigError, config_path_for, load_config

    path = config_path or config_path_for(env)
    try:
        config = load_config(path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    if config.debug:
        logging.getLogger("nodeindexer").setLevel(logging.DEBUG)
    return config


def _open_pipeline(config: Config) -> tuple[IndexClient, CyclePipeline]:
    """Connect to the index and wire the cycle pipeline."""
    from nodeindexer.index.client import IndexClient, IndexClientError
    from nodeindexer.index.writer import IndexWriter
    from nodeindexer.infrastructure.pipeline import CyclePipeline

    try:
        client = IndexClient.from_settings(config.elasticsearch)
    except IndexClientError as exc:
        click.echo(f"Error: cannot connect to index: {exc}", err=True)
        sys.exit(1)

    writer = IndexWriter(client, config.index)
    try:
        writer.ensure_index()
    except IndexClientError as exc:
        client.close()
        click.echo(f"Error: cannot prepare index {config.index}: {exc}", err=True)
        sys.exit(1)

    return client, CyclePipeline(config.seed_file, writer)


def _print_cycle(result: CycleResult) -> None:
    from rich.console import Console

    console = Console()
    color = "green" if result.ok else "red"
    console.print(f"[bold {color}]Cycle {result.status.value}[/bold {color}]")
    console.print(f"  Parsed:     {result.parsed}")
    console.print(f"  Skipped:    {result.skipped}")
    console.print(f"  Bad lines:  {result.bad_lines}")
    console.print(f"  Inserted:   {result.inserted}")
    console.print(f"  Updated:    {result.updated}")
    console.print(f"  Stale:      {result.marked_stale}")
    if result.failed_items:
        console.print(f"  [yellow]Failed:     {result.failed_items}[/yellow]")


_env_argument = click.argument("env", required=False, default=None)
_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ./config.<ENV>.yml, ENV defaults to 'prod').",
)


@main.command("watch")
@_env_argument
@_config_option
def watch_cmd(*, env: str | None, config_path: Path | None) -> None:
    """Watch the seed file and re-index nodes on every rewrite.

    Runs until stopped or until the file watcher fails.
    """
    from nodeindexer.infrastructure.watcher import WatchError, WatchSupervisor

    config = _load_config(env, config_path)
    client, pipeline = _open_pipeline(config)

    logger.info("Starting node indexer on %s", config.seed_file)
    supervisor = WatchSupervisor(
        config.seed_file,
        pipeline.run_cycle,
        poll_interval=config.poll_interval,
        debounce_ms=config.debounce_ms,
    )
    try:
        supervisor.run()
    except WatchError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nWatch stopped.", err=True)
    finally:
        client.close()


@main.command()
@_env_argument
@_config_option
def once(*, env: str | None, config_path: Path | None) -> None:
    """Run a single parse/reconcile/write cycle and exit."""
    config = _load_config(env, config_path)
    client, pipeline = _open_pipeline(config)
    try:
        result = pipeline.run_cycle()
    finally:
        client.close()

    _print_cycle(result)
    if not result.ok:
        sys.exit(1)


@main.command()
@click.argument("dump", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output documents as JSON.")
def parse(*, dump: Path, output_json: bool) -> None:
    """Parse a seed dump offline and show the records it contains."""
    from nodeindexer.dump.parser import parse_dump

    result = parse_dump(dump.read_text(encoding="utf-8", errors="replace"))

    if output_json:
        payload = {
            "records": [record.to_document() for record in result.records],
            "skipped": result.skipped,
            "errors": result.errors,
        }
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title=str(dump))
    for column in ("Address", "Good", "Last success", "30d %", "Blocks", "Agent"):
        table.add_column(column)
    for record in result.records:
        table.add_row(
            record.address,
            "yes" if record.good else "no",
            record.last_success.strftime("%Y-%m-%d %H:%M:%S"),
            f"{record.percent_30d:.2f}",
            str(record.blocks),
            record.user_agent,
        )
    console.print(table)
    console.print(
        f"Records: {len(result.records)}  Skipped: {result.skipped}  "
        f"Bad lines: {len(result.errors)}"
    )
    for error in result.errors:
        console.print(f"[yellow]{error}[/yellow]")
