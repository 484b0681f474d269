"""Command-line interface for wormhole."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import click

from wormhole import __version__
from wormhole.context import RunContext, install_signal_handlers, remove_signal_handlers
from wormhole.exceptions import ContextCancelledError, WormholeError
from wormhole.inventory import Inventory, load_inventory
from wormhole.logging import configure_logging, get_level_from_name, get_level_from_verbosity
from wormhole.playbook import Playbook, load_playbook
from wormhole.progress import create_progress_reporter
from wormhole.scheduler import BatchScheduler, RunResults
from wormhole.types import RunConfig
from wormhole.utils import parse_duration

logger = logging.getLogger(__name__)

ENVVAR_PREFIX = "WORMHOLE"


class DurationParamType(click.ParamType):
    """Click parameter accepting ``5s``, ``1m30s``, ``500ms`` or plain seconds."""

    name = "duration"

    def convert(self, value: Any, param: Optional[click.Parameter], ctx: Optional[click.Context]) -> float:
        if isinstance(value, float):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationParamType()


async def execute_run(
    config: RunConfig,
    playbook: Playbook,
    inventory: Inventory,
    reporter: Any = None,
) -> tuple[RunResults, ContextCancelledError | None]:
    """Run the playbook with SIGINT/SIGTERM wired to the run context.

    Returns:
        The run results and, if the run was cut short, the context error
    """
    ctx = RunContext()
    install_signal_handlers(ctx)
    try:
        scheduler = BatchScheduler(config, reporter=reporter)
        results = await scheduler.run(ctx, playbook, inventory)
    finally:
        remove_signal_handlers()
    return results, ctx.error()


# Main CLI group
@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """wormhole - push playbooks to fleets of hosts over SSH."""
    if version:
        click.echo(f"wormhole {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("run")
@click.argument("playbook", type=click.Path(dir_okay=False))
@click.option("--inventory", "-i", default="inventory.yaml", show_default=True,
              help="Inventory file (YAML format)")
@click.option("--playbook-folder", type=click.Path(file_okay=False), default=None,
              help="Root for file action sources (default: the playbook's directory)")
@click.option("--connect-timeout", "-c", type=DURATION, default="5s", show_default=True,
              help="SSH connect timeout")
@click.option("--exec-timeout", "-e", type=DURATION, default="5m", show_default=True,
              help="Timeout for each action")
@click.option("--max-connections", "-m", type=int, default=2, show_default=True,
              help="Maximum number of concurrent SSH connections (batch size)")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format (default: text)")
@click.option("--progress", is_flag=True,
              help="Show real-time progress as hosts complete")
@click.option("--log-file", type=click.Path(), default=None,
              help="Write logs to file (in addition to console)")
@click.option("--log-level", type=click.Choice(["trace", "debug", "info", "warning", "error"]),
              default=None, help="Set log level explicitly (overrides -v)")
@click.option("-v", "--verbose", count=True,
              help="Increase verbosity: -v=info, -vv=debug, -vvv=trace")
def run_playbook_command(
    playbook: str,
    inventory: str,
    playbook_folder: Optional[str],
    connect_timeout: float,
    exec_timeout: float,
    max_connections: int,
    output_format: str,
    progress: bool,
    log_file: Optional[str],
    log_level: Optional[str],
    verbose: int,
) -> None:
    """Run PLAYBOOK on every host of the inventory.

    Hosts are processed in batches of --max-connections; each host runs the
    tasks in order and stops at its first failing action. Failed hosts do not
    affect the others, and do not make the command fail: the exit status is
    non-zero only when configuration or loading fails, or when the run is
    interrupted.

    \b
    Examples:
        wormhole run site.yaml -i hosts.yaml
        wormhole run site.yaml -i hosts.yaml -m 10 -e 10m --progress
        WORMHOLE_RUN_MAX_CONNECTIONS=5 wormhole run site.yaml
    """
    level = get_level_from_name(log_level) if log_level else get_level_from_verbosity(verbose)

    # Keep stdout clean for JSON output; file logging is unaffected
    console_level = logging.CRITICAL if output_format == "json" else level
    configure_logging(
        level=console_level,
        log_file=log_file,
        file_level=level if log_file else None,
        debug=(level <= logging.DEBUG),
    )

    try:
        config = RunConfig(
            playbook=Path(playbook),
            inventory=Path(inventory),
            playbook_folder=Path(playbook_folder) if playbook_folder else None,
            connect_timeout=connect_timeout,
            exec_timeout=exec_timeout,
            max_concurrent_connections=max_connections,
        )
        inv = load_inventory(config.inventory)
        book = load_playbook(config.playbook)
    except WormholeError as e:
        raise click.ClickException(str(e))

    reporter = create_progress_reporter(progress, json_format=(output_format == "json"))
    results, interrupted = asyncio.run(execute_run(config, book, inv, reporter))

    if output_format == "json":
        click.echo(json.dumps(results.to_dict(), indent=2))
    else:
        click.echo(results.format_text())

    if results.failed:
        logger.error(f"Failed on servers: {', '.join(results.failed)}")

    if interrupted is not None:
        raise click.ClickException(f"Abnormal termination due to: {interrupted}")


# Inventory subcommand group
@cli.group()
def inventory() -> None:
    """Inventory management commands."""
    pass


@inventory.command("validate")
@click.option("--inventory", "-i", required=True, help="Inventory file (YAML format)")
def inventory_validate(inventory: str) -> None:
    """Validate inventory structure and show summary."""
    try:
        inv = load_inventory(inventory)
    except WormholeError as e:
        raise click.ClickException(str(e))

    click.echo(f"\nInventory: {inventory}")
    click.echo(f"Loaded {len(inv)} host(s)\n")
    for server in inv:
        user = f"{server.username}@" if server.username else ""
        click.echo(f"  - {user}{server.address}")

    click.echo("\nValidation:")
    warnings = [
        f"{server.address}: No SSH password configured"
        for server in inv
        if not server.password
    ]
    warnings += [
        f"{server.address}: No SSH username configured"
        for server in inv
        if not server.username
    ]
    if not warnings:
        click.echo("  All checks passed")
    for warning in warnings:
        click.echo(f"  Warning: {warning}")
    click.echo()


# Playbook subcommand group
@cli.group()
def playbook() -> None:
    """Playbook management commands."""
    pass


@playbook.command("validate")
@click.argument("playbook_file", type=click.Path(dir_okay=False))
def playbook_validate(playbook_file: str) -> None:
    """Decode PLAYBOOK_FILE and list its tasks and actions."""
    try:
        book = load_playbook(playbook_file)
    except WormholeError as e:
        raise click.ClickException(str(e))

    click.echo(f"\nPlaybook: {playbook_file}")
    click.echo(f"Loaded {len(book)} task(s) with {book.action_count} action(s)\n")
    for index, task in enumerate(book, start=1):
        kinds = ", ".join(action.kind for action in task.actions)
        click.echo(f"  [{index}] {task.name} ({kinds})")
    click.echo()


def main() -> None:
    """Package entry point for the wormhole command-line interface."""
    cli(auto_envvar_prefix=ENVVAR_PREFIX)


if __name__ == "__main__":
    main()
