"""
Media stack — CLI entrypoint.

Usage:
    mediastack --help
    mediastack health
    mediastack setup --json
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path

import click

from mediastack import __version__
from mediastack.core.observability.logging_config import level_from_flags, setup_logging

# Conventional exit status after SIGINT
EXIT_CANCELLED = 130

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="mediastack")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to stack.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Media stack — health checks and post-start setup."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=level_from_flags(debug, verbose, quiet, os.environ.get("MEDIASTACK_LOG_LEVEL")),
        log_file=os.environ.get("MEDIASTACK_LOG_FILE"),
        log_file_level=os.environ.get("MEDIASTACK_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Probe every enabled service once."""
    from mediastack.core.use_cases.health import check_health

    result = check_health(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.healthy else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.services:
        click.echo("No services with health endpoints enabled.")
        return

    for svc in result.services:
        if svc.healthy:
            click.secho(f"  ✓ {svc.name}", fg="green", nl=False)
            click.echo(f"  {svc.status_code}  {svc.latency * 1000:.0f}ms")
        else:
            click.secho(f"  ✗ {svc.name}", fg="red", nl=False)
            click.echo(f"  {svc.error}")

    if not result.healthy:
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option(
    "--min-ok",
    type=click.IntRange(min=0),
    default=None,
    help="Succeed when at least N steps succeeded (default: all must).",
)
@click.pass_context
def setup(ctx: click.Context, as_json: bool, min_ok: int | None) -> None:
    """Configure a running stack: API keys, root folders, download clients."""
    from mediastack.core.use_cases.setup import run_setup

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        result = run_setup(config_path=ctx.obj.get("config_path"), cancel=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif result.error:
        click.secho(f"❌ {result.error}", fg="red")
    else:
        _print_ledger(result, quiet=ctx.obj.get("quiet", False))

    if result.error or result.ledger is None:
        sys.exit(1)
    if result.cancelled:
        sys.exit(EXIT_CANCELLED)

    ledger = result.ledger
    passed = ledger.succeeded >= min_ok if min_ok is not None else ledger.all_ok
    if not passed:
        sys.exit(1)


def _print_ledger(result, quiet: bool = False) -> None:
    ledger = result.ledger
    if ledger is None:
        return

    for outcome in ledger:
        if outcome.ok:
            if not quiet:
                click.secho(f"  ✓ {outcome.service}: {outcome.action}", fg="green")
        else:
            click.secho(f"  ✗ {outcome.service}: {outcome.action}", fg="red", nl=False)
            click.echo(f" — {outcome.error}")

    click.echo()
    click.secho(
        f"  {ledger.status}: {ledger.succeeded} ok, {ledger.failed} failed",
        fg=_STATUS_COLORS.get(ledger.status, "white"),
        bold=True,
    )
    if result.cancelled:
        click.secho("  cancelled before completion", fg="yellow")


if __name__ == "__main__":
    cli()
