"""
CLI: ``chronospine`` — inspect cron expressions and scheduler settings.

Commands::

    chronospine cron next "0 */15 9-17 ? * MON-FRI" --count 5 --tz Europe/Berlin
    chronospine cron validate "0 0 12 30 2 ?"
    chronospine config show --json
    chronospine --version
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from chronospine.errors import InvalidArgumentError
from chronospine.scheduling.cron import parse_expression
from chronospine.settings import SchedulerSettings

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="chronospine",
    help="chrono-spine — in-memory cron and interval job scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
cron_app = typer.Typer(no_args_is_help=True)
config_app = typer.Typer(no_args_is_help=True)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("chrono-spine")
        except PackageNotFoundError:
            from chronospine import __version__ as v
        typer.echo(f"chrono-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """chrono-spine CLI — preview cron schedules and inspect settings."""


# ── Helpers ──────────────────────────────────────────────────────────────


def _load_settings() -> SchedulerSettings:
    try:
        return SchedulerSettings()
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid settings[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc


def _parse_after(after: str | None) -> datetime:
    if after is None:
        return datetime.now(UTC)
    try:
        moment = datetime.fromisoformat(after)
    except ValueError as exc:
        raise typer.BadParameter(f"not an ISO-8601 datetime: {after!r}", param_hint="--after") from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


# ── cron ─────────────────────────────────────────────────────────────────


@cron_app.command("next")
def cron_next(
    expression: str = typer.Argument(..., help="Six or seven field cron expression"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=1000, help="How many fire times"),
    after: str | None = typer.Option(None, "--after", help="Start after this ISO datetime (default: now)"),
    tz: str | None = typer.Option(None, "--tz", help="IANA timezone (default: settings timezone)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the next fire times of a cron expression."""
    zone = tz or _load_settings().timezone
    try:
        local = ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise typer.BadParameter(f"unknown timezone: {zone!r}", param_hint="--tz") from exc
    reference = _parse_after(after)
    try:
        cron = parse_expression(expression)
        times = list(cron.iter_after(reference, count, zone))
    except InvalidArgumentError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=1) from exc

    if json_out:
        payload = {
            "expression": cron.expression,
            "timezone": zone,
            "after": reference.isoformat(),
            "fire_times": [moment.isoformat() for moment in times],
        }
        console.print_json(json.dumps(payload))
        return

    table = Table(title=f"Next fire times: {cron.expression}")
    table.add_column("#", justify="right")
    table.add_column("UTC")
    table.add_column(zone)
    for index, moment in enumerate(times, start=1):
        table.add_row(str(index), moment.isoformat(), moment.astimezone(local).isoformat())
    console.print(table)
    if len(times) < count:
        console.print(f"[yellow]Schedule exhausted after {len(times)} fire time(s).[/yellow]")


@cron_app.command("validate")
def cron_validate(
    expression: str = typer.Argument(..., help="Six or seven field cron expression"),
) -> None:
    """Check that a cron expression parses and can fire."""
    try:
        cron = parse_expression(expression)
    except InvalidArgumentError as exc:
        err_console.print(f"[bold red]Invalid[/bold red]: {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[green]Valid[/green]: {cron.expression}")


# ── config ───────────────────────────────────────────────────────────────


@config_app.command("show")
def config_show(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the effective scheduler settings (environment + .env + defaults)."""
    settings = _load_settings()
    data = settings.model_dump()
    if json_out:
        console.print_json(json.dumps(data, default=str))
        return

    table = Table(title="Scheduler settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, str(value))
    console.print(table)


app.add_typer(cron_app, name="cron", help="Cron expression tools.")
app.add_typer(config_app, name="config", help="Scheduler settings.")


if __name__ == "__main__":
    app()
