"""
Root Typer application for referral-spine.

Commands operate on the durable referrer store and can run one full
resolution against a scripted service client, which is handy for checking
store contents and outcome classification without a device.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from referral.client import scripted_client
from referral.container import ReferralContainer
from referral.core.logging import LogContext, configure_logging
from referral.core.errors import StoreError
from referral.core.outcome import Failed, ResolutionOutcome
from referral.core.settings import ReferralSettings, StoreBackend, get_settings
from referral.resolver import AttributionResolver
from referral.store import JsonFileReferrerStore

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="referral-spine",
    help="referral-spine — install-referrer attribution resolver.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

EXIT_FAILED = 1
EXIT_TIMED_OUT = 2


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("referral-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"referral-spine {v}")
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
    """referral-spine CLI — inspect the referrer store and run resolutions."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


# ── Helpers ──────────────────────────────────────────────────────────────


def _settings_for(store: Path | None) -> ReferralSettings:
    settings = get_settings()
    if store is None:
        return settings
    return settings.model_copy(update={"store_path": store, "store_backend": StoreBackend.FILE})


def _print_dict(data: dict, *, title: str) -> None:
    table = Table(title=title, show_header=False, pad_edge=False)
    table.add_column("key", style="bold")
    table.add_column("value", overflow="fold")
    for key, value in data.items():
        table.add_row(str(key), "" if value is None else str(value))
    console.print(table)


def _positive_timeout(value: float | None) -> float | None:
    if value is not None and value <= 0:
        raise typer.BadParameter("must be greater than 0")
    return value


def _store_failure(error: StoreError) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {error.message}")
    err_console.print_json(json.dumps(error.to_dict()))
    return typer.Exit(code=EXIT_FAILED)


async def _wait(resolver: AttributionResolver, timeout: float | None) -> ResolutionOutcome:
    if timeout is None:
        return await resolver.resolve()
    return await resolver.resolve_within(timeout)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("status")
def status(
    store: Path | None = typer.Option(None, "--store", "-s", help="Store file path."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the persisted referrer state."""
    settings = _settings_for(store)
    try:
        snapshot = JsonFileReferrerStore(settings.store_path).snapshot()
    except StoreError as e:
        raise _store_failure(e) from e
    snapshot["store_path"] = str(settings.store_path)

    if json_out:
        console.print_json(json.dumps(snapshot))
        return
    _print_dict(snapshot, title="Referrer store")


@app.command("reset")
def reset(
    store: Path | None = typer.Option(None, "--store", "-s", help="Store file path."),
) -> None:
    """Forget the persisted referrer state."""
    settings = _settings_for(store)
    try:
        JsonFileReferrerStore(settings.store_path).clear()
    except StoreError as e:
        raise _store_failure(e) from e
    console.print(f"[green]Cleared[/green] {settings.store_path}")


@app.command("resolve")
def resolve(
    store: Path | None = typer.Option(None, "--store", "-s", help="Store file path."),
    code: int = typer.Option(0, "--code", "-c", help="Platform response code to deliver."),
    payload: str = typer.Option("", "--payload", "-p", help="Raw referrer payload."),
    unavailable: bool = typer.Option(False, "--unavailable", help="Service not discoverable."),
    delay: float = typer.Option(0.0, "--delay", min=0.0, help="Seconds before the answer."),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", callback=_positive_timeout, help="Give up after N seconds."
    ),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one resolution against a scripted service client."""
    settings = _settings_for(store)
    container = ReferralContainer(settings)
    client = scripted_client(code, payload, available=not unavailable, delay=delay)

    with LogContext(command="resolve"):
        resolver = container.resolver(client)
        resolver.initiate()
        wait = timeout if timeout is not None else settings.wait_timeout_seconds
        outcome = asyncio.run(_wait(resolver, wait))

    if json_out:
        console.print_json(json.dumps(outcome.to_dict()))
    else:
        _print_dict(outcome.to_dict(), title="Resolution outcome")

    if not outcome.is_terminal():
        err_console.print("[yellow]Timed out waiting for the referrer service[/yellow]")
        raise typer.Exit(code=EXIT_TIMED_OUT)
    if isinstance(outcome, Failed):
        raise typer.Exit(code=EXIT_FAILED)
