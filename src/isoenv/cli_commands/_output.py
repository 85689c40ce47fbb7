"""Shared CLI output formatters."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from isoenv.providers.virtualbox import VirtualMachine
    from isoenv.runtime.models import ExecutionOutcome
    from isoenv.settings import SandboxSettings

console = Console()


def load_settings(config: str | None) -> SandboxSettings:
    """Load settings from *config*, or return the defaults."""
    from isoenv.settings import SandboxSettings, SettingsLoader

    if config is None:
        return SandboxSettings()
    return SettingsLoader(Path(config)).load()


def parse_pairs(pairs: tuple[str, ...], option: str) -> dict[str, str]:
    """Turn ``("KEY=VALUE", ...)`` into a dict."""
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected NAME=VALUE, got {pair!r}", param_hint=option)
        result[key] = value
    return result


def print_outcome(outcome: ExecutionOutcome) -> None:
    """Print a one-line summary of an execution."""
    if outcome.timed_out:
        console.print(
            f"[red]Timed out[/red] after {outcome.timeout}s (pid {outcome.pid})",
            highlight=False,
        )
    elif outcome.succeeded:
        console.print("[green]Exit status: 0[/green]")
    else:
        console.print(f"[red]Exit status: {outcome.exit_status}[/red]")


def print_vms_table(machines: list[VirtualMachine]) -> None:
    """Pretty-print virtual machines as a table."""
    table = Table(title="Virtual Machines")
    table.add_column("Name", style="cyan")
    table.add_column("UUID")

    for machine in machines:
        table.add_row(machine.name, machine.uuid)

    console.print(table)
