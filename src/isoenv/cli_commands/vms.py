"""``isoenv vms`` — inspect the provider's registered virtual machines."""

from __future__ import annotations

import os
import sys
from typing import IO

import click

from isoenv.cli_commands._output import console, load_settings, print_vms_table


@click.group()
def vms() -> None:
    """Inspect virtual machines."""


@vms.command("list")
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Settings YAML file.")
def list_vms(config: str | None) -> None:
    """List the machines registered for the current user."""
    from isoenv.providers.virtualbox import parse_vm_list
    from isoenv.runtime.errors import IsolationError
    from isoenv.runtime.executor import ProcessExecutor
    from isoenv.settings import SettingsError

    try:
        settings = load_settings(config)
        executor = ProcessExecutor(poll_interval=settings.poll_interval, drain_interval=settings.drain_interval)
        outcome = executor.run(
            [settings.manage_command, "list", "vms"],
            env=dict(os.environ),
            cwd=os.getcwd(),
        )
    except (SettingsError, IsolationError) as exc:
        console.print(f"[red]Listing error:[/red] {exc}")
        sys.exit(1)

    if not outcome.succeeded:
        console.print(f"[red]Listing failed:[/red] {outcome.stderr.strip()}")
        sys.exit(1)

    machines = parse_vm_list(outcome.stdout)
    if not machines:
        console.print("[yellow]No virtual machines found.[/yellow]")
        return

    print_vms_table(machines)


@vms.command("parse")
@click.argument("listing", type=click.File("r"), default="-")
def parse_vms(listing: IO[str]) -> None:
    """Parse saved ``list vms`` output from LISTING (default: stdin)."""
    from isoenv.providers.virtualbox import parse_vm_list

    machines = parse_vm_list(listing.read())
    if not machines:
        console.print("[yellow]No virtual machines found.[/yellow]")
        return

    print_vms_table(machines)
