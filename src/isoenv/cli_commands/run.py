"""``isoenv run`` — execute a command inside a fresh isolated environment."""

from __future__ import annotations

import logging
import sys
from typing import Any

import click

from isoenv.cli_commands._output import console, load_settings, parse_pairs, print_outcome

# Conventional exit status of timeout(1).
TIMEOUT_EXIT_STATUS = 124


def _stream_event(stream: str, payload: Any) -> None:
    if stream == "stdin":
        # Nothing to forward; let the child see end-of-input.
        payload.close()
        return
    click.echo(payload, nl=False, err=stream == "stderr")


def _exit_code(status: int) -> int:
    # Killed by signal N -> 128 + N, as shells report it.
    return 128 - status if status < 0 else status


@click.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Settings YAML file.")
@click.option("--timeout", "-t", type=float, default=None, help="Kill the command after this many seconds.")
@click.option("--env", "-e", "env_pairs", multiple=True, help="Extra environment variable (KEY=VALUE).")
@click.option("--app", "-a", "app_pairs", multiple=True, help="Command replacement (NAME=PATH).")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--telemetry", is_flag=True, help="Export tracing spans to the console.")
def run(
    command: str,
    args: tuple[str, ...],
    config: str | None,
    timeout: float | None,
    env_pairs: tuple[str, ...],
    app_pairs: tuple[str, ...],
    verbose: bool,
    telemetry: bool,
) -> None:
    """Run COMMAND [ARGS]... with a temporary HOME, then clean up."""
    from isoenv.runtime.environment import IsolatedEnvironment
    from isoenv.runtime.errors import IsolationError
    from isoenv.runtime.models import ExecutionOptions
    from isoenv.settings import SettingsError

    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    if telemetry:
        from isoenv.utils.telemetry import configure_telemetry

        configure_telemetry()

    env = parse_pairs(env_pairs, "--env")
    apps = parse_pairs(app_pairs, "--app")

    try:
        settings = load_settings(config)
        environment = IsolatedEnvironment(apps, env, settings=settings)
    except (SettingsError, IsolationError) as exc:
        console.print(f"[red]Setup error:[/red] {exc}")
        sys.exit(1)

    if verbose:
        console.print(f"Workspace: {environment.root}")

    code = 0
    try:
        outcome = environment.execute(
            command,
            *args,
            options=ExecutionOptions(timeout=timeout, on_event=_stream_event),
        )
        print_outcome(outcome)
        if outcome.timed_out:
            environment.executor.spawner.kill(outcome.pid)
            environment.executor.spawner.reap(outcome.pid)
            code = TIMEOUT_EXIT_STATUS
        else:
            code = _exit_code(outcome.exit_status)
    except IsolationError as exc:
        console.print(f"[red]Execution error:[/red] {exc}")
        code = 1
    finally:
        try:
            environment.close()
        except IsolationError as exc:
            console.print(f"[red]Teardown error:[/red] {exc}")
            code = code or 1

    if code:
        sys.exit(code)

