"""IsolatedEnvironment — a private home/work directory pair for running a CLI under test.

Every command run through the environment sees the temporary home directory
as ``HOME`` (and as the provider's own home variable), so the tool under test
and the virtualization provider never touch the real user's configuration.
Closing the environment deletes any virtual machines the session left behind
and then removes the temporary tree.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any

from isoenv.providers.virtualbox import VirtualMachine, VMCleaner, find_service_process
from isoenv.runtime.errors import (
    ExecutionTimeoutError,
    SandboxError,
    WorkspaceError,
    WorkspaceRemovalError,
)
from isoenv.runtime.executor import ProcessExecutor
from isoenv.runtime.models import (
    ExecutionOptions,
    ExecutionOutcome,
    ExecutionResult,
    ExecutionTimeout,
)
from isoenv.runtime.spawner import PosixSpawner
from isoenv.settings import SandboxSettings
from isoenv.utils.telemetry import ATTR_WORKSPACE, get_tracer

if TYPE_CHECKING:
    from opentelemetry import trace


class IsolatedEnvironment:
    """Temporary workspace plus environment overrides for child processes.

    Parameters
    ----------
    apps:
        Mapping of application name (such as ``"vagrant"``) to an alternate
        full path of the binary to run in its place.
    env:
        Additional environment variables injected into every command.
    settings:
        Shared sandbox settings; ``apps`` and ``env`` given here extend
        ``settings.apps`` and ``settings.env``.
    executor:
        Process executor to delegate to.  Built from *settings* if omitted.
    service_probe:
        Returns ``True`` when the provider's backing service is running.
        Defaults to a process-table lookup of ``settings.service_process``.
    """

    def __init__(
        self,
        apps: Mapping[str, str] | None = None,
        env: Mapping[str, str] | None = None,
        *,
        settings: SandboxSettings | None = None,
        executor: ProcessExecutor | None = None,
        service_probe: Callable[[], bool] | None = None,
        logger: logging.Logger | None = None,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self.settings = settings or SandboxSettings()
        self._logger = logger or logging.getLogger(__name__)
        self._tracer = tracer or get_tracer(__name__)

        self.apps: dict[str, str] = {**self.settings.apps, **(apps or {})}
        self.env: dict[str, str] = {**self.settings.env, **(env or {})}

        self.root = self._create_workspace()
        self._logger.info("Initialize isolated environment: %s", self.root)

        self.homedir = self.root / "home"
        self.workdir = self.root / "work"
        try:
            self.homedir.mkdir()
            self.workdir.mkdir()
        except OSError as exc:
            shutil.rmtree(self.root, ignore_errors=True)
            raise WorkspaceError(f"Cannot create {self.root}: {exc}") from exc

        # Both the tool under test and the provider must see our home.
        self.env["HOME"] = str(self.homedir)
        self.env[self.settings.home_env_var] = str(self.homedir)

        self.executor = executor or ProcessExecutor(
            PosixSpawner(self.settings.read_chunk_size),
            poll_interval=self.settings.poll_interval,
            drain_interval=self.settings.drain_interval,
            logger=self._logger,
            tracer=self._tracer,
        )
        self._service_probe = service_probe or (
            lambda: find_service_process(self.settings.service_process)
        )
        self._executed = False
        self._closed = False

    def _create_workspace(self) -> Path:
        try:
            return Path(tempfile.mkdtemp(prefix=f"{self.settings.temp_prefix}-"))
        except OSError as exc:
            raise WorkspaceError(f"Cannot create temporary directory: {exc}") from exc

    @property
    def closed(self) -> bool:
        return self._closed

    def replace_command(self, command: str) -> str:
        """Return the replacement registered for *command*, or *command* itself."""
        return self.apps.get(command, command)

    def execute(
        self,
        command: str,
        *args: str,
        options: ExecutionOptions | None = None,
        **overrides: Any,
    ) -> ExecutionOutcome:
        """Run *command* inside the environment.

        Keyword *overrides* (``cwd``, ``timeout``, ``env``, ``on_event``)
        take precedence over the matching fields of *options*.  The working
        directory defaults to :attr:`workdir`.  The environment's variables
        are layered over the per-call ``env``, which is layered over the
        current process environment.

        Returns an :class:`ExecutionResult`, or an :class:`ExecutionTimeout`
        if the timeout elapsed first.  A timed-out child is still running.

        Raises:
            SandboxError: If the environment has been closed.
            SpawnError: If the executable cannot be started.
        """
        if self._closed:
            raise SandboxError("environment is closed")
        if overrides:
            options = ExecutionOptions.model_validate({**dict(options or {}), **overrides})
        options = options or ExecutionOptions()

        argv = [self.replace_command(command), *args]
        child_env = {**os.environ, **options.env, **self.env}
        self._executed = True

        return self.executor.run(
            argv,
            env=child_env,
            cwd=options.cwd or str(self.workdir),
            timeout=options.timeout,
            on_event=options.on_event,
        )

    def run(
        self,
        command: str,
        *args: str,
        options: ExecutionOptions | None = None,
        **overrides: Any,
    ) -> ExecutionResult:
        """Like :meth:`execute`, but raise :class:`ExecutionTimeoutError` on timeout."""
        outcome = self.execute(command, *args, options=options, **overrides)
        if isinstance(outcome, ExecutionTimeout):
            raise ExecutionTimeoutError(outcome.pid, outcome.timeout)
        return outcome

    def delete_virtual_machines(self) -> list[VirtualMachine]:
        """Power off and delete every machine registered under this home."""
        cleaner = VMCleaner(
            self,
            self.executor.spawner,
            self.settings,
            logger=self._logger,
            tracer=self._tracer,
        )
        return cleaner.delete_virtual_machines()

    def close(self) -> None:
        """Delete leftover virtual machines, then the temporary directories.

        Machines are only looked for when a command has run in this
        environment and the provider's service process is alive.  If that
        cleanup fails, the workspace is still removed on a best-effort basis
        and the cleanup error propagates.

        Raises:
            CleanupError: A virtual machine could not be removed.
            WorkspaceRemovalError: The temporary directory could not be deleted.
        """
        if self._closed:
            self._logger.debug("Isolated environment already closed: %s", self.root)
            return

        with self._tracer.start_as_current_span("isoenv.close") as span:
            span.set_attribute(ATTR_WORKSPACE, str(self.root))
            try:
                if self._executed and self._service_probe():
                    self.delete_virtual_machines()
            except Exception:
                self._closed = True
                self._remove_workspace(best_effort=True)
                raise

            self._closed = True
            self._remove_workspace()

    def _remove_workspace(self, *, best_effort: bool = False) -> None:
        self._logger.info("Removing isolated environment: %s", self.root)
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            self._logger.debug("Workspace already gone: %s", self.root)
        except OSError as exc:
            if best_effort:
                self._logger.error("Could not remove workspace %s: %s", self.root, exc)
                return
            raise WorkspaceRemovalError(str(self.root), str(exc)) from exc

    def __enter__(self) -> IsolatedEnvironment:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
