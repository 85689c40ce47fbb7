"""Shared error types for the isolated execution runtime."""

from __future__ import annotations


class IsolationError(Exception):
    """Base error for all isolated-environment failures."""


class SandboxError(IsolationError):
    """A sandbox operation failed (creation, execution, or teardown)."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Sandbox error" + (f": {detail}" if detail else ""))


class WorkspaceError(SandboxError):
    """The ephemeral workspace could not be created."""


class SpawnError(SandboxError):
    """The child process could not be started."""

    def __init__(self, command: str, detail: str = "") -> None:
        self.command = command
        msg = f"Failed to spawn {command!r}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ExecutionTimeoutError(SandboxError):
    """A command exceeded its timeout and is still running.

    The process is *not* terminated; ``pid`` is handed back so the caller
    can decide whether to kill it.
    """

    def __init__(self, pid: int, timeout: float) -> None:
        self.pid = pid
        self.timeout = timeout
        super().__init__(f"Process {pid} timed out after {timeout}s")


class CleanupError(IsolationError):
    """A virtual machine could not be powered off or deleted."""

    def __init__(self, machine: str, detail: str = "") -> None:
        self.machine = machine
        self.detail = detail
        msg = f"Cleanup failed for VM: {machine}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class WorkspaceRemovalError(IsolationError):
    """The ephemeral workspace could not be deleted."""

    def __init__(self, path: str, detail: str = "") -> None:
        self.path = path
        self.detail = detail
        msg = f"Could not remove workspace: {path}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
