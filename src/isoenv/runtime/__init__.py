"""Process execution runtime — spawning, streaming and timeouts."""

from isoenv.runtime.errors import (
    CleanupError,
    ExecutionTimeoutError,
    IsolationError,
    SandboxError,
    SpawnError,
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
from isoenv.runtime.spawner import PosixSpawner, ProcessSpawner, SpawnedProcess, StdinWriter

__all__ = [
    "CleanupError",
    "ExecutionOptions",
    "ExecutionOutcome",
    "ExecutionResult",
    "ExecutionTimeout",
    "ExecutionTimeoutError",
    "IsolationError",
    "PosixSpawner",
    "ProcessExecutor",
    "ProcessSpawner",
    "SandboxError",
    "SpawnError",
    "SpawnedProcess",
    "StdinWriter",
    "WorkspaceError",
    "WorkspaceRemovalError",
]
