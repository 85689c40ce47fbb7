"""Data models for process execution inside an isolated environment."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StreamName = Literal["stdout", "stderr", "stdin"]

EventCallback = Callable[[StreamName, Any], None]
"""Live-event listener: ``(stream_name, payload)``.

For ``stdout``/``stderr`` the payload is the decoded chunk; for ``stdin``
it is a :class:`~isoenv.runtime.spawner.StdinWriter`.
"""


class ExecutionResult(BaseModel):
    """Outcome of a process that ran to completion."""

    model_config = ConfigDict(frozen=True)

    exit_status: int = Field(..., description="Process exit status (negative: killed by signal).")
    stdout: str = Field(default="", description="Accumulated stdout.")
    stderr: str = Field(default="", description="Accumulated stderr.")
    timed_out: Literal[False] = False

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0


class ExecutionTimeout(BaseModel):
    """Outcome of a process that outlived its timeout.

    The process is still running. Terminating it is up to the caller: until
    it is killed and reaped through the executor's spawner, the spawner keeps
    tracking it and, once it exits, it lingers as a zombie.
    """

    model_config = ConfigDict(frozen=True)

    pid: int = Field(..., description="Identifier of the still-running child.")
    timeout: float = Field(..., description="The budget that was exceeded, in seconds.")
    elapsed: float = Field(..., description="Wall-clock seconds spent before giving up.")
    stdout: str = Field(default="", description="Stdout captured before the deadline.")
    stderr: str = Field(default="", description="Stderr captured before the deadline.")
    timed_out: Literal[True] = True

    @property
    def succeeded(self) -> bool:
        return False


ExecutionOutcome = ExecutionResult | ExecutionTimeout


class ExecutionOptions(BaseModel):
    """Per-call options for :meth:`IsolatedEnvironment.execute`."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    cwd: str | None = Field(default=None, description="Working directory override.")
    timeout: float | None = Field(default=None, gt=0, description="Wall-clock budget in seconds.")
    env: dict[str, str] = Field(default_factory=dict, description="Extra env vars for this call.")
    on_event: EventCallback | None = Field(default=None, description="Live-event listener.")
