"""VirtualBox support: machine listing, service detection and VM teardown."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

import psutil
from pydantic import BaseModel, ConfigDict

from isoenv.runtime.errors import CleanupError
from isoenv.runtime.models import ExecutionOptions, ExecutionOutcome, ExecutionTimeout
from isoenv.settings import SandboxSettings
from isoenv.utils.telemetry import ATTR_VM_COUNT, ATTR_VM_NAME, ATTR_VM_UUID, get_tracer

if TYPE_CHECKING:
    from opentelemetry import trace

    from isoenv.runtime.spawner import ProcessSpawner

# One line of ``VBoxManage list vms``: "name" {uuid}
_VM_LINE = re.compile(r'^"(?P<name>.+?)" \{(?P<uuid>.+?)\}$')


class VirtualMachine(BaseModel):
    """A machine as reported by the provider's listing command."""

    model_config = ConfigDict(frozen=True)

    name: str
    uuid: str


def parse_vm_list(text: str) -> list[VirtualMachine]:
    """Extract machines from ``list vms`` output, skipping lines that don't match."""
    machines: list[VirtualMachine] = []
    for line in text.splitlines():
        match = _VM_LINE.match(line.rstrip("\r"))
        if match is not None:
            machines.append(VirtualMachine(name=match["name"], uuid=match["uuid"]))
    return machines


def find_service_process(name: str = "VBoxSVC") -> bool:
    """Return ``True`` if a process called *name* is running on this host."""
    for proc in psutil.process_iter(["name"]):
        if proc.info.get("name") == name:
            return True
    return False


class CommandRunner(Protocol):
    """Anything that can run a provider command, e.g. an isolated environment."""

    def execute(
        self,
        command: str,
        *args: str,
        options: ExecutionOptions | None = None,
    ) -> ExecutionOutcome: ...


def _describe(outcome: ExecutionOutcome) -> str:
    if isinstance(outcome, ExecutionTimeout):
        return f"timed out after {outcome.timeout}s"
    detail = outcome.stderr.strip() or outcome.stdout.strip()
    return f"exit status {outcome.exit_status}" + (f": {detail}" if detail else "")


class VMCleaner:
    """Powers off and deletes every machine visible to a runner.

    Machines are handled one at a time in listing order.  A failed power-off
    or unregister raises :class:`CleanupError` and stops the sweep; nothing
    is retried.  A power-off that hangs past its timeout is killed and the
    machine is deleted anyway, since the provider usually completes the
    power-off regardless.
    """

    def __init__(
        self,
        runner: CommandRunner,
        spawner: ProcessSpawner,
        settings: SandboxSettings | None = None,
        *,
        logger: logging.Logger | None = None,
        tracer: trace.Tracer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._spawner = spawner
        self._settings = settings or SandboxSettings()
        self._logger = logger or logging.getLogger(__name__)
        self._tracer = tracer or get_tracer(__name__)
        self._sleep = sleep

    def list_machines(self) -> list[VirtualMachine]:
        """Run the listing command and parse its output."""
        self._logger.debug("Finding all virtual machines")
        outcome = self._runner.execute(self._settings.manage_command, "list", "vms")
        if not outcome.succeeded:
            raise CleanupError("*", f"listing machines failed, {_describe(outcome)}")
        machines = parse_vm_list(outcome.stdout)
        self._logger.debug("Found %d virtual machine(s)", len(machines))
        return machines

    def delete_virtual_machines(self) -> list[VirtualMachine]:
        """Remove all machines and return the ones that were deleted."""
        with self._tracer.start_as_current_span("isoenv.cleanup") as span:
            machines = self.list_machines()
            span.set_attribute(ATTR_VM_COUNT, len(machines))
            for machine in machines:
                self.delete_machine(machine)
        self._logger.info("Removed all virtual machines")
        return machines

    def delete_machine(self, machine: VirtualMachine) -> None:
        """Power off *machine* and unregister it, deleting its files."""
        manage = self._settings.manage_command
        with self._tracer.start_as_current_span("isoenv.cleanup.vm") as span:
            span.set_attribute(ATTR_VM_NAME, machine.name)
            span.set_attribute(ATTR_VM_UUID, machine.uuid)
            self._logger.info("Removing VM: %s", machine.name)

            # Power-off sometimes freezes even though the VM is aborted;
            # the timeout gets us past that.
            outcome = self._runner.execute(
                manage,
                "controlvm",
                machine.uuid,
                "poweroff",
                options=ExecutionOptions(timeout=self._settings.poweroff_timeout),
            )
            if isinstance(outcome, ExecutionTimeout):
                self._logger.warning(
                    "Failed to poweroff VM '%s'. Killing process %d.", machine.uuid, outcome.pid
                )
                self._spawner.kill(outcome.pid)
                self._spawner.reap(outcome.pid)
            elif not outcome.succeeded:
                raise CleanupError(machine.name, f"VM halt failed, {_describe(outcome)}")

            self._sleep(self._settings.settle_delay)

            outcome = self._runner.execute(manage, "unregistervm", machine.uuid, "--delete")
            if not outcome.succeeded:
                raise CleanupError(machine.name, f"VM unregistration failed, {_describe(outcome)}")
