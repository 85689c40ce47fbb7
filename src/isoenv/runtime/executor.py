"""ProcessExecutor — runs one child process, streams its output, enforces a timeout.

Execution happens in two phases:

1. **Streaming**: a readiness wait over stdout/stderr (and stdin, once per
   write while a listener is registered) reads output as it arrives.  The
   phase ends once both output streams reach end-of-stream or the child is
   seen exiting.
2. **Draining**: if the exit status is still unknown, poll for it without
   blocking, sleeping ``drain_interval`` between probes.

The deadline is checked on every iteration of both phases, so a child that
closes its pipes but never exits still times out.  A timeout is reported as
an :class:`~isoenv.runtime.models.ExecutionTimeout` value; the child is left
running.
"""

from __future__ import annotations

import codecs
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING

from isoenv.runtime.models import (
    EventCallback,
    ExecutionOutcome,
    ExecutionResult,
    ExecutionTimeout,
)
from isoenv.runtime.spawner import OutputStream, PosixSpawner, ProcessSpawner, SpawnedProcess
from isoenv.utils.telemetry import (
    ATTR_COMMAND,
    ATTR_EXIT_STATUS,
    ATTR_PID,
    ATTR_TIMED_OUT,
    get_tracer,
)

if TYPE_CHECKING:
    from opentelemetry import trace

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_DRAIN_INTERVAL = 0.5


class _StreamBuffer:
    """Accumulates one stream's output, decoding UTF-8 across chunk boundaries."""

    __slots__ = ("_decoder", "_parts")

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []

    def feed(self, chunk: bytes) -> str:
        text = self._decoder.decode(chunk)
        self._parts.append(text)
        return text

    def finish(self) -> str:
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._parts.append(tail)
        return self.text

    @property
    def text(self) -> str:
        return "".join(self._parts)


class ProcessExecutor:
    """Spawns a command and produces an :data:`ExecutionOutcome`."""

    def __init__(
        self,
        spawner: ProcessSpawner | None = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        drain_interval: float = DEFAULT_DRAIN_INTERVAL,
        logger: logging.Logger | None = None,
        tracer: trace.Tracer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.spawner: ProcessSpawner = spawner or PosixSpawner()
        self._poll_interval = poll_interval
        self._drain_interval = drain_interval
        self._logger = logger or logging.getLogger(__name__)
        self._tracer = tracer or get_tracer(__name__)
        self._clock = clock
        self._sleep = sleep

    def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: str,
        timeout: float | None = None,
        on_event: EventCallback | None = None,
    ) -> ExecutionOutcome:
        """Run *argv* to completion or until *timeout* seconds elapse.

        Raises:
            SpawnError: If the executable cannot be started.
        """
        with self._tracer.start_as_current_span("isoenv.execute") as span:
            span.set_attribute(ATTR_COMMAND, " ".join(argv))

            proc = self.spawner.spawn(argv, env=env, cwd=cwd)
            span.set_attribute(ATTR_PID, proc.pid)
            self._logger.info("Executing: %s (pid %d). Output will stream in...", list(argv), proc.pid)

            try:
                outcome = self._drive(proc, timeout, on_event)
            finally:
                proc.close()

            span.set_attribute(ATTR_TIMED_OUT, outcome.timed_out)
            if isinstance(outcome, ExecutionResult):
                span.set_attribute(ATTR_EXIT_STATUS, outcome.exit_status)
                self._logger.debug("Exit status: %d", outcome.exit_status)
            else:
                self._logger.warning(
                    "Process %d exceeded timeout of %ss (elapsed %.2fs)",
                    outcome.pid,
                    outcome.timeout,
                    outcome.elapsed,
                )
            return outcome

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _drive(
        self,
        proc: SpawnedProcess,
        timeout: float | None,
        on_event: EventCallback | None,
    ) -> ExecutionOutcome:
        start = self._clock()
        buffers: dict[OutputStream, _StreamBuffer] = {
            "stdout": _StreamBuffer(),
            "stderr": _StreamBuffer(),
        }
        open_streams: list[OutputStream] = ["stdout", "stderr"]
        status: int | None = None

        # Streaming phase
        while open_streams:
            readiness = proc.wait_ready(
                open_streams,
                watch_stdin=on_event is not None and proc.stdin.wants_notify,
                timeout=self._wait_interval(start, timeout),
            )
            if self._deadline_exceeded(start, timeout):
                return self._timed_out(proc, start, timeout, buffers)

            for stream in readiness.readable:
                if not self._read_chunk(proc, stream, buffers[stream], on_event):
                    open_streams.remove(stream)

            if readiness.stdin_writable and on_event is not None:
                # Re-armed by the next write to stdin.
                proc.stdin.mark_notified()
                on_event("stdin", proc.stdin)

            status = self._probe_exit(proc)
            if status is not None:
                self._drain_buffered(proc, open_streams, buffers, on_event)
                break

        # Draining phase
        while status is None:
            status = self._probe_exit(proc)
            if status is not None:
                break
            if self._deadline_exceeded(start, timeout):
                return self._timed_out(proc, start, timeout, buffers)
            self._sleep(self._drain_interval)

        return ExecutionResult(
            exit_status=status,
            stdout=buffers["stdout"].finish(),
            stderr=buffers["stderr"].finish(),
        )

    def _read_chunk(
        self,
        proc: SpawnedProcess,
        stream: OutputStream,
        buffer: _StreamBuffer,
        on_event: EventCallback | None,
    ) -> bool:
        """Read one chunk into *buffer*. Returns ``False`` at end-of-stream."""
        chunk = proc.read(stream)
        if chunk is None:
            return False
        text = buffer.feed(chunk)
        self._logger.debug("[%s] %s", stream, text.rstrip("\n"))
        if on_event is not None and text:
            on_event(stream, text)
        return True

    def _drain_buffered(
        self,
        proc: SpawnedProcess,
        open_streams: list[OutputStream],
        buffers: dict[OutputStream, _StreamBuffer],
        on_event: EventCallback | None,
    ) -> None:
        """Collect output the child wrote before exiting but we have not read yet."""
        while open_streams:
            readiness = proc.wait_ready(open_streams, watch_stdin=False, timeout=0)
            if not readiness.readable:
                return
            for stream in readiness.readable:
                if not self._read_chunk(proc, stream, buffers[stream], on_event):
                    open_streams.remove(stream)

    # ------------------------------------------------------------------
    # Shared polling / deadline path
    # ------------------------------------------------------------------

    @staticmethod
    def _probe_exit(proc: SpawnedProcess) -> int | None:
        return proc.poll()

    def _deadline_exceeded(self, start: float, timeout: float | None) -> bool:
        return timeout is not None and (self._clock() - start) > timeout

    def _wait_interval(self, start: float, timeout: float | None) -> float:
        if timeout is None:
            return self._poll_interval
        return max(timeout - (self._clock() - start), 0.0)

    def _timed_out(
        self,
        proc: SpawnedProcess,
        start: float,
        timeout: float | None,
        buffers: dict[OutputStream, _StreamBuffer],
    ) -> ExecutionTimeout:
        assert timeout is not None
        return ExecutionTimeout(
            pid=proc.pid,
            timeout=timeout,
            elapsed=self._clock() - start,
            stdout=buffers["stdout"].text,
            stderr=buffers["stderr"].text,
        )
