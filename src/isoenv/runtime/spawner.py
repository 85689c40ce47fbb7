"""Process-spawning interface and its POSIX implementation.

The :class:`ProcessExecutor` only talks to the :class:`ProcessSpawner` and
:class:`SpawnedProcess` protocols, so tests can substitute doubles for the
real ``subprocess``/``select`` machinery.
"""

from __future__ import annotations

import logging
import os
import select
import signal
import subprocess
from collections.abc import Callable, Mapping, Sequence
from typing import IO, Literal, NamedTuple, Protocol, runtime_checkable

from isoenv.runtime.errors import SpawnError

logger = logging.getLogger(__name__)

OutputStream = Literal["stdout", "stderr"]

DEFAULT_CHUNK_SIZE = 4096


class Readiness(NamedTuple):
    """What a readiness wait reported."""

    readable: list[OutputStream]
    stdin_writable: bool


class StdinWriter:
    """Write end of the child's stdin, handed to ``stdin`` event listeners.

    A ``stdin`` event is delivered once; the executor stops watching the
    pipe until the listener writes again, so a listener that never writes
    or closes stdin does not keep the readiness wait from blocking.
    """

    def __init__(self, pipe: IO[bytes] | None) -> None:
        self._pipe = pipe
        self._wrote_since_notify = True

    @property
    def closed(self) -> bool:
        return self._pipe is None or self._pipe.closed

    @property
    def wants_notify(self) -> bool:
        """True while stdin is open and written to since the last ``stdin`` event."""
        return self._wrote_since_notify and not self.closed

    def mark_notified(self) -> None:
        self._wrote_since_notify = False

    def write(self, data: str | bytes) -> None:
        if self.closed:
            raise ValueError("stdin is closed")
        if isinstance(data, str):
            data = data.encode()
        self._pipe.write(data)  # type: ignore[union-attr]
        self._pipe.flush()  # type: ignore[union-attr]
        self._wrote_since_notify = True

    def close(self) -> None:
        if not self.closed:
            try:
                self._pipe.close()  # type: ignore[union-attr]
            except BrokenPipeError:
                logger.debug("stdin already closed by the child")


@runtime_checkable
class SpawnedProcess(Protocol):
    """A running child process with piped standard streams."""

    @property
    def pid(self) -> int: ...

    @property
    def stdin(self) -> StdinWriter: ...

    def wait_ready(
        self,
        streams: Sequence[OutputStream],
        *,
        watch_stdin: bool,
        timeout: float,
    ) -> Readiness:
        """Block up to *timeout* seconds until a stream is ready."""
        ...

    def read(self, stream: OutputStream) -> bytes | None:
        """Read the next chunk, or ``None`` once the stream has ended."""
        ...

    def poll(self) -> int | None:
        """Return the exit status if the child has exited, without blocking."""
        ...

    def close(self) -> None:
        """Release the stream handles. Does not terminate the child."""
        ...


@runtime_checkable
class ProcessSpawner(Protocol):
    """Starts child processes and terminates them by identifier."""

    def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: str,
    ) -> SpawnedProcess:
        """Start *argv*; raise :class:`SpawnError` if it cannot run."""
        ...

    def kill(self, pid: int) -> None:
        """Forcibly terminate the process *pid*."""
        ...

    def reap(self, pid: int) -> int | None:
        """Wait for *pid* to exit and collect its status."""
        ...


class PosixProcess:
    """:class:`SpawnedProcess` backed by :class:`subprocess.Popen`."""

    def __init__(
        self,
        popen: subprocess.Popen[bytes],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_close: Callable[[PosixProcess], None] | None = None,
    ) -> None:
        self._popen = popen
        self._chunk_size = chunk_size
        self._on_close = on_close
        self._stdin = StdinWriter(popen.stdin)

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def stdin(self) -> StdinWriter:
        return self._stdin

    @property
    def returncode(self) -> int | None:
        return self._popen.returncode

    def _pipe(self, stream: OutputStream) -> IO[bytes]:
        pipe = self._popen.stdout if stream == "stdout" else self._popen.stderr
        assert pipe is not None
        return pipe

    def wait_ready(
        self,
        streams: Sequence[OutputStream],
        *,
        watch_stdin: bool,
        timeout: float,
    ) -> Readiness:
        by_pipe = {self._pipe(s): s for s in streams}
        writers = [self._popen.stdin] if watch_stdin and not self._stdin.closed else []
        ready_r, ready_w, _ = select.select(list(by_pipe), writers, [], max(timeout, 0.0))
        # Report in the order the caller listed the streams.
        readable = [s for s in streams if self._pipe(s) in ready_r]
        return Readiness(readable=readable, stdin_writable=bool(ready_w))

    def read(self, stream: OutputStream) -> bytes | None:
        data = os.read(self._pipe(stream).fileno(), self._chunk_size)
        return data or None

    def poll(self) -> int | None:
        return self._popen.poll()

    def kill(self) -> None:
        self._popen.kill()

    def wait(self) -> int:
        return self._popen.wait()

    def close(self) -> None:
        self._stdin.close()
        for pipe in (self._popen.stdout, self._popen.stderr):
            if pipe is not None:
                pipe.close()
        if self._on_close is not None:
            self._on_close(self)


class PosixSpawner:
    """:class:`ProcessSpawner` for POSIX hosts.

    Children that have not been reaped are tracked by pid so that
    :meth:`kill` and :meth:`reap` go through the same ``Popen`` object
    that started them.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size
        self._live: dict[int, PosixProcess] = {}

    @property
    def unreaped(self) -> list[int]:
        """Pids of children still awaiting :meth:`reap`, e.g. after a timeout."""
        return list(self._live)

    def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: str,
    ) -> PosixProcess:
        if not argv:
            raise SpawnError("", "empty command")
        try:
            popen = subprocess.Popen(
                list(argv),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=dict(env),
                cwd=cwd,
                bufsize=0,
            )
        except OSError as exc:
            raise SpawnError(argv[0], str(exc)) from exc

        proc = PosixProcess(popen, self._chunk_size, on_close=self._release)
        self._live[proc.pid] = proc
        return proc

    def kill(self, pid: int) -> None:
        proc = self._live.get(pid)
        if proc is not None:
            proc.kill()
            return
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process %d already gone", pid)

    def reap(self, pid: int) -> int | None:
        proc = self._live.pop(pid, None)
        if proc is not None:
            status = proc.wait()
            proc.close()
            return status
        try:
            _, status = os.waitpid(pid, 0)
        except ChildProcessError:
            logger.debug("Process %d already reaped", pid)
            return None
        return os.waitstatus_to_exitcode(status)

    def _release(self, proc: PosixProcess) -> None:
        # Children still running after close (timed out) stay tracked for kill/reap.
        if proc.returncode is not None:
            self._live.pop(proc.pid, None)
