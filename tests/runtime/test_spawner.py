"""Tests for the POSIX process spawner."""

import os

import pytest

from isoenv.runtime.errors import SpawnError
from isoenv.runtime.spawner import PosixSpawner, ProcessSpawner, SpawnedProcess, StdinWriter


def _read_all(proc, stream) -> bytes:
    data = b""
    while True:
        chunk = proc.read(stream)
        if chunk is None:
            return data
        data += chunk


class TestPosixSpawner:
    def test_satisfies_protocols(self) -> None:
        spawner = PosixSpawner()
        assert isinstance(spawner, ProcessSpawner)
        proc = spawner.spawn(["true"], env=dict(os.environ), cwd=os.getcwd())
        try:
            assert isinstance(proc, SpawnedProcess)
        finally:
            spawner.reap(proc.pid)

    def test_read_returns_none_at_end_of_stream(self) -> None:
        spawner = PosixSpawner()
        proc = spawner.spawn(["echo", "hello"], env=dict(os.environ), cwd=os.getcwd())
        assert _read_all(proc, "stdout") == b"hello\n"
        assert proc.read("stdout") is None
        assert spawner.reap(proc.pid) == 0

    def test_wait_ready_reports_readable_stream(self) -> None:
        spawner = PosixSpawner()
        proc = spawner.spawn(["sh", "-c", "echo out"], env=dict(os.environ), cwd=os.getcwd())
        readiness = proc.wait_ready(["stdout", "stderr"], watch_stdin=False, timeout=5.0)
        assert "stdout" in readiness.readable
        assert readiness.stdin_writable is False
        spawner.reap(proc.pid)

    def test_wait_ready_reports_stdin(self) -> None:
        spawner = PosixSpawner()
        proc = spawner.spawn(["cat"], env=dict(os.environ), cwd=os.getcwd())
        readiness = proc.wait_ready(["stdout", "stderr"], watch_stdin=True, timeout=5.0)
        assert readiness.stdin_writable is True
        proc.stdin.write("ping")
        proc.stdin.close()
        assert _read_all(proc, "stdout") == b"ping"
        assert spawner.reap(proc.pid) == 0

    def test_poll_and_exit_status(self) -> None:
        spawner = PosixSpawner()
        proc = spawner.spawn(["sh", "-c", "exit 7"], env=dict(os.environ), cwd=os.getcwd())
        _read_all(proc, "stdout")
        assert spawner.reap(proc.pid) == 7
        assert proc.poll() == 7

    def test_missing_executable(self) -> None:
        spawner = PosixSpawner()
        with pytest.raises(SpawnError) as exc_info:
            spawner.spawn(["nonexistent_command_xyz"], env=dict(os.environ), cwd=os.getcwd())
        assert exc_info.value.command == "nonexistent_command_xyz"

    def test_empty_command(self) -> None:
        with pytest.raises(SpawnError):
            PosixSpawner().spawn([], env={}, cwd=os.getcwd())

    def test_kill_and_reap_by_pid(self) -> None:
        spawner = PosixSpawner()
        proc = spawner.spawn(["sleep", "30"], env=dict(os.environ), cwd=os.getcwd())
        proc.close()
        spawner.kill(proc.pid)
        assert spawner.reap(proc.pid) == -9

    def test_timed_out_child_tracked_until_reaped(self) -> None:
        from isoenv.runtime.executor import ProcessExecutor

        spawner = PosixSpawner()
        executor = ProcessExecutor(spawner)
        finished = executor.run(["true"], env=dict(os.environ), cwd=os.getcwd())
        assert finished.succeeded
        assert spawner.unreaped == []

        outcome = executor.run(["sleep", "30"], env=dict(os.environ), cwd=os.getcwd(), timeout=0.2)
        assert spawner.unreaped == [outcome.pid]
        spawner.kill(outcome.pid)
        assert spawner.reap(outcome.pid) == -9
        assert spawner.unreaped == []

    def test_reap_twice_returns_none(self) -> None:
        spawner = PosixSpawner()
        proc = spawner.spawn(["true"], env=dict(os.environ), cwd=os.getcwd())
        pid = proc.pid
        spawner.reap(pid)
        # Already reaped: nothing left to collect.
        assert spawner.reap(pid) is None


class TestStdinWriter:
    def test_closed_without_pipe(self) -> None:
        writer = StdinWriter(None)
        assert writer.closed is True
        writer.close()

    def test_write_after_close_raises(self) -> None:
        writer = StdinWriter(None)
        with pytest.raises(ValueError, match="stdin is closed"):
            writer.write("data")

    def test_notify_rearmed_by_write(self) -> None:
        read_fd, write_fd = os.pipe()
        writer = StdinWriter(os.fdopen(write_fd, "wb", buffering=0))
        try:
            assert writer.wants_notify is True
            writer.mark_notified()
            assert writer.wants_notify is False
            writer.write("x")
            assert writer.wants_notify is True
            writer.close()
            assert writer.wants_notify is False
        finally:
            os.close(read_fd)

    def test_no_notify_without_pipe(self) -> None:
        assert StdinWriter(None).wants_notify is False
