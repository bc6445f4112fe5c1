# tests/centy_e2e/test_readiness.py
"""
Tests for the readiness prober.

Probes are faked so the three racing branches (probe success, deadline,
process exit) can be driven deterministically.

Tests cover:
- Polling (first-try success, retries, swallowed errors, interval)
- Deadline (bounded timeout, hanging probes, process left running)
- Early exit (exit codes, signals, captured output)
"""

import asyncio
import sys
import time

import pytest

from centy_e2e.errors import ProcessExitError, StartupTimeoutError
from centy_e2e.ports import Endpoint
from centy_e2e.readiness import await_ready
from centy_e2e.runtime import launch

ENDPOINT = Endpoint(host="127.0.0.1", port=59998)


class CountingProbe:
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error
        self.calls: list[tuple[str, float]] = []

    async def __call__(self, address: str, timeout: float) -> bool:
        self.calls.append((address, timeout))
        if len(self.calls) <= self.failures:
            if self.error is not None:
                raise self.error
            return False
        return True


async def never_ready(address: str, timeout: float) -> bool:
    return False


async def hanging_probe(address: str, timeout: float) -> bool:
    await asyncio.sleep(3600)
    return True


class TestPolling:
    """Test the status-call polling loop."""

    @pytest.mark.asyncio
    async def test_ready_on_first_probe(self, sleeper):
        """A daemon answering at once is probed exactly once."""
        probe = CountingProbe()

        await await_ready(ENDPOINT, sleeper, timeout=5.0, probe=probe)

        assert probe.calls == [(ENDPOINT.address, 1.0)]

    @pytest.mark.asyncio
    async def test_retries_until_probe_succeeds(self, sleeper):
        """Unsuccessful probes are retried until one succeeds."""
        probe = CountingProbe(failures=3)

        await await_ready(ENDPOINT, sleeper, timeout=5.0, probe=probe, interval=0.01)

        assert len(probe.calls) == 4

    @pytest.mark.asyncio
    async def test_probe_errors_are_swallowed(self, sleeper):
        """Connection errors while the daemon is still binding are not failures."""
        probe = CountingProbe(failures=2, error=ConnectionRefusedError("not yet"))

        await await_ready(ENDPOINT, sleeper, timeout=5.0, probe=probe, interval=0.01)

        assert len(probe.calls) == 3

    @pytest.mark.asyncio
    async def test_polls_on_interval(self, sleeper):
        """Roughly one attempt per tick, never a busy loop."""
        probe = CountingProbe(failures=100)

        with pytest.raises(StartupTimeoutError):
            await await_ready(ENDPOINT, sleeper, timeout=0.55, probe=probe, interval=0.1)

        assert 3 <= len(probe.calls) <= 7

    @pytest.mark.asyncio
    async def test_no_tasks_leak_after_success(self, sleeper):
        """Probe and exit-watch tasks are cleaned up on return."""
        before = asyncio.all_tasks()

        await await_ready(ENDPOINT, sleeper, timeout=5.0, probe=CountingProbe(failures=1), interval=0.01)

        assert asyncio.all_tasks() == before


class TestDeadline:
    """Test the overall startup timeout."""

    @pytest.mark.asyncio
    async def test_timeout_is_bounded(self, sleeper):
        """The wait ends within one interval of the deadline."""
        timeout = 0.5
        interval = 0.1
        start = time.monotonic()

        with pytest.raises(StartupTimeoutError) as exc_info:
            await await_ready(ENDPOINT, sleeper, timeout=timeout, probe=never_ready, interval=interval)

        elapsed = time.monotonic() - start
        assert elapsed < timeout + interval + 0.25
        assert exc_info.value.address == ENDPOINT.address
        assert exc_info.value.timeout == timeout

    @pytest.mark.asyncio
    async def test_timeout_with_hanging_probe(self, sleeper):
        """A probe that never returns cannot stretch the wait past the deadline."""
        start = time.monotonic()

        with pytest.raises(StartupTimeoutError):
            await await_ready(ENDPOINT, sleeper, timeout=0.3, probe=hanging_probe)

        assert time.monotonic() - start < 0.3 + 0.25

    @pytest.mark.asyncio
    async def test_timeout_leaves_process_running(self, sleeper):
        """Timing out does not kill the daemon."""
        with pytest.raises(StartupTimeoutError):
            await await_ready(ENDPOINT, sleeper, timeout=0.2, probe=never_ready)

        assert sleeper.is_alive()


class TestEarlyExit:
    """Test a daemon exiting before it becomes ready."""

    @pytest.mark.asyncio
    async def test_early_exit_short_circuits_timeout(self, tmp_path):
        """An exit is reported at once with its code and output."""
        handle = await launch(
            [sys.executable, "-c", "import sys; print('config error: port in use'); sys.exit(3)"],
            log_path=tmp_path / "daemon.log",
        )
        start = time.monotonic()

        with pytest.raises(ProcessExitError) as exc_info:
            await await_ready(ENDPOINT, handle, timeout=30.0, probe=never_ready)

        assert time.monotonic() - start < 10.0
        error = exc_info.value
        assert error.returncode == 3
        assert error.signal_name is None
        assert "port in use" in error.output
        assert "exited with code 3" in str(error)

    @pytest.mark.asyncio
    async def test_clean_exit_before_ready_is_an_error(self, tmp_path):
        """Exit code 0 before readiness still fails the start."""
        handle = await launch([sys.executable, "-c", "pass"], log_path=tmp_path / "daemon.log")

        with pytest.raises(ProcessExitError) as exc_info:
            await await_ready(ENDPOINT, handle, timeout=30.0, probe=never_ready)

        assert exc_info.value.returncode == 0

    @pytest.mark.asyncio
    async def test_exit_by_signal_is_reported(self, tmp_path):
        """A daemon killed by a signal is reported by signal name."""
        handle = await launch(
            [sys.executable, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"],
            log_path=tmp_path / "daemon.log",
        )

        with pytest.raises(ProcessExitError) as exc_info:
            await await_ready(ENDPOINT, handle, timeout=30.0, probe=hanging_probe)

        assert exc_info.value.signal_name == "SIGKILL"
        assert "killed by SIGKILL" in str(exc_info.value)
