# src/centy_e2e/runtime.py
"""
Process execution for the harness.

This module provides:
- Signal decoding for negative return codes
- ProcessHandle, exclusive ownership of a spawned daemon process
- launch() for starting the daemon with an injected environment
- run_cli() for invoking the CLI front-end as an opaque executable
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Final

from .errors import ProcessLaunchError

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LIMIT: Final[int] = 4096


def decode_signal(returncode: int | None) -> str | None:
    """
    Decode negative return codes to signal names.

    Args:
        returncode: Process return code (negative indicates signal)

    Returns:
        Signal name (e.g., "SIGTERM") or None if not a signal

    Examples:
        decode_signal(-15) -> "SIGTERM"
        decode_signal(-9) -> "SIGKILL"
        decode_signal(0) -> None
        decode_signal(1) -> None
    """
    if returncode is None or returncode >= 0:
        return None

    sig_num = abs(returncode)

    try:
        sig = signal.Signals(sig_num)
        return sig.name
    except ValueError:
        # Unknown signal - return generic name
        return f"SIG{sig_num}"


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Immutable result of running a command to completion."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def signal_name(self) -> str | None:
        return decode_signal(self.returncode)


class ProcessHandle:
    """Owns one spawned daemon process.

    Only the supervisor that launched the process holds its handle, so it is
    the only party that signals or waits on it. Signalling a process that has
    already exited is a no-op.
    """

    __slots__ = ("_process", "command", "log_path")

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: list[str],
        log_path: Path | None = None,
    ) -> None:
        self._process = process
        self.command = command
        self.log_path = log_path

    def __repr__(self) -> str:
        return f"<ProcessHandle pid={self.pid} returncode={self.returncode}>"

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def is_alive(self) -> bool:
        return self._process.returncode is None

    async def wait(self) -> int:
        """Wait for the process to exit and return its return code."""
        return await self._process.wait()

    async def wait_exited(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for exit. Returns True if the process exited."""
        if not self.is_alive():
            return True
        try:
            await asyncio.wait_for(self._process.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def send_signal(self, sig: int) -> None:
        if not self.is_alive():
            return
        # The process may exit between the check and the signal
        with contextlib.suppress(ProcessLookupError):
            self._process.send_signal(sig)

    def terminate(self) -> None:
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        self.send_signal(signal.SIGKILL)

    def read_output(self, limit: int = OUTPUT_TAIL_LIMIT) -> str:
        """Return the last ``limit`` bytes of captured stdout/stderr."""
        if self.log_path is None:
            return ""
        try:
            data = self.log_path.read_bytes()
        except OSError:
            return ""
        return data[-limit:].decode("utf-8", errors="replace").strip()


async def launch(
    command: Sequence[str],
    env: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
    log_path: str | Path | None = None,
) -> ProcessHandle:
    """Spawn the daemon as a child process.

    Args:
        command: Binary path followed by its arguments
        env: Variables merged over os.environ (e.g. the bind address)
        cwd: Working directory for the daemon
        log_path: File receiving stdout and stderr; discarded when None

    Returns:
        ProcessHandle owning the new process

    Raises:
        ProcessLaunchError: If the binary cannot be spawned
    """
    argv = [str(part) for part in command]
    if not argv:
        raise ProcessLaunchError(["<empty>"], "empty command")

    exec_env = {**os.environ, **env} if env else None

    with contextlib.ExitStack() as stack:
        # Never inherit stdio: daemon output would interleave with test output
        stdout: int | IO[bytes] = asyncio.subprocess.DEVNULL
        if log_path is not None:
            stdout = stack.enter_context(Path(log_path).open("wb"))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd,
                env=exec_env,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessLaunchError(argv, e.strerror or str(e)) from e

    logger.debug("Launched %s (pid %d)", argv[0], process.pid)
    return ProcessHandle(process, argv, Path(log_path) if log_path is not None else None)


def run_cli(
    command: Sequence[str],
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> ExecutionResult:
    """Run the CLI front-end to completion.

    Args:
        command: Executable and arguments
        cwd: Working directory for the command
        env: Environment variables to pass to the command (merged with os.environ)
        timeout: Timeout in seconds (None for no timeout)

    Returns:
        ExecutionResult with returncode, stdout, stderr

    Raises:
        subprocess.TimeoutExpired: If the command outlives ``timeout``
    """
    exec_env = {**os.environ, **env} if env else None

    result = subprocess.run(
        [str(part) for part in command],
        cwd=cwd,
        env=exec_env,
        timeout=timeout,
        capture_output=True,
        text=True,
    )

    return ExecutionResult(
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )
