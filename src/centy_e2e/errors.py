"""Errors raised while bringing a daemon instance up.

Teardown never raises these: stop paths log and swallow their failures.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for all harness errors."""


class ProcessLaunchError(HarnessError):
    """The daemon binary could not be spawned (missing, not executable, ...)."""

    def __init__(self, command: list[str], reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to launch daemon {command[0]!r}: {reason}")


class StartupTimeoutError(HarnessError):
    """The daemon never answered a status call within the startup window."""

    def __init__(self, address: str, timeout: float) -> None:
        self.address = address
        self.timeout = timeout
        super().__init__(f"Daemon startup timeout at {address} after {timeout:.1f}s")


class ProcessExitError(HarnessError):
    """The daemon exited before it became ready."""

    def __init__(
        self,
        address: str,
        returncode: int | None,
        signal_name: str | None = None,
        output: str = "",
    ) -> None:
        self.address = address
        self.returncode = returncode
        self.signal_name = signal_name
        self.output = output

        if signal_name:
            reason = f"killed by {signal_name}"
        else:
            reason = f"exited with code {returncode}"
        message = f"Daemon at {address} {reason} before becoming ready"
        if output:
            message += f": {output}"
        super().__init__(message)


class ProtoNotFoundError(HarnessError):
    """The service definition (.proto) could not be found."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Proto file not found: {path}")
