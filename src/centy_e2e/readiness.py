"""Wait for a freshly launched daemon to start answering RPCs.

There is no deterministic "ready" signal, so readiness is polled: a status
call every interval until one succeeds. The wait races three branches:

- a probe attempt succeeds -> ready
- the overall deadline passes -> StartupTimeoutError
- the process exits -> ProcessExitError, without waiting out the deadline

Whichever branch wins, the others are cancelled. A timeout leaves the
process running; reclaiming it is the caller's stop() path.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from .client import probe as probe_status
from .errors import ProcessExitError, StartupTimeoutError
from .ports import Endpoint
from .runtime import ProcessHandle, decode_signal

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1

Probe = Callable[[str, float], Awaitable[bool]]


async def _cancel(task: asyncio.Future[object]) -> None:
    if task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def _exit_error(endpoint: Endpoint, handle: ProcessHandle) -> ProcessExitError:
    returncode = handle.returncode
    return ProcessExitError(
        endpoint.address,
        returncode,
        signal_name=decode_signal(returncode),
        output=handle.read_output(),
    )


async def await_ready(
    endpoint: Endpoint,
    handle: ProcessHandle,
    timeout: float,
    *,
    probe: Probe = probe_status,
    interval: float = POLL_INTERVAL,
    rpc_timeout: float = 1.0,
) -> None:
    """Block until the daemon at ``endpoint`` answers a status call.

    Args:
        endpoint: Address the daemon was told to bind
        handle: The daemon process, watched for an early exit
        timeout: Seconds to wait overall
        probe: Coroutine returning True once the daemon answers
        interval: Seconds between probe attempts
        rpc_timeout: Upper bound on a single probe attempt

    Raises:
        StartupTimeoutError: No probe succeeded within ``timeout``
        ProcessExitError: The process exited before becoming ready
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    exited = asyncio.ensure_future(handle.wait())
    attempt: asyncio.Future[bool] | None = None
    attempts = 0

    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StartupTimeoutError(endpoint.address, timeout)

            attempts += 1
            attempt = asyncio.ensure_future(probe(endpoint.address, min(rpc_timeout, remaining)))
            await asyncio.wait({attempt, exited}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

            if exited.done():
                raise _exit_error(endpoint, handle)
            if not attempt.done():
                raise StartupTimeoutError(endpoint.address, timeout)
            error = attempt.exception()
            if error is None and attempt.result():
                logger.debug("Daemon at %s ready after %d probe(s)", endpoint.address, attempts)
                return
            if error is not None:
                # Not listening yet surfaces here too; keep polling
                logger.debug("Probe of %s raised: %r", endpoint.address, error)

            # Sleep until the next tick, still watching for an exit
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StartupTimeoutError(endpoint.address, timeout)
            await asyncio.wait({exited}, timeout=min(interval, remaining))
            if exited.done():
                raise _exit_error(endpoint, handle)
    finally:
        if attempt is not None:
            await _cancel(attempt)
        await _cancel(exited)
