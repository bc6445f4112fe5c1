"""Two-tier teardown of a daemon instance.

Steps, always in this order and each attempted regardless of the previous
one's outcome:

1. Cooperative Shutdown RPC (its outcome is ignored)
2. Up to ``grace`` seconds for a clean exit, if the RPC was attempted
3. SIGTERM if still alive, then up to ``term_wait`` seconds
4. SIGKILL if still alive
5. Remove the workspace
6. Deregister

Teardown never raises: one broken test's cleanup must not leak the rest of
the run's daemons. Every step logs its failure and moves on.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from .client import ControlClient
from .workspace import destroy_workspace

if TYPE_CHECKING:
    from .supervisor import DaemonInstance

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE = 0.5
TERM_WAIT = 0.1


@contextlib.contextmanager
def _best_effort(step: str, address: str) -> Iterator[None]:
    try:
        yield
    except Exception:
        logger.warning("Teardown step %r failed for daemon at %s", step, address, exc_info=True)


async def shutdown_instance(
    instance: DaemonInstance,
    *,
    client_factory: Callable[[str], ControlClient] = ControlClient,
    grace: float = SHUTDOWN_GRACE,
    term_wait: float = TERM_WAIT,
    rpc_timeout: float = 1.0,
    on_stopped: Callable[[DaemonInstance], None] | None = None,
) -> None:
    """Stop ``instance`` and release everything it owns. Never raises."""
    address = instance.address
    handle = instance.process

    requested = False
    with _best_effort("cooperative shutdown", address):
        if handle is not None and handle.is_alive():
            requested = True
            async with client_factory(address) as client:
                await client.shutdown(timeout=rpc_timeout)

    # Runs whether or not the RPC succeeded
    with _best_effort("grace wait", address):
        if requested and handle is not None and handle.is_alive():
            await handle.wait_exited(grace)

    with _best_effort("terminate", address):
        if handle is not None and handle.is_alive():
            logger.debug("Daemon at %s still running, sending SIGTERM", address)
            handle.terminate()
            await handle.wait_exited(term_wait)

    with _best_effort("kill", address):
        if handle is not None and handle.is_alive():
            logger.warning("Daemon at %s ignored SIGTERM, sending SIGKILL", address)
            handle.kill()

    with _best_effort("remove workspace", address):
        if instance.workspace is not None:
            await destroy_workspace(instance.workspace)

    with _best_effort("deregister", address):
        if on_stopped is not None:
            on_stopped(instance)

    if handle is not None:
        logger.info("Stopped daemon at %s (pid %d, returncode %s)", address, handle.pid, handle.returncode)
