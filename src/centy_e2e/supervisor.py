# src/centy_e2e/supervisor.py
"""
Daemon supervisor: starts isolated daemon instances and tears them down.

Each instance gets its own endpoint, workspace and process. The supervisor
records every instance it starts so they can all be stopped together at the
end of a run, and optionally caches one shared instance for tests that trade
isolation for speed.

    async with DaemonSupervisor(options) as supervisor:
        daemon = await supervisor.start()
        ...  # talk to daemon.address
        await daemon.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Final, Self

from . import client
from .config import DEFAULT_EXISTING_ADDRESS, SupervisorOptions
from .errors import ProcessLaunchError
from .ports import AddressAllocator, Endpoint
from .readiness import Probe, await_ready
from .runtime import ProcessHandle, launch
from .shutdown import shutdown_instance
from .workspace import create_workspace, destroy_workspace

logger = logging.getLogger(__name__)

LOG_FILENAME: Final[str] = "daemon.log"


class LifecycleState(str, Enum):
    """Instance lifecycle.

    State machine: STARTING → READY → STOPPING → STOPPED
    (STARTING → STOPPED directly when startup fails)
    """

    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"


_STATE_ORDER: Final[dict[LifecycleState, int]] = {
    state: index for index, state in enumerate(LifecycleState)
}


class DaemonInstance:
    """One running daemon: endpoint, process, workspace and lifecycle state.

    ``process`` and ``workspace`` are None for an externally managed daemon.
    """

    __slots__ = ("_state", "_stop_task", "_stopper", "endpoint", "id", "process", "workspace")

    def __init__(
        self,
        endpoint: Endpoint,
        process: ProcessHandle | None = None,
        workspace: Path | None = None,
        *,
        stopper: Callable[[DaemonInstance], Awaitable[None]] | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.endpoint = endpoint
        self.process = process
        self.workspace = workspace
        self._state = LifecycleState.STARTING
        self._stopper = stopper
        self._stop_task: asyncio.Future[None] | None = None

    def __repr__(self) -> str:
        return f"<DaemonInstance {self.id} {self.address} {self._state.value}>"

    @property
    def address(self) -> str:
        return self.endpoint.address

    @property
    def port(self) -> int:
        return self.endpoint.port

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_external(self) -> bool:
        return self.process is None

    @property
    def log_path(self) -> Path | None:
        return self.process.log_path if self.process is not None else None

    def _advance(self, state: LifecycleState) -> None:
        # Forward-only: never re-enter an earlier state
        if state is LifecycleState.READY and self._stop_task is not None:
            return
        if _STATE_ORDER[state] > _STATE_ORDER[self._state]:
            self._state = state

    async def stop(self) -> None:
        """Stop the daemon and release its workspace. Idempotent, never raises.

        A call made while a stop is in flight waits for that stop to finish.
        """
        if self._state is LifecycleState.STOPPED:
            return
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._run_stop())
        # Cancelling one waiter must not abandon the teardown halfway
        await asyncio.shield(self._stop_task)

    async def _run_stop(self) -> None:
        # An instance that never became ready goes straight to STOPPED
        if self._state is LifecycleState.READY:
            self._advance(LifecycleState.STOPPING)
        try:
            if self._stopper is not None:
                await self._stopper(self)
        finally:
            self._advance(LifecycleState.STOPPED)


def use_existing_daemon(address: str = DEFAULT_EXISTING_ADDRESS) -> DaemonInstance:
    """Wrap a manually started daemon. Owns nothing; stop() is a no-op."""
    instance = DaemonInstance(Endpoint.parse(address))
    instance._advance(LifecycleState.READY)
    return instance


class DaemonSupervisor:
    """Registry of daemon instances started for one test session.

    Construct one per session (or per test for full isolation); nothing here
    is module-global except the port counter.
    """

    def __init__(
        self,
        options: SupervisorOptions | None = None,
        *,
        allocator: AddressAllocator | None = None,
        client_factory: Callable[[str], client.ControlClient] = client.ControlClient,
        probe: Probe = client.probe,
    ) -> None:
        self.options = options if options is not None else SupervisorOptions.from_env()
        self._allocator = allocator or AddressAllocator(self.options.host, self.options.base_port)
        self._client_factory = client_factory
        self._probe = probe
        self._instances: dict[str, DaemonInstance] = {}
        self._shared: DaemonInstance | None = None
        self._shared_lock = asyncio.Lock()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_all()

    @property
    def instances(self) -> list[DaemonInstance]:
        """Recorded instances in start order."""
        return list(self._instances.values())

    async def start(self) -> DaemonInstance:
        """Start an isolated daemon and wait until it answers.

        The instance is recorded as soon as its process exists, so it is
        cleaned up by stop_all() even if it never becomes ready.

        Raises:
            ProcessLaunchError: The binary could not be spawned (nothing recorded)
            StartupTimeoutError: The daemon never answered
            ProcessExitError: The daemon exited before answering
        """
        options = self.options
        if options.external_address:
            return use_existing_daemon(options.external_address)

        endpoint = self._allocator.next_endpoint()
        workspace = await create_workspace(options.workspace_root)
        env = {**options.extra_env, options.address_env_var: endpoint.address}

        try:
            handle = await launch(
                options.command,
                env=env,
                cwd=workspace,
                log_path=workspace / LOG_FILENAME,
            )
        except ProcessLaunchError:
            with contextlib.suppress(OSError):
                await destroy_workspace(workspace)
            raise

        instance = DaemonInstance(endpoint, handle, workspace, stopper=self._shutdown)
        self._instances[instance.id] = instance
        logger.info("Started daemon at %s (pid %d, workspace %s)", endpoint.address, handle.pid, workspace)

        await await_ready(
            endpoint,
            handle,
            options.startup_timeout,
            probe=self._probe,
            interval=options.poll_interval,
            rpc_timeout=options.rpc_timeout,
        )
        instance._advance(LifecycleState.READY)
        logger.info("Daemon at %s ready", endpoint.address)
        return instance

    async def stop(self, instance: DaemonInstance) -> None:
        await instance.stop()

    async def stop_all(self) -> None:
        """Stop every recorded instance concurrently and drop them from the registry.

        Instances registered by a start() racing this call are left recorded
        for the next stop_all().
        """
        instances = list(self._instances.values())
        self._shared = None
        await asyncio.gather(*(instance.stop() for instance in instances))
        for instance in instances:
            self._instances.pop(instance.id, None)

    async def get_shared(self) -> DaemonInstance:
        """Return the shared instance, starting it on first use."""
        async with self._shared_lock:
            if self._shared is None or self._shared.state is LifecycleState.STOPPED:
                self._shared = await self.start()
            return self._shared

    async def release_shared(self) -> None:
        """Stop the shared instance (if any) and clear the cache."""
        shared, self._shared = self._shared, None
        if shared is not None:
            await shared.stop()

    async def _shutdown(self, instance: DaemonInstance) -> None:
        options = self.options
        await shutdown_instance(
            instance,
            client_factory=self._client_factory,
            grace=options.shutdown_grace,
            term_wait=options.term_wait,
            rpc_timeout=options.rpc_timeout,
            on_stopped=self._deregister,
        )

    def _deregister(self, instance: DaemonInstance) -> None:
        self._instances.pop(instance.id, None)
        if self._shared is instance:
            self._shared = None
