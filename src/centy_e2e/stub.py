"""
Stub daemon: a stand-in for the real daemon's control surface.

Serves GetDaemonInfo and Shutdown on the address in CENTY_DAEMON_ADDR so the
supervisor can be exercised (and local fixtures developed) without building
the real daemon. Every other RPC answers UNIMPLEMENTED.

Behaviour knobs (environment):
    CENTY_STUB_STARTUP_DELAY    Seconds to wait before binding
    CENTY_STUB_IGNORE_SHUTDOWN  Acknowledge Shutdown but keep serving
    CENTY_STUB_IGNORE_SIGTERM   Ignore SIGTERM (only SIGKILL stops it)

Usage: python -m centy_e2e.stub
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal as signal_module
import sys
from typing import Any, Final

import grpc

from .client import SERVICE_NAME
from .config import ADDRESS_ENV_VAR

logger = logging.getLogger(__name__)

# DaemonInfo{} / ShutdownResponse{}: all-default messages encode to nothing
EMPTY_RESPONSE: Final[bytes] = b""


def _flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes"}


class StubDaemon:
    """grpc.aio server answering the control RPCs of the daemon service."""

    def __init__(self, address: str, *, ignore_shutdown: bool = False) -> None:
        self.address = address
        self.ignore_shutdown = ignore_shutdown
        self._server = grpc.aio.server()
        self._server.add_generic_rpc_handlers((self._build_handler(),))
        self._stopping: asyncio.Task[None] | None = None

    def _build_handler(self) -> grpc.GenericRpcHandler:
        return grpc.method_handlers_generic_handler(
            SERVICE_NAME,
            {
                "GetDaemonInfo": grpc.unary_unary_rpc_method_handler(self._handle_get_daemon_info),
                "Shutdown": grpc.unary_unary_rpc_method_handler(self._handle_shutdown),
            },
        )

    async def _handle_get_daemon_info(self, _request: bytes, _context: Any) -> bytes:
        return EMPTY_RESPONSE

    async def _handle_shutdown(self, _request: bytes, _context: Any) -> bytes:
        if not self.ignore_shutdown:
            # Reply first; stopping inside the handler would cancel this call
            asyncio.get_running_loop().call_soon(self.request_stop)
        return EMPTY_RESPONSE

    def request_stop(self) -> None:
        if self._stopping is None:
            self._stopping = asyncio.ensure_future(self._server.stop(grace=0.1))

    async def serve(self) -> None:
        port = self._server.add_insecure_port(self.address)
        if port == 0:
            raise RuntimeError(f"Could not bind {self.address}")
        await self._server.start()
        logger.info("Stub daemon listening on %s", self.address)
        await self._server.wait_for_termination()
        if self._stopping is not None:
            await self._stopping


async def run_stub(address: str) -> None:
    delay = float(os.getenv("CENTY_STUB_STARTUP_DELAY", "0") or 0)
    if delay > 0:
        await asyncio.sleep(delay)

    daemon = StubDaemon(address, ignore_shutdown=_flag("CENTY_STUB_IGNORE_SHUTDOWN"))

    loop = asyncio.get_running_loop()
    if _flag("CENTY_STUB_IGNORE_SIGTERM"):
        signal_module.signal(signal_module.SIGTERM, signal_module.SIG_IGN)
    else:
        loop.add_signal_handler(signal_module.SIGTERM, daemon.request_stop)
    loop.add_signal_handler(signal_module.SIGINT, daemon.request_stop)

    await daemon.serve()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    address = os.getenv(ADDRESS_ENV_VAR)
    if not address:
        print(f"Usage: {ADDRESS_ENV_VAR}=host:port python -m centy_e2e.stub", file=sys.stderr)
        sys.exit(2)
    asyncio.run(run_stub(address))


if __name__ == "__main__":
    main()
