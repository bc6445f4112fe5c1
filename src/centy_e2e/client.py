# src/centy_e2e/client.py
"""
gRPC clients for the daemon.

ControlClient is what the supervisor uses: it only needs the status and
shutdown calls, and issues both as generic unary calls carrying raw bytes,
so it works without compiled stubs or the .proto file.

ServiceClient loads centy.proto at runtime and exposes the whole RPC surface
to test cases as plain dicts.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Final, Self

import grpc
from google.protobuf import json_format

from .config import resolve_proto_path
from .errors import ProtoNotFoundError

logger = logging.getLogger(__name__)

SERVICE_NAME: Final[str] = "centy.CentyDaemon"
GET_DAEMON_INFO_METHOD: Final[str] = f"/{SERVICE_NAME}/GetDaemonInfo"
SHUTDOWN_METHOD: Final[str] = f"/{SERVICE_NAME}/Shutdown"

# Both GetDaemonInfoRequest{} and ShutdownRequest{delay_seconds: 0} have no
# non-default fields, so their proto3 encoding is the empty message.
EMPTY_MESSAGE: Final[bytes] = b""


class ControlClient:
    """Minimal client for the daemon's status and shutdown RPCs.

    One channel per client. Callers should create a fresh client per probe
    attempt: a channel that failed to connect backs off before retrying,
    which would slow readiness detection.
    """

    __slots__ = ("_channel", "address")

    def __init__(self, address: str) -> None:
        self.address = address
        self._channel = grpc.aio.insecure_channel(address)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def get_daemon_info(self, timeout: float = 1.0) -> bytes:
        """Issue the status call. Raises grpc.aio.AioRpcError if the daemon is not serving."""
        call = self._channel.unary_unary(GET_DAEMON_INFO_METHOD)
        response: bytes = await call(EMPTY_MESSAGE, timeout=timeout)
        return response

    async def shutdown(self, timeout: float = 1.0) -> bytes:
        """Ask the daemon to shut itself down immediately (delay_seconds=0)."""
        call = self._channel.unary_unary(SHUTDOWN_METHOD)
        response: bytes = await call(EMPTY_MESSAGE, timeout=timeout)
        return response

    async def close(self) -> None:
        await self._channel.close()


async def probe(address: str, timeout: float = 1.0) -> bool:
    """Return True if the daemon at ``address`` answers the status call.

    Connection failures mean "not ready yet" and are reported as False.
    """
    async with ControlClient(address) as client:
        try:
            await client.get_daemon_info(timeout=timeout)
        except grpc.aio.AioRpcError as e:
            logger.debug("Probe of %s failed: %s", address, e.code().name)
            return False
    return True


def load_service(proto_path: str | Path | None = None) -> tuple[ModuleType, ModuleType]:
    """Compile centy.proto at runtime and return its (messages, services) modules.

    The proto's directory is added to sys.path because grpc resolves proto
    imports against it.

    Raises:
        ProtoNotFoundError: If the proto file does not exist
    """
    path = Path(proto_path) if proto_path else resolve_proto_path()
    if not path.is_file():
        raise ProtoNotFoundError(str(path))

    include_dir = str(path.resolve().parent)
    if include_dir not in sys.path:
        sys.path.append(include_dir)

    protos, services = grpc.protos_and_services(path.name)
    return protos, services


class ServiceClient:
    """Dict-in, dict-out client for every RPC declared in centy.proto.

    Field names use the proto's lower_snake_case form:

        info = await client.call("GetDaemonInfo")
        issue = await client.call("CreateIssue", project_path=path, title="Bug")
    """

    __slots__ = ("_channel", "_messages", "_service", "address")

    def __init__(
        self,
        address: str,
        proto_path: str | Path | None = None,
        service: str = SERVICE_NAME,
    ) -> None:
        self.address = address
        self._messages, _ = load_service(proto_path)
        package, _, name = service.rpartition(".")
        file_descriptor = self._messages.DESCRIPTOR
        if package and file_descriptor.package != package:
            raise ValueError(f"Service {service} not declared in {file_descriptor.name}")
        self._service = file_descriptor.services_by_name[name]
        self._channel = grpc.aio.insecure_channel(address)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def methods(self) -> list[str]:
        return [method.name for method in self._service.methods]

    def _message_class(self, full_name: str) -> Any:
        # Message classes are module attributes named after the unqualified type
        return getattr(self._messages, full_name.rpartition(".")[2])

    async def call(self, method: str, timeout: float | None = 10.0, **fields: Any) -> dict[str, Any]:
        """Invoke ``method`` with ``fields`` as the request body.

        Raises:
            KeyError: If the service has no such method
            grpc.aio.AioRpcError: If the call fails
        """
        descriptor = self._service.methods_by_name[method]
        request_cls = self._message_class(descriptor.input_type.full_name)
        response_cls = self._message_class(descriptor.output_type.full_name)

        request = json_format.ParseDict(fields, request_cls())
        stub = self._channel.unary_unary(
            f"/{self._service.full_name}/{method}",
            request_serializer=request_cls.SerializeToString,
            response_deserializer=response_cls.FromString,
        )
        response = await stub(request, timeout=timeout)
        return json_format.MessageToDict(response, preserving_proto_field_name=True)

    async def close(self) -> None:
        await self._channel.close()
