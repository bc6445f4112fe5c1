"""Throwaway project directories for tests that drive the daemon."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Any

from .client import ServiceClient
from .workspace import destroy_workspace

PROJECT_PREFIX = "centy-test-"


class TempProject:
    """A temporary project directory bound to a service client."""

    __slots__ = ("client", "path")

    def __init__(self, path: Path, client: ServiceClient) -> None:
        self.path = path
        self.client = client

    def __repr__(self) -> str:
        return f"<TempProject {self.path}>"

    def file_exists(self, relative: str) -> bool:
        return (self.path / relative).exists()

    async def call(self, method: str, **fields: Any) -> dict[str, Any]:
        """Invoke an RPC with ``project_path`` filled in."""
        return await self.client.call(method, project_path=str(self.path), **fields)

    async def cleanup(self) -> None:
        """Remove the project directory. Safe to call more than once."""
        await destroy_workspace(self.path)


async def create_temp_project(
    client: ServiceClient,
    *,
    initialize: bool = False,
    root: str | Path | None = None,
) -> TempProject:
    """Create an empty project directory, optionally initialised by the daemon.

    Raises:
        grpc.aio.AioRpcError: If the Init call fails
        RuntimeError: If the daemon reports an unsuccessful Init
    """
    path = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=PROJECT_PREFIX, dir=root))
    project = TempProject(path, client)

    if initialize:
        try:
            result = await project.call("Init", force=True)
        except BaseException:
            await project.cleanup()
            raise
        if not result.get("success"):
            await project.cleanup()
            raise RuntimeError(f"Init failed for {path}: {result.get('error', 'unknown error')}")

    return project
