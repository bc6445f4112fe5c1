"""Private temporary directories backing daemon instances."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "centy-e2e-"


async def create_workspace(root: str | Path | None = None, prefix: str = WORKSPACE_PREFIX) -> Path:
    """Create a fresh, uniquely named directory under ``root`` (system temp by default)."""
    if root is not None:
        await asyncio.to_thread(Path(root).mkdir, parents=True, exist_ok=True)
    path = await asyncio.to_thread(tempfile.mkdtemp, prefix=prefix, dir=root)
    return Path(path)


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass


async def destroy_workspace(path: str | Path) -> None:
    """Recursively delete a workspace. Deleting a missing workspace is a no-op.

    Raises:
        OSError: If the tree exists but cannot be removed. Callers on the
            teardown path are expected to log and swallow this.
    """
    path = Path(path)
    await asyncio.to_thread(_remove_tree, path)
    logger.debug("Removed workspace %s", path)
