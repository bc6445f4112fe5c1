# tests/centy_e2e/conftest.py
"""
Shared pytest fixtures for harness tests.

Daemons are played by the stub daemon (python -m centy_e2e.stub) or by small
inline Python programs that crash or hang on purpose.
"""

import asyncio
import itertools
import os
import sys
import textwrap
from pathlib import Path

import pytest
import pytest_asyncio

from centy_e2e.config import SupervisorOptions
from centy_e2e.fixtures import daemon_supervisor, isolated_daemon  # noqa: F401
from centy_e2e.ports import AddressAllocator
from centy_e2e.runtime import launch

STUB_ARGS = ("-m", "centy_e2e.stub")

# Keep away from the default range so a developer's running daemons don't interfere
TEST_BASE_PORT = 52100

_test_ports = itertools.count()


def stub_options(workspace_root: Path, **overrides) -> SupervisorOptions:
    """Options that launch the stub daemon into ``workspace_root``."""
    settings = {
        "daemon_binary": sys.executable,
        "daemon_args": STUB_ARGS,
        "base_port": TEST_BASE_PORT,
        "startup_timeout": 15.0,
        "workspace_root": str(workspace_root),
    }
    settings.update(overrides)
    return SupervisorOptions(**settings)


def script_options(workspace_root: Path, code: str, **overrides) -> SupervisorOptions:
    """Options that launch an inline Python program as the 'daemon'."""
    return stub_options(
        workspace_root,
        daemon_args=("-c", textwrap.dedent(code)),
        **overrides,
    )


def private_allocator() -> AddressAllocator:
    """Allocator drawing from this test run's private counter."""
    return AddressAllocator(base_port=TEST_BASE_PORT + 500, counter=_test_ports)


def pid_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


async def wait_for_output(handle, needle: str, timeout: float = 10.0) -> None:
    """Wait until the process has written ``needle`` to its captured output."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while needle not in handle.read_output():
        if loop.time() > deadline:
            raise AssertionError(f"{needle!r} never appeared in output: {handle.read_output()!r}")
        await asyncio.sleep(0.05)


@pytest.fixture
def workspace_root(tmp_path):
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def daemon_options(workspace_root):
    """Point the library fixtures at the stub daemon."""
    return stub_options(workspace_root)


@pytest_asyncio.fixture
async def sleeper(tmp_path):
    """A long-running process that never serves anything."""
    handle = await launch(
        [sys.executable, "-c", "import time; print('up', flush=True); time.sleep(60)"],
        log_path=tmp_path / "sleeper.log",
    )
    yield handle
    handle.kill()
    await handle.wait()
