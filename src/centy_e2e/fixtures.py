"""
pytest fixtures for suites that run against daemon instances.

Needs pytest and pytest-asyncio, installed with the ``pytest`` extra
(``pip install centy-e2e[pytest]``); the rest of the package does not.

Import them into a conftest.py:

    from centy_e2e.fixtures import daemon_options, daemon_supervisor, isolated_daemon

or list the module in the root conftest's ``pytest_plugins``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from .config import SupervisorOptions
from .supervisor import DaemonInstance, DaemonSupervisor


@pytest.fixture
def daemon_options() -> SupervisorOptions:
    """Supervisor options from CENTY_* environment variables.

    Override this fixture to point a suite at a different binary.
    """
    return SupervisorOptions.from_env()


@pytest_asyncio.fixture
async def daemon_supervisor(daemon_options: SupervisorOptions) -> AsyncIterator[DaemonSupervisor]:
    """A supervisor whose instances are all stopped after the test."""
    supervisor = DaemonSupervisor(daemon_options)
    try:
        yield supervisor
    finally:
        await supervisor.stop_all()


@pytest_asyncio.fixture
async def isolated_daemon(daemon_supervisor: DaemonSupervisor) -> DaemonInstance:
    """A fresh daemon with its own port and workspace, stopped after the test."""
    return await daemon_supervisor.start()
