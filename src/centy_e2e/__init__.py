"""centy-e2e - Isolated daemon instances for end-to-end tests."""

from importlib.metadata import PackageNotFoundError, version

from .config import SupervisorOptions
from .errors import (
    HarnessError,
    ProcessExitError,
    ProcessLaunchError,
    ProtoNotFoundError,
    StartupTimeoutError,
)
from .ports import AddressAllocator, Endpoint
from .supervisor import DaemonInstance, DaemonSupervisor, LifecycleState, use_existing_daemon

try:
    __version__ = version("centy-e2e")
except PackageNotFoundError:
    # Running from source without install
    __version__ = "0.0.0+dev"

__all__ = [
    "AddressAllocator",
    "DaemonInstance",
    "DaemonSupervisor",
    "Endpoint",
    "HarnessError",
    "LifecycleState",
    "ProcessExitError",
    "ProcessLaunchError",
    "ProtoNotFoundError",
    "StartupTimeoutError",
    "SupervisorOptions",
    "use_existing_daemon",
]
