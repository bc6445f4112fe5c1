"""Supervisor configuration and checkout path resolution.

The daemon, CLI and proto are looked up in two layouts:
- CI: checked out as subdirectories of the working directory
- Local dev: sibling directories of the working directory

Environment variables override both.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any, Final

import msgspec
from msgspec import Meta, Struct, field

from .ports import DEFAULT_BASE_PORT, DEFAULT_HOST, Port

ADDRESS_ENV_VAR: Final[str] = "CENTY_DAEMON_ADDR"
DEFAULT_EXISTING_ADDRESS: Final[str] = "127.0.0.1:50051"

# Environment variable -> SupervisorOptions field
_ENV_FIELDS: Final[dict[str, str]] = {
    "CENTY_DAEMON_BIN": "daemon_binary",
    "CENTY_E2E_HOST": "host",
    "CENTY_E2E_BASE_PORT": "base_port",
    "CENTY_E2E_STARTUP_TIMEOUT": "startup_timeout",
    "CENTY_E2E_WORKSPACE_ROOT": "workspace_root",
    "CENTY_E2E_EXTERNAL_DAEMON": "external_address",
}

Seconds = Annotated[float, Meta(gt=0)]


def _resolve_checkout(ci_relative: str, env_var: str | None = None) -> Path:
    """Resolve a path inside a sibling checkout, preferring the CI layout."""
    if env_var:
        override = os.getenv(env_var)
        if override:
            return Path(override)

    cwd = Path.cwd()
    ci_path = cwd / ci_relative
    if ci_path.exists():
        return ci_path
    return cwd.parent / ci_relative


def resolve_daemon_binary() -> Path:
    return _resolve_checkout("centy-daemon/target/release/centy-daemon", "CENTY_DAEMON_BIN")


def resolve_cli_path() -> Path:
    return _resolve_checkout("centy-cli/bin/run.js", "CENTY_CLI_PATH")


def resolve_proto_path() -> Path:
    return _resolve_checkout("centy-daemon/proto/centy.proto", "CENTY_PROTO_PATH")


class SupervisorOptions(Struct, frozen=True, kw_only=True, forbid_unknown_fields=True):
    """Settings for launching and supervising daemon instances.

    Build directly, or from CENTY_* environment variables via from_env().
    Values coming from the environment are raw strings; msgspec coerces them
    against the field types.
    """

    daemon_binary: str | None = None
    daemon_args: tuple[str, ...] = ()
    extra_env: dict[str, str] = field(default_factory=dict)
    address_env_var: str = ADDRESS_ENV_VAR

    host: str = DEFAULT_HOST
    base_port: Port = DEFAULT_BASE_PORT

    startup_timeout: Seconds = 10.0
    poll_interval: Seconds = 0.1
    rpc_timeout: Seconds = 1.0
    shutdown_grace: Seconds = 0.5
    term_wait: Seconds = 0.1

    workspace_root: str | None = None
    external_address: str | None = None

    @property
    def command(self) -> list[str]:
        """Daemon argv, resolving the default binary location if none was given."""
        binary = self.daemon_binary or str(resolve_daemon_binary())
        return [binary, *self.daemon_args]

    @classmethod
    def from_env(cls, **overrides: Any) -> SupervisorOptions:
        """Load options from the environment; keyword overrides win.

        Raises:
            msgspec.ValidationError: If a variable cannot be coerced
        """
        raw: dict[str, Any] = {}
        for env_var, field_name in _ENV_FIELDS.items():
            value = os.getenv(env_var)
            if value:
                raw[field_name] = value
        raw.update(overrides)
        return msgspec.convert(raw, cls, strict=False)
