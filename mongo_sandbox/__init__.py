"""mongo_sandbox - a disposable MongoDB server for test suites.

Typical use:

    sandbox = create_sandbox({"database": "my-tests"})
    async with sandbox.lifecycle():
        client = await sandbox.acquire_connection()
        ...
"""

from __future__ import annotations

from collections.abc import Mapping
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from typing import Any

from mongo_sandbox.concurrency import PortRegistry, get_port_registry
from mongo_sandbox.config import InstallerConfig, SandboxConfig, Settings, get_settings
from mongo_sandbox.errors import (
    AllocationError,
    InstallError,
    NotRunningError,
    SandboxConnectionError,
    SandboxError,
    TopologyError,
    UnsafeStateError,
)
from mongo_sandbox.lifecycle import DeadlineContext, Lifecycle
from mongo_sandbox.managers import ConnectionOptions, RunState, Sandbox

try:
    __version__ = _pkg_version("mongo-sandbox")
except PackageNotFoundError:
    __version__ = "unknown"


def create_sandbox(config: SandboxConfig | Mapping[str, Any] | None = None) -> Sandbox:
    """A factory method for a Sandbox."""
    return Sandbox(config)


async def install_sandbox(config: SandboxConfig | Mapping[str, Any] | None = None) -> Sandbox:
    """A Sandbox whose MongoDB binaries have been installed (not started)."""
    return await create_sandbox(config).install()


__all__ = [
    "AllocationError",
    "ConnectionOptions",
    "DeadlineContext",
    "InstallError",
    "InstallerConfig",
    "Lifecycle",
    "NotRunningError",
    "PortRegistry",
    "RunState",
    "Sandbox",
    "SandboxConfig",
    "SandboxConnectionError",
    "SandboxError",
    "Settings",
    "TopologyError",
    "UnsafeStateError",
    "create_sandbox",
    "get_port_registry",
    "get_settings",
    "install_sandbox",
]
