"""Sandbox error types.

Error codes are stable strings for programmatic handling.
Collaborator failures (download, process, client) are translated into
these types at the driver boundary and propagated verbatim by the manager.
"""

from __future__ import annotations

from typing import Any


class SandboxError(Exception):
    """Base error for all sandbox exceptions."""

    code: str = "internal_error"
    message: str = "An internal error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)


class NotRunningError(SandboxError):
    """A data-plane operation was invoked while the sandbox is not running."""

    code = "not_running"
    message = "MongoDB Sandbox is not running"


class AllocationError(SandboxError):
    """No free local port could be found."""

    code = "allocation_failed"
    message = "Unable to allocate a local port"


class UnsafeStateError(SandboxError):
    """The sandbox database already contains documents.

    Under mock conditions all collections must start empty; finding data
    means the fixture is probably pointed at a real database.
    """

    code = "unsafe_state"
    message = "mock database contains Documents"


class InstallError(SandboxError):
    """MongoDB binaries could not be downloaded or located."""

    code = "install_failed"
    message = "MongoDB installation failed"


class TopologyError(SandboxError):
    """The mongod process could not be prepared, started or stopped."""

    code = "topology_failed"
    message = "MongoDB topology failed"


class SandboxConnectionError(SandboxError):
    """Database client failure.

    Note: Named to avoid shadowing Python's builtin ConnectionError.
    """

    code = "connection_failed"
    message = "MongoDB connection failed"

