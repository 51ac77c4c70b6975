"""Driver base classes - collaborator abstraction.

The Sandbox manager owns lifecycle policy only. Everything that touches the
outside world goes through these interfaces:
- Installer: locating / downloading the mongod binary
- Topology: supervising one mongod process
- ClientHandle / CollectionHandle: the database wire client

Drivers raise InstallError, TopologyError or SandboxConnectionError for
their own failures; the manager propagates them unchanged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

# the per-instance data directory is a sibling beneath the shared root
DATA_DIR_PREFIX = "mongodb-sandbox"


@dataclass(frozen=True)
class TopologyConfig:
    """Everything needed to launch one mongod."""

    bind_address: str
    port: int
    data_directory: Path


def derive_data_directory(working_root: Path, port: int) -> Path:
    """Data directory scoped by port, so concurrent sandboxes sharing one
    download directory never share database files."""
    return Path(working_root) / f"{DATA_DIR_PREFIX}-server-{port}"


class Installer(ABC):
    """Locates, and if necessary downloads, the mongod binary.

    Every method must be idempotent and safe to call when already satisfied.
    """

    @abstractmethod
    async def is_present(self) -> bool:
        """Check whether the binary is already installed."""
        ...

    @abstractmethod
    async def download(self) -> None:
        """Download and unpack the binary."""
        ...

    @abstractmethod
    async def resolve_binary_path(self) -> Path:
        """Return the path of the installed mongod binary."""
        ...

    @abstractmethod
    async def resolve_working_directory_root(self) -> Path:
        """Return the directory beneath which data directories are created."""
        ...


class Topology(ABC):
    """A single mongod server process."""

    def __init__(self, binary_path: Path, config: TopologyConfig) -> None:
        self.binary_path = Path(binary_path)
        self.config = config

    @abstractmethod
    async def purge(self) -> None:
        """Clear the data directory, leaving it empty and present."""
        ...

    @abstractmethod
    async def discover(self) -> None:
        """Verify the binary and refresh runtime configuration."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Launch the process and wait until it accepts connections."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the process."""
        ...


class CollectionHandle(ABC):
    """One collection in the sandbox database."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def count_documents(self) -> int:
        """Count all documents in the collection."""
        ...

    @abstractmethod
    async def delete_all(self) -> None:
        """Delete every document in the collection."""
        ...


class ClientHandle(ABC):
    """A connected database client."""

    @abstractmethod
    async def list_collections(self, database: str) -> list[CollectionHandle]:
        """List every collection in `database`."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the client and its connections."""
        ...


TopologyFactory = Callable[[Path, TopologyConfig], Topology]
Connector = Callable[[str], Awaitable[ClientHandle]]
