"""Sandbox - manages the lifecycle of one disposable MongoDB instance.

State machine:

    IDLE --start--> STARTING --ok--> RUNNING --stop--> STOPPING --ok--> IDLE

A failure while STARTING or STOPPING returns the sandbox to IDLE and is
raised to every caller of that transition. Concurrent calls to the same
transition share one execution and one outcome.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from mongo_sandbox.concurrency.ports import PortRegistry, get_port_registry
from mongo_sandbox.concurrency.transition import Transition
from mongo_sandbox.config import DEFAULT_DATABASE, DEFAULT_HOST, SandboxConfig
from mongo_sandbox.drivers.base import (
    ClientHandle,
    Connector,
    Installer,
    Topology,
    TopologyConfig,
    TopologyFactory,
    derive_data_directory,
)
from mongo_sandbox.drivers.client import connect as pymongo_connect
from mongo_sandbox.drivers.installer import MongoDBInstaller
from mongo_sandbox.drivers.topology import MongodTopology
from mongo_sandbox.errors import AllocationError, NotRunningError

if TYPE_CHECKING:
    from mongo_sandbox.lifecycle import DeadlineContext, Lifecycle

logger = structlog.get_logger()


class RunState(str, Enum):
    """Sandbox run state."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class ConnectionOptions:
    """How to reach a running sandbox."""

    host: str
    port: int
    database: str
    url: str


def _format_url(host: str, port: int, database: str) -> str:
    if ":" in host:
        host = f"[{host}]"
    return f"mongodb://{host}:{port}/{database}"


class Sandbox:
    """Launches a stand-alone MongoDB server for use within a test suite.

    Every collaborator is injectable; by default the sandbox downloads an
    official archive, supervises a local mongod and talks to it via pymongo.
    Ports come from the process-wide PortRegistry unless one is supplied.
    """

    def __init__(
        self,
        config: SandboxConfig | Mapping[str, Any] | None = None,
        *,
        installer: Installer | None = None,
        port_registry: PortRegistry | None = None,
        topology_factory: TopologyFactory | None = None,
        connect: Connector | None = None,
    ) -> None:
        self._config = SandboxConfig.coerce(config)
        self._installer = installer or MongoDBInstaller(self._config.installer)
        self._ports = port_registry or get_port_registry()
        self._topology_factory = topology_factory or self._default_topology
        self._connect = connect or pymongo_connect
        self._log = logger.bind(manager="sandbox")

        self._starting: Transition[Sandbox] = Transition("start")
        self._stopping: Transition[Sandbox] = Transition("stop")

        self._reset()

    def _reset(self) -> None:
        """Flush all per-run state back to IDLE defaults."""
        self._state = RunState.IDLE
        self._port: int | None = None
        self._topology: Topology | None = None
        self._clients: list[ClientHandle] = []

    def _default_topology(self, binary_path: Path, config: TopologyConfig) -> Topology:
        return MongodTopology(
            binary_path,
            config,
            startup_timeout=self._config.startup_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> SandboxConfig:
        return self._config

    @property
    def installer(self) -> Installer:
        return self._installer

    @property
    def run_state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        """`True` if the Sandbox is running."""
        return self._state == RunState.RUNNING

    @property
    def port(self) -> int | None:
        """The reserved port; set whenever the sandbox is not IDLE."""
        return self._port

    @property
    def topology(self) -> Topology | None:
        return self._topology

    @property
    def connections(self) -> tuple[ClientHandle, ...]:
        return tuple(self._clients)

    @property
    def connection_options(self) -> ConnectionOptions:
        """Host, port, database and URL of the running topology.

        Raises:
            NotRunningError: If the Sandbox is not running
        """
        self._assert_running()
        assert self._port is not None

        host = self._config.host or DEFAULT_HOST
        database = self._config.database or DEFAULT_DATABASE
        return ConnectionOptions(
            host=host,
            port=self._port,
            database=database,
            url=_format_url(host, self._port, database),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self) -> Sandbox:
        """Start the sandbox, or join a start already in flight.

        A no-op when already running. A start that arrives while a stop is
        in flight waits for the stop to settle first.
        """
        if self._starting.in_flight:
            self._log.info("sandbox.waiting_on_transition", transition="start")
            return await self._starting.join()

        if self.is_running:
            return self

        if self._stopping.in_flight:
            self._log.info("sandbox.waiting_on_transition", transition="stop")
            await self._stopping.settle()
            return await self.start()

        return await self._starting.run(self._start)

    async def _start(self) -> Sandbox:
        self._state = RunState.STARTING
        self._log.info("sandbox.start", base_port=self._config.base_port)

        topology: Topology | None = None
        try:
            await self.install()

            port, binary_path = await asyncio.gather(
                self._ports.allocate(self._config.base_port),
                self._installer.resolve_binary_path(),
                return_exceptions=True,
            )
            if isinstance(port, int):
                self._port = port
            for result in (port, binary_path):
                if isinstance(result, BaseException):
                    raise result
            self._log.info("sandbox.port_derived", port=self._port)

            topology = await self._derive_topology(binary_path)

            # clear stale data, then query for the resulting configuration
            await topology.purge()
            await topology.discover()
            await topology.start()
        except (Exception, asyncio.CancelledError) as e:
            self._log.error("sandbox.start_failed", port=self._port, error=repr(e))
            try:
                if topology is not None:
                    # a cancelled launch may already have spawned the process
                    await asyncio.shield(self._discard_topology(topology))
            finally:
                if self._port is not None:
                    self._ports.release(self._port)
                self._reset()
            raise

        self._topology = topology
        self._state = RunState.RUNNING
        self._log.info("sandbox.started", **asdict(self.connection_options))
        return self

    async def stop(self) -> Sandbox:
        """Stop the sandbox, or join a stop already in flight.

        A no-op when not running. Cleanup is best-effort: every step runs
        even if an earlier one failed, the sandbox always ends IDLE with its
        port released, and the first error encountered is then raised.
        """
        if self._stopping.in_flight:
            self._log.info("sandbox.waiting_on_transition", transition="stop")
            return await self._stopping.join()

        if self._starting.in_flight:
            self._log.info("sandbox.waiting_on_transition", transition="start")
            await self._starting.settle()
            return await self.stop()

        if not self.is_running:
            return self

        return await self._stopping.run(self._stop)

    async def _stop(self) -> Sandbox:
        self._state = RunState.STOPPING
        topology = self._topology
        port = self._port
        assert topology is not None
        self._log.info("sandbox.stop", port=port, connections=len(self._clients))

        first_error: Exception | None = None

        # they're all closed after this; don't try to close them again
        clients, self._clients = self._clients, []
        results = await asyncio.gather(
            *(client.close() for client in clients),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                self._log.warning("sandbox.close_failed", error=str(result))
                first_error = first_error or result

        for step in (topology.stop, topology.purge):
            try:
                await step()
            except Exception as e:
                self._log.warning("sandbox.stop_step_failed", step=step.__name__, error=str(e))
                first_error = first_error or e

        if port is not None:
            self._ports.release(port)
        self._reset()

        if first_error is not None:
            self._log.error("sandbox.stop_failed", port=port, error=str(first_error))
            raise first_error

        self._log.info("sandbox.stopped", port=port)
        return self

    async def install(self) -> Sandbox:
        """Install MongoDB binaries; idempotent."""
        if await self._installer.is_present():
            return self

        self._log.info("sandbox.install", version=self._config.installer.version)
        await self._installer.download()
        return self

    # ------------------------------------------------------------------
    # Data plane
    # ------------------------------------------------------------------

    async def has_documents(self) -> bool:
        """`True` if any collection in the sandbox database holds a document."""
        self._assert_running()

        client = await self.acquire_connection()
        collections = await client.list_collections(self._config.database)
        counts = await asyncio.gather(*(c.count_documents() for c in collections))
        return any(count != 0 for count in counts)

    async def purge_documents(self) -> Sandbox:
        """Delete all documents from every collection in the sandbox database."""
        self._assert_running()

        client = await self.acquire_connection()
        collections = await client.list_collections(self._config.database)
        await asyncio.gather(*(c.delete_all() for c in collections))
        self._log.debug("sandbox.purged", collections=len(collections))
        return self

    async def acquire_connection(self) -> ClientHandle:
        """The first connection opened, opening one if needed."""
        self._assert_running()

        if self._clients:
            return self._clients[0]
        return await self.acquire_new_connection()

    async def acquire_new_connection(self) -> ClientHandle:
        """Open a new connection; it is closed automatically upon stop()."""
        self._assert_running()

        client = await self._connect(self.connection_options.url)
        if not self.is_running:
            # a stop began while we were connecting
            await client.close()
            raise NotRunningError()

        self._clients.append(client)
        return client

    def lifecycle(self, context: DeadlineContext | None = None) -> Lifecycle:
        """A Lifecycle guard wrapping this sandbox."""
        from mongo_sandbox.lifecycle import Lifecycle

        return Lifecycle(self, context)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _derive_topology_config(self, working_root: Path) -> TopologyConfig:
        """Raises AllocationError if no port has been derived yet."""
        if self._port is None:
            raise AllocationError("MongoDB Sandbox port has not been derived")

        return TopologyConfig(
            bind_address=self._config.host or DEFAULT_HOST,
            port=self._port,
            data_directory=derive_data_directory(working_root, self._port),
        )

    async def _derive_topology(self, binary_path: Path) -> Topology:
        working_root = await self._installer.resolve_working_directory_root()
        return self._topology_factory(binary_path, self._derive_topology_config(working_root))

    async def _discard_topology(self, topology: Topology) -> None:
        """Stop and purge a topology whose start failed; errors are logged only."""
        for step in (topology.stop, topology.purge):
            try:
                await step()
            except Exception as e:
                self._log.warning("sandbox.discard_failed", step=step.__name__, error=str(e))

    def _assert_running(self) -> None:
        if not self.is_running:
            raise NotRunningError()
