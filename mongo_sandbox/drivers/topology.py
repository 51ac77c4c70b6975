"""MongodTopology - supervises a single stand-alone mongod process."""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path

import structlog

from mongo_sandbox.drivers.base import Topology, TopologyConfig
from mongo_sandbox.errors import TopologyError

logger = structlog.get_logger()

_VERSION_RE = re.compile(r"db version v(\d+\.\d+\.\d+)")

READY_POLL_INTERVAL = 0.2


class MongodTopology(Topology):
    """A stand-alone mongod bound to one port and one data directory."""

    def __init__(
        self,
        binary_path: Path,
        config: TopologyConfig,
        *,
        startup_timeout: float = 30.0,
        stop_timeout: float = 10.0,
    ) -> None:
        super().__init__(binary_path, config)
        self._startup_timeout = startup_timeout
        self._stop_timeout = stop_timeout
        self._process: asyncio.subprocess.Process | None = None
        self.version: str | None = None
        self._log = logger.bind(driver="topology", port=config.port)

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def log_path(self) -> Path:
        return self.config.data_directory / "mongod.log"

    def _read_log_tail(self, limit: int = 2000) -> str:
        try:
            return self.log_path.read_text(errors="replace")[-limit:]
        except OSError:
            return ""

    def command(self) -> list[str]:
        """The mongod command line."""
        return [
            str(self.binary_path),
            "--bind_ip",
            self.config.bind_address,
            "--port",
            str(self.config.port),
            "--dbpath",
            str(self.config.data_directory),
            "--logpath",
            str(self.log_path),
        ]

    async def purge(self) -> None:
        data_directory = self.config.data_directory

        def _purge() -> None:
            shutil.rmtree(data_directory, ignore_errors=True)
            data_directory.mkdir(parents=True, exist_ok=True)

        try:
            await asyncio.to_thread(_purge)
        except OSError as e:
            raise TopologyError(
                f"Unable to purge {data_directory}: {e}",
                details={"data_directory": str(data_directory)},
            ) from e

        self._log.debug("topology.purged", data_directory=str(data_directory))

    async def discover(self) -> None:
        """Run `mongod --version` to confirm the binary works."""
        try:
            process = await asyncio.create_subprocess_exec(
                str(self.binary_path),
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self._startup_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise TopologyError(
                f"Unable to run {self.binary_path}: {e}",
                details={"binary_path": str(self.binary_path)},
            ) from e

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise TopologyError(
                f"{self.binary_path} --version exited with {process.returncode}",
                details={"output": output[-2000:]},
            )

        match = _VERSION_RE.search(output)
        self.version = match.group(1) if match else None
        self._log.info("topology.discovered", version=self.version)

    async def start(self) -> None:
        if self.is_running:
            return

        self._log.info("topology.start", command=self.command())
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise TopologyError(f"Unable to launch mongod: {e}") from e

        try:
            await self._wait_for_ready()
        except BaseException:
            # cancellation included; never leave the process behind
            await self._terminate()
            raise

        self._log.info("topology.started", pid=self._process.pid)

    async def _wait_for_ready(self) -> None:
        process = self._process
        assert process is not None
        host = self.config.bind_address
        if host in ("0.0.0.0", "::"):
            host = "127.0.0.1"

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._startup_timeout
        while loop.time() < deadline:
            if process.returncode is not None:
                log_tail = await asyncio.to_thread(self._read_log_tail)
                raise TopologyError(
                    f"mongod exited with {process.returncode} during startup",
                    details={"log": log_tail},
                )
            try:
                _, writer = await asyncio.open_connection(host, self.config.port)
            except OSError:
                await asyncio.sleep(READY_POLL_INTERVAL)
                continue
            writer.close()
            await writer.wait_closed()
            return

        raise TopologyError(
            f"mongod did not accept connections within {self._startup_timeout}s",
            details={"port": self.config.port},
        )

    async def stop(self) -> None:
        if self._process is None:
            return
        await self._terminate()
        self._log.info("topology.stopped")

    async def _terminate(self) -> None:
        process = self._process
        if process is None:
            return
        try:
            if process.returncode is None:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
                except asyncio.TimeoutError:
                    self._log.warning("topology.kill", pid=process.pid)
                    process.kill()
                    await process.wait()
        except ProcessLookupError:
            pass
        finally:
            self._process = None
