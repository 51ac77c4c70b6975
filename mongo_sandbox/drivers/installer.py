"""MongoDB installer - downloads official mongod archives.

Layout beneath the download directory:

    <download_dir>/
        mongodb-download/<archive stem>/bin/mongod    (unpacked archive)
        mongodb-sandbox-server-<port>/                (per-instance data, see Topology)
"""

from __future__ import annotations

import asyncio
import platform
import tarfile
import tempfile
from pathlib import Path

import httpx
import structlog

from mongo_sandbox.config import InstallerConfig
from mongo_sandbox.drivers.base import Installer
from mongo_sandbox.errors import InstallError

logger = structlog.get_logger()

UNPACK_DIR_NAME = "mongodb-download"

_LINUX_ARCH = {"x86_64": "x86_64", "amd64": "x86_64", "aarch64": "aarch64", "arm64": "aarch64"}
_MACOS_ARCH = {"x86_64": "x86_64", "amd64": "x86_64", "arm64": "arm64", "aarch64": "arm64"}


def archive_url(
    config: InstallerConfig,
    *,
    system: str | None = None,
    machine: str | None = None,
) -> str:
    """Derive the archive URL for this host.

    Raises:
        InstallError: If there is no archive for this platform
    """
    if config.download_url:
        return config.download_url

    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    mirror = config.mirror.rstrip("/")

    if system == "linux" and machine in _LINUX_ARCH:
        arch = _LINUX_ARCH[machine]
        return (
            f"{mirror}/linux/mongodb-linux-{arch}-{config.distribution}-{config.version}.tgz"
        )

    if system == "darwin" and machine in _MACOS_ARCH:
        arch = _MACOS_ARCH[machine]
        return f"{mirror}/osx/mongodb-macos-{arch}-{config.version}.tgz"

    raise InstallError(
        f"No MongoDB archive for platform {system}/{machine}",
        details={"system": system, "machine": machine},
    )


def _archive_stem(url: str) -> str:
    name = url.rsplit("/", 1)[-1]
    for suffix in (".tar.gz", ".tgz"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _unpack(archive: Path, destination: Path) -> None:
    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:gz") as tar:
        tar.extractall(destination, filter="data")


class MongoDBInstaller(Installer):
    """Installer backed by fastdl.mongodb.org (or a configured mirror / URL).

    When `mongod_path` is configured the binary is used as-is and nothing is
    ever downloaded.
    """

    def __init__(
        self,
        config: InstallerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        system: str | None = None,
        machine: str | None = None,
    ) -> None:
        self._config = config or InstallerConfig()
        self._transport = transport
        self._system = system
        self._machine = machine
        self._download_dir = self._config.resolve_download_dir()
        self._log = logger.bind(driver="installer", version=self._config.version)

    @property
    def config(self) -> InstallerConfig:
        return self._config

    @property
    def download_dir(self) -> Path:
        return self._download_dir

    def archive_url(self) -> str:
        return archive_url(self._config, system=self._system, machine=self._machine)

    async def is_present(self) -> bool:
        binary = await self.resolve_binary_path()
        return await asyncio.to_thread(binary.is_file)

    async def download(self) -> None:
        """Download and unpack the archive.

        Raises:
            InstallError: On HTTP, filesystem or archive failures, or when a
                configured mongod_path does not exist
        """
        if self._config.mongod_path is not None:
            raise InstallError(
                f"mongod not found at {self._config.mongod_path}",
                details={"mongod_path": str(self._config.mongod_path)},
            )

        url = self.archive_url()
        self._log.info("installer.download", url=url, download_dir=str(self._download_dir))

        try:
            await asyncio.to_thread(self._download_dir.mkdir, parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(dir=self._download_dir) as tmp:
                archive = Path(tmp) / url.rsplit("/", 1)[-1]
                await self._fetch(url, archive)
                await asyncio.to_thread(_unpack, archive, self._download_dir / UNPACK_DIR_NAME)
        except httpx.HTTPError as e:
            self._log.error("installer.download_failed", url=url, error=str(e))
            raise InstallError(f"Download failed: {e}", details={"url": url}) from e
        except (OSError, tarfile.TarError) as e:
            self._log.error("installer.unpack_failed", url=url, error=str(e))
            raise InstallError(f"Unpacking failed: {e}", details={"url": url}) from e

        if not await self.is_present():
            binary = await self.resolve_binary_path()
            raise InstallError(
                f"Archive did not contain {binary}",
                details={"url": url, "binary": str(binary)},
            )

        self._log.info("installer.downloaded", url=url)

    async def _fetch(self, url: str, target: Path) -> None:
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self._config.download_timeout_seconds,
            follow_redirects=True,
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(target, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)

    async def resolve_binary_path(self) -> Path:
        if self._config.mongod_path is not None:
            return Path(self._config.mongod_path)

        stem = _archive_stem(self.archive_url())
        return self._download_dir / UNPACK_DIR_NAME / stem / "bin" / "mongod"

    async def resolve_working_directory_root(self) -> Path:
        return self._download_dir

