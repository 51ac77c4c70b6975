"""Sandbox configuration management.

Configuration sources (in priority order):
1. Environment variables (MONGO_SANDBOX_ prefix)
2. Config file (mongo-sandbox.yaml)
3. Defaults

Manager-owned options (host, port, database, uptime) live on SandboxConfig;
everything the installer consumes lives on the nested InstallerConfig.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOST = "127.0.0.1"
DEFAULT_BASE_PORT = 27017  # standard MongoDB port, where we start looking
DEFAULT_DATABASE = "mongodb-sandbox"
DEFAULT_VERSION = "7.0.14"

# downloads land beside the package unless told otherwise
DEFAULT_DOWNLOAD_BASE_DIR = (Path(__file__).parent.parent / "build").resolve()


class InstallerConfig(BaseModel):
    """Options passed through to the MongoDB installer."""

    model_config = ConfigDict(frozen=True)

    version: str = DEFAULT_VERSION

    # None = <DEFAULT_DOWNLOAD_BASE_DIR>/mongodb-<version>
    download_dir: Path | None = None

    # Linux archives are built per distribution (ubuntu2204, rhel80, debian12, ...)
    distribution: str = "ubuntu2204"
    mirror: str = "https://fastdl.mongodb.org"

    # Full archive URL; overrides mirror/version/distribution derivation
    download_url: str | None = None

    # A pre-installed mongod; when set nothing is ever downloaded
    mongod_path: Path | None = None

    download_timeout_seconds: float = Field(default=90.0, gt=0)

    def resolve_download_dir(self) -> Path:
        if self.download_dir is not None:
            return Path(self.download_dir)
        return DEFAULT_DOWNLOAD_BASE_DIR / f"mongodb-{self.version}"


class SandboxConfig(BaseModel):
    """Configuration for a Sandbox.

    Attributes:
        host: bind_ip for the mongod daemon, eg. '0.0.0.0'
        base_port: where to start looking for an available local port
        database: the database name to use in the test suite
        minimum_uptime_ms: minimum time the topology is left running before teardown
        startup_timeout_seconds: how long to wait for mongod to accept connections
        installer: options for locating or downloading the mongod binary
    """

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    base_port: int = Field(default=DEFAULT_BASE_PORT, ge=1, le=65535)
    database: str = Field(default=DEFAULT_DATABASE, min_length=1)
    minimum_uptime_ms: int = Field(default=0, ge=0)
    startup_timeout_seconds: float = Field(default=30.0, gt=0)
    installer: InstallerConfig = Field(default_factory=InstallerConfig)

    @classmethod
    def coerce(cls, config: SandboxConfig | Mapping[str, Any] | None) -> SandboxConfig:
        """Accept a ready config, a plain mapping, or None (settings defaults)."""
        if config is None:
            return get_settings().sandbox
        if isinstance(config, SandboxConfig):
            return config
        return cls.model_validate(dict(config))


class Settings(BaseSettings):
    """Process-wide sandbox settings."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_SANDBOX_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # file values arrive as init kwargs; environment must win over them
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def _load_config_file() -> dict:
    """Load configuration from YAML file if exists.

    Looks for config file in order:
    1. MONGO_SANDBOX_CONFIG_FILE environment variable
    2. ./mongo-sandbox.yaml
    """
    config_paths = [
        os.environ.get("MONGO_SANDBOX_CONFIG_FILE"),
        Path("mongo-sandbox.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Configuration is loaded from:
    1. YAML config file (if exists)
    2. Environment variables (override)
    3. Defaults
    """
    file_config = _load_config_file()
    return Settings(**file_config)
