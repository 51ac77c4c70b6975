"""Unit tests for the package-level factories and error types."""

from __future__ import annotations

from pathlib import Path

import pytest

import mongo_sandbox
from mongo_sandbox import (
    AllocationError,
    InstallError,
    NotRunningError,
    RunState,
    Sandbox,
    SandboxConfig,
    SandboxConnectionError,
    SandboxError,
    TopologyError,
    UnsafeStateError,
    create_sandbox,
    get_port_registry,
    install_sandbox,
)


class TestFactories:
    def test_create_sandbox(self):
        sandbox = create_sandbox({"base_port": 5, "database": "app"})

        assert isinstance(sandbox, Sandbox)
        assert sandbox.run_state == RunState.IDLE
        assert sandbox.config.database == "app"
        assert sandbox.port is None

    def test_create_sandbox_accepts_config(self):
        config = SandboxConfig(database="app")

        assert create_sandbox(config).config is config

    async def test_install_sandbox_with_existing_binary(self, tmp_path: Path):
        binary = tmp_path / "mongod"
        binary.write_bytes(b"")

        sandbox = await install_sandbox({"installer": {"mongod_path": str(binary)}})

        assert await sandbox.installer.is_present()
        assert sandbox.run_state == RunState.IDLE

    def test_default_sandboxes_share_port_registry(self):
        first, second = create_sandbox(), create_sandbox()

        assert first._ports is second._ports is get_port_registry()

    def test_version_is_exposed(self):
        assert isinstance(mongo_sandbox.__version__, str)


class TestErrors:
    @pytest.mark.parametrize(
        ("error_cls", "code"),
        [
            (NotRunningError, "not_running"),
            (AllocationError, "allocation_failed"),
            (UnsafeStateError, "unsafe_state"),
            (InstallError, "install_failed"),
            (TopologyError, "topology_failed"),
            (SandboxConnectionError, "connection_failed"),
        ],
    )
    def test_codes(self, error_cls, code):
        error = error_cls()

        assert isinstance(error, SandboxError)
        assert error.code == code
        assert str(error) == error_cls.message
        assert error.details == {}

    def test_custom_message_and_details(self):
        error = TopologyError("mongod crashed", details={"port": 5})

        assert str(error) == "mongod crashed"
        assert error.details == {"port": 5}

    def test_not_running_message(self):
        assert str(NotRunningError()) == "MongoDB Sandbox is not running"


class TestPytestPlugin:
    def test_exposes_fixtures(self):
        from mongo_sandbox import pytest_plugin

        for name in (
            "mongo_sandbox_config",
            "mongo_sandbox_lifecycle",
            "mongo_sandbox",
            "mongo_sandbox_case",
        ):
            assert callable(getattr(pytest_plugin, name))

    def test_documents_install_extra(self):
        from mongo_sandbox import pytest_plugin

        assert 'pip install "mongo-sandbox[pytest]"' in pytest_plugin.__doc__
