"""E2E integration tests configuration for mongo_sandbox.

Prerequisites:
- Network access to fastdl.mongodb.org (first run only), or
  MONGO_SANDBOX_SANDBOX__INSTALLER__MONGOD_PATH pointing at a local mongod
- MONGO_SANDBOX_E2E=1

    MONGO_SANDBOX_E2E=1 pytest tests/integration
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from mongo_sandbox.config import SandboxConfig, get_settings
from mongo_sandbox.pytest_plugin import (  # noqa: F401
    mongo_sandbox,
    mongo_sandbox_case,
    mongo_sandbox_lifecycle,
)

if TYPE_CHECKING:
    from _pytest.python import Function


E2E_ENABLED = os.environ.get("MONGO_SANDBOX_E2E") == "1"

# well clear of a developer's own mongod on 27017
E2E_BASE_PORT = int(os.environ.get("E2E_BASE_PORT", "37017"))
E2E_DATABASE = "mongo-sandbox-e2e"

e2e_skipif_marks = [
    pytest.mark.skipif(not E2E_ENABLED, reason="MONGO_SANDBOX_E2E not set"),
]


def pytest_collection_modifyitems(items: list[Function]) -> None:
    """Mark every test under this directory as e2e."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.e2e)


@pytest.fixture(scope="session")
def mongo_sandbox_config() -> SandboxConfig:
    settings = get_settings().sandbox
    return settings.model_copy(update={"base_port": E2E_BASE_PORT, "database": E2E_DATABASE})
