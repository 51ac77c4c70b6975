"""Pytest integration - drives the Lifecycle checkpoints from fixtures.

Requires pytest and pytest-asyncio, installed by the `pytest` extra:

    pip install "mongo-sandbox[pytest]"

Enable it from a conftest.py:

    pytest_plugins = ["mongo_sandbox.pytest_plugin"]

The sandbox lives for the whole session, so tests using it must share the
session event loop:

    @pytest.mark.asyncio(loop_scope="session")
    async def test_insert(mongo_sandbox_case):
        client = await mongo_sandbox_case.acquire_connection()
        ...

Override `mongo_sandbox_config` to configure the sandbox; by default it
comes from get_settings() (environment / mongo-sandbox.yaml).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from mongo_sandbox.config import SandboxConfig, get_settings
from mongo_sandbox.lifecycle import Lifecycle
from mongo_sandbox.managers import Sandbox


@pytest.fixture(scope="session")
def mongo_sandbox_config() -> SandboxConfig:
    return get_settings().sandbox


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def mongo_sandbox_lifecycle(
    mongo_sandbox_config: SandboxConfig,
) -> AsyncIterator[Lifecycle]:
    """before_all once for the session, after_all at its end."""
    lifecycle = Sandbox(mongo_sandbox_config).lifecycle()
    try:
        await lifecycle.before_all()
    except Exception:
        # never leave a mongod behind, safe or not
        await lifecycle.sandbox.stop()
        raise

    try:
        yield lifecycle
    finally:
        await lifecycle.after_all()


@pytest.fixture(scope="session")
def mongo_sandbox(mongo_sandbox_lifecycle: Lifecycle) -> Sandbox:
    """The running, verified-empty session sandbox."""
    return mongo_sandbox_lifecycle.sandbox


@pytest_asyncio.fixture(loop_scope="session")
async def mongo_sandbox_case(mongo_sandbox_lifecycle: Lifecycle) -> AsyncIterator[Sandbox]:
    """The session sandbox, purged of documents after the test."""
    await mongo_sandbox_lifecycle.before_each()
    yield mongo_sandbox_lifecycle.sandbox
    await mongo_sandbox_lifecycle.after_each()
