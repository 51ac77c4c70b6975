"""Unit tests for the pymongo client handles."""

from __future__ import annotations

import pytest
from pymongo.errors import OperationFailure

from mongo_sandbox.drivers.client import PyMongoCollectionHandle, connect
from mongo_sandbox.errors import SandboxConnectionError


class RaisingCollection:
    """Stands in for an AsyncCollection whose server calls fail."""

    name = "users"

    async def count_documents(self, filter):
        raise OperationFailure("not authorized")

    async def delete_many(self, filter):
        raise OperationFailure("not authorized")


class RecordingCollection:
    name = "users"

    def __init__(self) -> None:
        self.filters: list[dict] = []

    async def count_documents(self, filter):
        self.filters.append(filter)
        return 3

    async def delete_many(self, filter):
        self.filters.append(filter)


class TestCollectionHandle:
    async def test_counts_and_deletes_everything(self):
        collection = RecordingCollection()
        handle = PyMongoCollectionHandle(collection)

        assert handle.name == "users"
        assert await handle.count_documents() == 3
        await handle.delete_all()

        assert collection.filters == [{}, {}]

    async def test_count_failure_is_translated(self):
        handle = PyMongoCollectionHandle(RaisingCollection())

        with pytest.raises(SandboxConnectionError, match="count_documents failed") as exc_info:
            await handle.count_documents()

        assert exc_info.value.details == {"collection": "users"}

    async def test_delete_failure_is_translated(self):
        handle = PyMongoCollectionHandle(RaisingCollection())

        with pytest.raises(SandboxConnectionError, match="delete_many failed"):
            await handle.delete_all()


class TestConnect:
    async def test_invalid_url(self):
        with pytest.raises(SandboxConnectionError):
            await connect("http://127.0.0.1:5/test-db")
