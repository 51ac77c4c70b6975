"""Database client built on pymongo's asyncio API."""

from __future__ import annotations

import structlog
from pymongo import AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from mongo_sandbox.drivers.base import ClientHandle, CollectionHandle
from mongo_sandbox.errors import SandboxConnectionError

logger = structlog.get_logger()

SERVER_SELECTION_TIMEOUT_MS = 10000


class PyMongoCollectionHandle(CollectionHandle):
    def __init__(self, collection: AsyncCollection) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    @property
    def collection(self) -> AsyncCollection:
        return self._collection

    async def count_documents(self) -> int:
        try:
            return await self._collection.count_documents({})
        except PyMongoError as e:
            raise SandboxConnectionError(
                f"count_documents failed on {self.name}: {e}",
                details={"collection": self.name},
            ) from e

    async def delete_all(self) -> None:
        try:
            await self._collection.delete_many({})
        except PyMongoError as e:
            raise SandboxConnectionError(
                f"delete_many failed on {self.name}: {e}",
                details={"collection": self.name},
            ) from e


class PyMongoClientHandle(ClientHandle):
    """Wraps an AsyncMongoClient; `client` exposes it for test code."""

    def __init__(self, client: AsyncMongoClient) -> None:
        self._client = client

    @property
    def client(self) -> AsyncMongoClient:
        return self._client

    def database(self, name: str) -> AsyncDatabase:
        return self._client[name]

    async def list_collections(self, database: str) -> list[CollectionHandle]:
        db = self._client[database]
        try:
            names = await db.list_collection_names()
        except PyMongoError as e:
            raise SandboxConnectionError(
                f"list_collection_names failed on {database}: {e}",
                details={"database": database},
            ) from e
        return [PyMongoCollectionHandle(db[name]) for name in names]

    async def close(self) -> None:
        try:
            await self._client.close()
        except PyMongoError as e:
            raise SandboxConnectionError(f"close failed: {e}") from e


async def connect(url: str) -> PyMongoClientHandle:
    """Open a client against `url` and verify the server answers.

    Raises:
        SandboxConnectionError: If the client cannot be created or pinged
    """
    log = logger.bind(driver="client")
    try:
        client: AsyncMongoClient = AsyncMongoClient(
            url, serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS
        )
    except PyMongoError as e:
        raise SandboxConnectionError(f"Invalid connection string: {e}", details={"url": url}) from e

    try:
        await client.admin.command("ping")
    except PyMongoError as e:
        log.error("client.connect_failed", url=url, error=str(e))
        await client.close()
        raise SandboxConnectionError(f"Unable to connect: {e}", details={"url": url}) from e

    log.debug("client.connected", url=url)
    return PyMongoClientHandle(client)
