import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import (
    CollectionInvalid,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    PyMongoError,
    WTimeoutError,
)

from config import settings
from errors import StoreError, StoreErrorKind

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (ConnectionFailure, ExecutionTimeout, WTimeoutError)


def classify_error(exc: PyMongoError) -> StoreErrorKind:
    # ConnectionFailure covers AutoReconnect, NetworkTimeout and ServerSelectionTimeoutError
    if isinstance(exc, DuplicateKeyError):
        return StoreErrorKind.CONFLICT
    if isinstance(exc, _TRANSIENT_ERRORS):
        return StoreErrorKind.TRANSIENT
    return StoreErrorKind.OTHER


@contextmanager
def _translated(op: str, key: Optional[str] = None):
    try:
        yield
    except PyMongoError as e:
        kind = classify_error(e)
        raise StoreError(kind, f"{op} failed for key={key!r}: {e}") from e


class MongoDocumentStore:
    """
    Document store adapter over MongoDB.

    A "container" is a database and a "collection" a collection. Items are keyed
    by `_id`. Not-found and duplicate-create outcomes are reported as
    StoreError(NOT_FOUND) / StoreError(CONFLICT); callers branch on `exc.kind`.
    """

    def __init__(self, client: AsyncIOMotorClient):
        self.client = client

    async def resolve_or_create_container(self, name: str) -> AsyncIOMotorDatabase:
        # Mongo databases materialise on first write, resolving is enough
        return self.client[name]

    async def resolve_or_create_collection(self, container: AsyncIOMotorDatabase, name: str) -> AsyncIOMotorCollection:
        with _translated("list_collections", name):
            existing = await container.list_collection_names()
        if name in existing:
            return container[name]
        try:
            coll = await container.create_collection(name)
        except CollectionInvalid:
            # concurrent cold start created it between list and create
            logger.info(f"[db] collection {name} already exists; using it")
            return container[name]
        except PyMongoError as e:
            raise StoreError(classify_error(e), f"create_collection failed for {name!r}: {e}") from e
        logger.info(f"[db] created collection {container.name}.{name}")
        return coll

    async def get_item(self, collection: AsyncIOMotorCollection, key: str) -> Dict[str, Any]:
        with _translated("get_item", key):
            doc = await collection.find_one({"_id": key})
        if doc is None:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"no item {key!r}")
        doc.pop("_id", None)
        return doc

    async def update_item(self, collection: AsyncIOMotorCollection, key: str, data: Dict[str, Any]) -> None:
        with _translated("update_item", key):
            result = await collection.replace_one({"_id": key}, dict(data))
        if result.matched_count == 0:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"no item {key!r}")

    async def create_item(self, collection: AsyncIOMotorCollection, key: str, data: Dict[str, Any]) -> None:
        with _translated("create_item", key):
            await collection.insert_one({"_id": key, **data})

    async def delete_item(self, collection: AsyncIOMotorCollection, key: str) -> None:
        with _translated("delete_item", key):
            result = await collection.delete_one({"_id": key})
        if result.deleted_count == 0:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"no item {key!r}")


def get_document_store(mongo_url: Optional[str] = None) -> MongoDocumentStore:
    client = AsyncIOMotorClient(mongo_url or settings.MONGO_URL)
    logger.info(f"[db] mongo client initialized | db={settings.MONGO_DB} | collection={settings.MONGO_COLLECTION}")
    return MongoDocumentStore(client)
