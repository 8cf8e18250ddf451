"""
Key/value store with per-key expiry on top of a document collection.

The backing store has no expiry of its own, so each item carries an absolute
deadline (`expires_at`, epoch seconds) next to its value. Reads evaluate the
deadline lazily: an expired item reads as absent and its document is deleted
on the spot, best-effort.

Provisioning of the container/collection and the first write of a key are
check-then-create sequences with no mutual exclusion. Concurrent first writers
may race; duplicate creation is treated as benign.
"""
import logging
import time
from typing import Any, Callable, Optional

from errors import StoreError

logger = logging.getLogger(__name__)


class TTLStore:
    def __init__(
        self,
        store,
        container_name: str,
        collection_name: str,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.container_name = container_name
        self.collection_name = collection_name
        self.clock = clock
        self._collection: Any = None

    async def _get_collection(self):
        if self._collection is None:
            container = await self.store.resolve_or_create_container(self.container_name)
            self._collection = await self.store.resolve_or_create_collection(container, self.collection_name)
            logger.info(f"[ttl] using {self.container_name}/{self.collection_name}")
        return self._collection

    def _is_expired(self, doc: dict) -> bool:
        expires_at = doc.get("expires_at")
        return expires_at is not None and expires_at <= self.clock()

    async def get(self, key: str) -> Optional[str]:
        coll = await self._get_collection()
        try:
            doc = await self.store.get_item(coll, key)
        except StoreError as e:
            if e.not_found:
                return None
            raise

        if self._is_expired(doc):
            logger.debug(f"[ttl] {key} expired; removing")
            try:
                await self.delete(key)
            except Exception as e:
                logger.warning(f"[ttl] lazy delete failed for {key}: {e}")
            return None

        return doc.get("value")

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        data = {"value": value}
        if ttl_seconds:
            data["expires_at"] = self.clock() + ttl_seconds

        coll = await self._get_collection()
        try:
            await self.store.update_item(coll, key, data)
            return
        except StoreError as e:
            if not e.not_found:
                raise

        try:
            await self.store.create_item(coll, key, data)
        except StoreError as e:
            if not e.conflict:
                raise
            # a concurrent writer created it first; last write wins
            logger.info(f"[ttl] {key} created concurrently; overwriting")
            await self.store.update_item(coll, key, data)

    async def delete(self, key: str) -> None:
        coll = await self._get_collection()
        try:
            await self.store.delete_item(coll, key)
        except StoreError as e:
            if not e.not_found:
                raise
