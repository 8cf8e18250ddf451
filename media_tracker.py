"""
Deferred cleanup of media files attached to outbound messages.

When a media message goes out, the filenames it carries are recorded under
"media:<message id>". The files are deleted once the messaging provider calls
back with a "delivered" status for that message. The record's own TTL is the
safety net for confirmations that never arrive.
"""
import asyncio
import json
import logging
from typing import Iterable, List, Optional

from ttl_store import TTLStore

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
DEFAULT_RECORD_TTL = 7 * 24 * 3600


class MediaLifecycleTracker:
    def __init__(self, store: TTLStore, blobs, record_ttl: float = DEFAULT_RECORD_TTL):
        self.store = store
        self.blobs = blobs
        self.record_ttl = record_ttl

    @staticmethod
    def key(message_id: str) -> str:
        return f"media:{message_id}"

    async def record_pending_media(self, message_id: str, filenames: Iterable[str], ttl_seconds: Optional[float] = None) -> None:
        names = [f for f in filenames if f]
        if not names:
            return
        await self.store.set(self.key(message_id), json.dumps(names), ttl_seconds or self.record_ttl)
        logger.info(f"[media] stored {len(names)} filename(s) for message {message_id}: {names}")

    async def get_pending_media(self, message_id: str) -> Optional[List[str]]:
        raw = await self.store.get(self.key(message_id))
        if raw is None:
            return None
        try:
            names = json.loads(raw)
        except ValueError:
            logger.error(f"[media] unreadable record for message {message_id}: {raw!r}")
            return []
        if not isinstance(names, list):
            logger.error(f"[media] unexpected record shape for message {message_id}: {raw!r}")
            return []
        return [str(n) for n in names]

    async def _delete_file(self, message_id: str, filename: str) -> bool:
        try:
            await self.blobs.delete(filename)
            return True
        except Exception:
            logger.exception(f"[media] failed to delete {filename} for message {message_id}")
            return False

    async def on_delivery_confirmed(self, message_id: str) -> int:
        """
        Delete every file recorded for `message_id`, then the record itself.
        Each file is attempted independently; returns how many deletes succeeded.
        """
        filenames = await self.get_pending_media(message_id)
        if filenames is None:
            logger.info(f"[media] no stored media for message {message_id}")
            return 0

        results = await asyncio.gather(*(self._delete_file(message_id, f) for f in filenames))
        deleted = sum(1 for ok in results if ok)

        await self.store.delete(self.key(message_id))
        logger.info(f"[media] cleanup done for message {message_id}: {deleted}/{len(filenames)} file(s) deleted")
        return deleted

    async def handle_status(self, message_id: str, status: str) -> bool:
        """Only "delivered" triggers cleanup; any other status leaves the record for a later callback."""
        if (status or "").strip().lower() != DELIVERED:
            logger.info(f"[media] message {message_id} status={status} - no cleanup needed")
            return False
        await self.on_delivery_confirmed(message_id)
        return True
