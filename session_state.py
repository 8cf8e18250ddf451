import logging
from typing import Optional

from ttl_store import TTLStore

logger = logging.getLogger(__name__)

GREETED = "greeted"
WAITING_FOR_STYLE = "waiting_for_style"
IMAGE_PATH = "image_path"


class SessionState:
    """
    Per-user conversation flags. Each field is its own TTL store entry under
    "<purpose>:<user>:<field>"; touching one never touches another.
    """

    def __init__(self, store: TTLStore, purpose: str = "whatsapp"):
        self.store = store
        self.purpose = purpose

    def key(self, user: str, field: str) -> str:
        return f"{self.purpose}:{user}:{field}"

    async def is_greeted(self, user: str) -> bool:
        return await self.store.get(self.key(user, GREETED)) is not None

    async def mark_greeted(self, user: str, ttl: Optional[float] = None) -> None:
        await self.store.set(self.key(user, GREETED), "true", ttl)

    async def clear_greeted(self, user: str) -> None:
        await self.store.delete(self.key(user, GREETED))

    async def is_awaiting_style(self, user: str) -> bool:
        return await self.store.get(self.key(user, WAITING_FOR_STYLE)) is not None

    async def set_awaiting_style(self, user: str, ttl: Optional[float] = None) -> None:
        await self.store.set(self.key(user, WAITING_FOR_STYLE), "true", ttl)

    async def clear_awaiting_style(self, user: str) -> None:
        await self.store.delete(self.key(user, WAITING_FOR_STYLE))

    async def get_pending_image_path(self, user: str) -> Optional[str]:
        return await self.store.get(self.key(user, IMAGE_PATH))

    async def set_pending_image_path(self, user: str, path: str, ttl: Optional[float] = None) -> None:
        await self.store.set(self.key(user, IMAGE_PATH), path, ttl)

    async def clear_pending_image_path(self, user: str) -> None:
        await self.store.delete(self.key(user, IMAGE_PATH))

    async def clear_style_flow(self, user: str) -> None:
        await self.clear_awaiting_style(user)
        await self.clear_pending_image_path(user)
        logger.info(f"[session] cleared style flow for {user}")
