from typing import Iterable
import logging
import uuid

from messaging_core.core.interfaces import CacheInterface


class CacheKeys:
    @staticmethod
    def user_chats(user_id: uuid.UUID) -> str:
        return f"user_chats:{user_id}"

    @staticmethod
    def chat_members(chat_id: uuid.UUID) -> str:
        return f"chat_members:{chat_id}"

    @staticmethod
    def contacts(owner_id: uuid.UUID) -> str:
        return f"contacts:{owner_id}"


class CacheInvalidationPolicy:
    """
    Decides which cache entries a committed mutation makes stale and evicts them.

    Must only be called after the mutating transaction has committed; evicting
    earlier lets a concurrent reader refill the entry from pre-commit rows.

    - chat created: chat list of every initial member
    - members added or removed, role changed: the chat's member list and the
      chat list of every member, current or removed, since those embed members
    - group properties changed: chat list of every member
    - contact changed: the owner's contact list, and for a phone number change
      the contact list of every owner holding that user
    """

    def __init__(self, cache: CacheInterface, logger: logging.Logger | None = None):
        self._cache = cache
        self._logger = logger or logging.getLogger(__name__)
        self._generation = 0

    @property
    def generation(self) -> int:
        """Bumped on every eviction; read it before loading rows for ``fill``."""
        return self._generation

    async def fill(self, key: str, value: str, ttl: int, generation: int) -> bool:
        """
        Stores a freshly loaded projection unless an eviction ran since
        ``generation`` was read, in which case the rows may predate that commit.
        """
        if generation != self._generation:
            self._logger.debug("Skipping fill of %s, evicted while loading", key)
            return False
        await self._cache.put(key, value, ttl)
        return True

    async def _evict(self, keys: Iterable[str]) -> None:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return
        self._generation += 1
        self._logger.debug("Evicting %s", ", ".join(keys))
        await self._cache.evict(*keys)

    async def chat_created(self, member_user_ids: Iterable[uuid.UUID]) -> None:
        await self._evict(CacheKeys.user_chats(user_id) for user_id in member_user_ids)

    async def membership_changed(self, chat_id: uuid.UUID, affected_user_ids: Iterable[uuid.UUID]) -> None:
        keys = [CacheKeys.chat_members(chat_id)]
        keys.extend(CacheKeys.user_chats(user_id) for user_id in affected_user_ids)
        await self._evict(keys)

    async def chat_updated(self, member_user_ids: Iterable[uuid.UUID]) -> None:
        await self._evict(CacheKeys.user_chats(user_id) for user_id in member_user_ids)

    async def contacts_changed(self, owner_ids: Iterable[uuid.UUID]) -> None:
        await self._evict(CacheKeys.contacts(owner_id) for owner_id in owner_ids)
