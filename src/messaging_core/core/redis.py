from typing import Any
import json
import logging

from pydantic import BaseModel
import redis.asyncio as redis

from .interfaces import CacheInterface, NotificationTransport


class RedisManager:
    def __init__(self, host: str | None = None, port: int | None = None):
        self.host = host or 'localhost'
        self.port = port or 6379

    def get_redis(self) -> redis.Redis:
        return redis.Redis(host=self.host, port=self.port, db=0, decode_responses=True)


class RedisCache(CacheInterface):
    """
    Cache entries stored as plain Redis strings with an expiry.

    Backend failures are logged and degrade to a miss (reads) or a no-op
    (writes); entries never outlive their TTL.
    """
    __slots__ = ("_redis", "_prefix", "_logger")

    def __init__(self, redis_client: redis.Redis, prefix: str = "", logger: logging.Logger | None = None):
        self._redis = redis_client
        self._prefix = prefix
        self._logger = logger or logging.getLogger(__name__)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(self._prefix + key)
        except redis.RedisError as e:
            self._logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return value

    async def put(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._redis.set(self._prefix + key, value, ex=ttl)
        except redis.RedisError as e:
            self._logger.warning("Cache write failed for %s: %s", key, e)

    async def evict(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self._redis.delete(*(self._prefix + key for key in keys))
        except redis.RedisError as e:
            self._logger.error("Cache eviction failed for %s: %s", ", ".join(keys), e, exc_info=True)


def _encode(payload: Any) -> str:
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(by_alias=True)
    return json.dumps(payload, default=str)


class RedisNotificationTransport(NotificationTransport):
    """
    Publishes notifications on Redis pub/sub for the WebSocket gateway to relay.

    Broadcasts go to the destination channel itself, targeted sends to
    ``/user/{username}{destination}``.
    """
    __slots__ = ("_redis", "_logger")

    def __init__(self, redis_client: redis.Redis, logger: logging.Logger | None = None):
        self._redis = redis_client
        self._logger = logger or logging.getLogger(__name__)

    @staticmethod
    def user_channel(username: str, destination: str) -> str:
        return f"/user/{username}{destination}"

    async def send_to_topic(self, destination: str, payload: Any) -> None:
        receivers = await self._redis.publish(destination, _encode(payload))
        self._logger.debug("Published to %s (%s receivers)", destination, receivers)

    async def send_to_user(self, username: str, destination: str, payload: Any) -> None:
        channel = self.user_channel(username, destination)
        receivers = await self._redis.publish(channel, _encode(payload))
        self._logger.debug("Published to %s (%s receivers)", channel, receivers)
