from typing import AsyncIterable
import logging

from dishka import Provider, Scope, provide
import redis.asyncio as redis

from messaging_core.config import Config, load_config
from messaging_core.core.cache import InMemoryCache
from messaging_core.core.db_manager import DatabaseManager
from messaging_core.core.gateways import Store
from messaging_core.core.interfaces import CacheInterface, NotificationTransport
from messaging_core.core.redis import RedisManager, RedisCache, RedisNotificationTransport
from messaging_core.services.cache_policy import CacheInvalidationPolicy
from messaging_core.services.chat_service import ChatService
from messaging_core.services.contact_service import ContactService
from messaging_core.services.events import EventBus
from messaging_core.services.message_service import MessageService
from messaging_core.services.notifications import NotificationListener
from messaging_core.services.routers.auth_api import AuthAPI
from messaging_core.services.routers.chat_api import ChatAPI
from messaging_core.services.routers.contact_api import ContactAPI
from messaging_core.services.routers.message_api import MessageAPI


class AdaptersProvider(Provider):
    def __init__(self, config: Config | None = None):
        super().__init__()
        self._config = config

    @provide(scope=Scope.APP)
    def get_config(self) -> Config:
        return self._config or load_config(".env")

    @provide(scope=Scope.APP)
    def get_logger(self) -> logging.Logger:
        return logging.getLogger("messaging_core")

    @provide(scope=Scope.APP)
    async def get_redis(self, config: Config) -> AsyncIterable[redis.Redis]:
        client = RedisManager(config.redis.host, config.redis.port).get_redis()
        yield client
        await client.aclose()

    @provide(scope=Scope.APP)
    async def get_db_manager(self, config: Config, logger: logging.Logger) -> AsyncIterable[DatabaseManager]:
        db_manager = DatabaseManager(config, logger)
        await db_manager.initialize()
        await db_manager.create_tables()
        yield db_manager
        await db_manager.close()


class InfrastructureProvider(Provider):
    @provide(scope=Scope.APP)
    def get_store(self, db_manager: DatabaseManager, logger: logging.Logger) -> Store:
        return Store(db_manager, logger)

    @provide(scope=Scope.APP)
    def get_cache(self, config: Config, redis_client: redis.Redis, logger: logging.Logger) -> CacheInterface:
        if config.cache.backend == "memory":
            return InMemoryCache()
        return RedisCache(
            redis_client,
            prefix=config.cache.key_prefix,
            logger=logger
        )

    @provide(scope=Scope.APP)
    def get_invalidation_policy(self, cache: CacheInterface, logger: logging.Logger) -> CacheInvalidationPolicy:
        return CacheInvalidationPolicy(cache, logger)

    @provide(scope=Scope.APP)
    def get_transport(self, redis_client: redis.Redis, logger: logging.Logger) -> NotificationTransport:
        return RedisNotificationTransport(redis_client, logger)

    @provide(scope=Scope.APP)
    def get_event_bus(
        self,
        config: Config,
        transport: NotificationTransport,
        logger: logging.Logger
    ) -> EventBus:
        event_bus = EventBus(logger, max_attempts=config.events.max_attempts)
        NotificationListener(transport, logger).register(event_bus)
        return event_bus


class ServicesProvider(Provider):
    @provide(scope=Scope.APP)
    def get_chat_service(
        self,
        config: Config,
        store: Store,
        cache: CacheInterface,
        invalidation: CacheInvalidationPolicy,
        event_bus: EventBus,
        logger: logging.Logger
    ) -> ChatService:
        return ChatService(
            store=store,
            cache=cache,
            invalidation=invalidation,
            event_bus=event_bus,
            logger=logger,
            cache_ttl=config.cache.ttl_seconds
        )

    @provide(scope=Scope.APP)
    def get_message_service(
        self,
        config: Config,
        store: Store,
        event_bus: EventBus,
        logger: logging.Logger
    ) -> MessageService:
        return MessageService(
            store=store,
            event_bus=event_bus,
            logger=logger,
            max_page_size=config.messages.max_page_size
        )

    @provide(scope=Scope.APP)
    def get_contact_service(
        self,
        config: Config,
        store: Store,
        cache: CacheInterface,
        invalidation: CacheInvalidationPolicy,
        event_bus: EventBus,
        logger: logging.Logger
    ) -> ContactService:
        return ContactService(
            store=store,
            cache=cache,
            invalidation=invalidation,
            event_bus=event_bus,
            logger=logger,
            cache_ttl=config.cache.ttl_seconds
        )

    @provide(scope=Scope.APP)
    def get_auth_api(self, config: Config, logger: logging.Logger) -> AuthAPI:
        return AuthAPI(
            secret_key=config.jwt.secret_key,
            logger=logger,
            algorithm=config.jwt.algorithm
        )

    @provide(scope=Scope.APP)
    def get_chat_api(self, auth_api: AuthAPI, logger: logging.Logger) -> ChatAPI:
        return ChatAPI(logger=logger, auth_api=auth_api)

    @provide(scope=Scope.APP)
    def get_message_api(self, auth_api: AuthAPI, logger: logging.Logger) -> MessageAPI:
        return MessageAPI(logger=logger, auth_api=auth_api)

    @provide(scope=Scope.APP)
    def get_contact_api(self, auth_api: AuthAPI, logger: logging.Logger) -> ContactAPI:
        return ContactAPI(logger=logger, auth_api=auth_api)
