"""Pytest configuration and fixtures for messaging-core tests."""

from typing import Any

import pytest
import pytest_asyncio

from messaging_core.config import Config, JWTConfig, DBConfig, RedisConfig, CacheConfig
from messaging_core.core.cache import InMemoryCache
from messaging_core.core.db_manager import DatabaseManager
from messaging_core.core.gateways import Store
from messaging_core.core.interfaces import NotificationTransport
from messaging_core.services.cache_policy import CacheInvalidationPolicy
from messaging_core.services.chat_service import ChatService
from messaging_core.services.contact_service import ContactService
from messaging_core.services.events import EventBus
from messaging_core.services.message_service import MessageService
from messaging_core.services.models import Principal
from messaging_core.services.notifications import NotificationListener


class RecordingTransport(NotificationTransport):
    """Keeps every send in memory; can be told to fail for given users."""

    def __init__(self):
        self.topic_sends: list[tuple[str, Any]] = []
        self.user_sends: list[tuple[str, str, Any]] = []
        self.failures: dict[str, int] = {}

    def fail_for(self, username: str, times: int = 1) -> None:
        self.failures[username] = times

    async def send_to_topic(self, destination: str, payload: Any) -> None:
        self.topic_sends.append((destination, payload))

    async def send_to_user(self, username: str, destination: str, payload: Any) -> None:
        remaining = self.failures.get(username, 0)
        if remaining:
            self.failures[username] = remaining - 1
            raise ConnectionError(f"transport down for {username}")
        self.user_sends.append((username, destination, payload))

    def topic_payloads(self, destination: str) -> list[Any]:
        return [payload for dest, payload in self.topic_sends if dest == destination]

    def user_payloads(self, username: str, destination: str) -> list[Any]:
        return [payload for user, dest, payload in self.user_sends if user == username and dest == destination]

    def clear(self) -> None:
        self.topic_sends.clear()
        self.user_sends.clear()


@pytest.fixture
def config(tmp_path):
    """Config pointing at a throwaway SQLite file and the in-memory cache."""
    return Config(
        jwt=JWTConfig(secret_key="test-secret"),
        db=DBConfig(path=str(tmp_path / "messaging.db")),
        redis=RedisConfig(),
        cache=CacheConfig(backend="memory", ttl_seconds=600)
    )


@pytest_asyncio.fixture
async def db_manager(config):
    manager = DatabaseManager(config)
    await manager.initialize()
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def store(db_manager):
    return Store(db_manager)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def invalidation(cache):
    return CacheInvalidationPolicy(cache)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def event_bus(transport):
    bus = EventBus(max_attempts=3)
    NotificationListener(transport).register(bus)
    return bus


@pytest.fixture
def chat_service(store, cache, invalidation, event_bus):
    return ChatService(store, cache, invalidation, event_bus)


@pytest.fixture
def message_service(store, event_bus):
    return MessageService(store, event_bus)


@pytest.fixture
def contact_service(store, cache, invalidation, event_bus):
    return ContactService(store, cache, invalidation, event_bus)


@pytest.fixture
def make_user(store):
    """Factory creating a user row and returning its principal."""

    async def _make(username: str, phone_number: str | None = None, name: str | None = None) -> Principal:
        async with store.transaction() as repo:
            user = await repo.users.create_user(
                username=username,
                password_hash="not-used",
                phone_number=phone_number,
                name=name
            )
        return Principal(user_id=user.id, username=user.username)

    return _make


@pytest_asyncio.fixture
async def trio(make_user):
    """Three users: alice, bob and carol."""
    alice = await make_user("alice", "+10000000001", "Alice")
    bob = await make_user("bob", "+10000000002", "Bob")
    carol = await make_user("carol", "+10000000003", "Carol")
    return alice, bob, carol


@pytest_asyncio.fixture
async def team(chat_service, trio, transport):
    """Group "Team" owned by alice with bob and carol as members; side effects cleared."""
    alice, bob, carol = trio
    chat = await chat_service.create_chat(alice, "GROUP", [bob.user_id, carol.user_id], group_name="Team")
    transport.clear()
    return chat
