"""
Shared fixtures: a fakeredis-backed store and an in-memory gateway.
"""
import fakeredis
import pytest

from cartsync.coordinator import SyncCoordinator
from cartsync.local_store import CartStore
from cartsync.redis_client import RedisClient
from cartsync.storage import RedisStorage
from tests.factories import InMemoryGateway


@pytest.fixture
def redis_client() -> RedisClient:
    return RedisClient(fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def storage(redis_client: RedisClient) -> RedisStorage:
    return RedisStorage(redis_client)


@pytest.fixture
def store(storage: RedisStorage) -> CartStore:
    return CartStore.create(storage)


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
async def coordinator(store: CartStore, gateway: InMemoryGateway):
    coordinator = SyncCoordinator(store, gateway)
    coordinator.start()
    yield coordinator
    await coordinator.stop()
