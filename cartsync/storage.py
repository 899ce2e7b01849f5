"""
Persistence media for the local cart.

A medium is a small durable key/value surface: read, write and remove raw
bytes under a key. The store depends on one by injection; NullStorage is
used where no durable medium exists.
"""
from abc import ABC, abstractmethod
from typing import Optional

from cartsync.redis_client import RedisClient


class Storage(ABC):
    """Durable key/value surface"""

    @abstractmethod
    def read(self, key: str) -> Optional[bytes]:
        """Return stored bytes, or None when absent"""

    @abstractmethod
    def write(self, key: str, value: bytes) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class NullStorage(Storage):
    """No-op medium for non-interactive contexts"""

    def read(self, key: str) -> Optional[bytes]:
        return None

    def write(self, key: str, value: bytes) -> None:
        pass

    def remove(self, key: str) -> None:
        pass


class RedisStorage(Storage):
    """Medium backed by a Redis key per storage key"""

    def __init__(self, redis: RedisClient, namespace: str = "local"):
        self.redis = redis
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def read(self, key: str) -> Optional[bytes]:
        value = self.redis.get(self._key(key))
        if value is None:
            return None
        # decode_responses=True hands back str
        return value.encode("utf-8") if isinstance(value, str) else value

    def write(self, key: str, value: bytes) -> None:
        self.redis.set(self._key(key), value)

    def remove(self, key: str) -> None:
        self.redis.delete(self._key(key))
