import threading
from typing import Protocol

import redis
from cachetools import Cache

from .config import Settings, settings as default_settings
from .errors import StoreUnavailableError


class KeyValueStore(Protocol):
    """
    Minimal persistent key/value contract used by the quota ledger and the
    result cache. Stores never expire entries on their own; freshness is
    decided by the callers.
    """
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> bool: ...
    def delete_prefix(self, prefix: str) -> int: ...
    def incr(self, key: str) -> int: ...


class MemoryStore(KeyValueStore):
    """
    In-process store for local dev and tests. Bounded, no TTL.
    The lock keeps read-modify-write increments atomic per process.
    """
    def __init__(self, maxsize: int = 65536):
        self._data: Cache = Cache(maxsize=maxsize)
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)

    def incr(self, key: str) -> int:
        with self._lock:
            value = int(self._data.get(key) or 0) + 1
            self._data[key] = str(value)
        return value


class RedisStore(KeyValueStore):
    """
    Redis-backed store shared across processes. INCR is atomic server-side,
    which is what keeps concurrent quota increments from double counting.
    """
    def __init__(self, client: "redis.Redis", namespace: str = ""):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "") -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), namespace)

    def _k(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(self._k(key))
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"redis get failed for {key}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(self._k(key), value)
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"redis set failed for {key}: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(self._k(key)))
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"redis delete failed for {key}: {exc}") from exc

    def delete_prefix(self, prefix: str) -> int:
        try:
            doomed = list(self.client.scan_iter(match=f"{self._k(prefix)}*"))
            if not doomed:
                return 0
            return int(self.client.delete(*doomed))
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"redis prefix delete failed for {prefix}: {exc}") from exc

    def incr(self, key: str) -> int:
        try:
            return int(self.client.incr(self._k(key)))
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"redis incr failed for {key}: {exc}") from exc


def build_store(namespace: str, cfg: Settings = default_settings) -> KeyValueStore:
    """
    Redis when USE_REDIS is on, otherwise a process-local store.
    `namespace` keeps the quota counters and the cache apart in a shared Redis.
    """
    if cfg.USE_REDIS:
        return RedisStore.from_url(cfg.REDIS_URL, namespace=f"{namespace}:")
    return MemoryStore(maxsize=cfg.LOCAL_STORE_MAXSIZE)
