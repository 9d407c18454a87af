import fnmatch

import pytest
import redis

from comps_engine.core.config import Settings
from comps_engine.core.errors import StoreUnavailableError
from comps_engine.core.store import MemoryStore, RedisStore, build_store


class FakeRedis:
    """Just enough of redis.Redis for the store: string values, INCR, SCAN."""

    def __init__(self, down: bool = False):
        self.data = {}
        self.down = down

    def _check(self):
        if self.down:
            raise redis.ConnectionError("connection refused")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value

    def delete(self, *keys):
        self._check()
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def incr(self, key):
        self._check()
        self.data[key] = str(int(self.data.get(key) or 0) + 1)
        return int(self.data[key])

    def scan_iter(self, match="*"):
        self._check()
        return iter([k for k in list(self.data) if fnmatch.fnmatchcase(k, match)])


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return MemoryStore(maxsize=128)
    return RedisStore(FakeRedis(), namespace="test:")


class TestStores:

    def test_get_set_delete(self, store):
        assert store.get("a") is None
        store.set("a", "1")
        assert store.get("a") == "1"
        assert store.delete("a") is True
        assert store.delete("a") is False

    def test_incr_starts_at_one(self, store):
        assert store.incr("zillow_2025-11") == 1
        assert store.incr("zillow_2025-11") == 2
        assert store.get("zillow_2025-11") == "2"

    def test_prefix_operations(self, store):
        for key in ("comps_a", "comps_b", "estimates_a_zillow"):
            store.set(key, "x")

        assert store.delete_prefix("comps_") == 2
        assert store.get("comps_a") is None
        assert store.get("comps_b") is None
        assert store.get("estimates_a_zillow") == "x"
        assert store.delete_prefix("comps_") == 0


def test_redis_store_namespaces_keys():
    client = FakeRedis()
    store = RedisStore(client, namespace="quota:")

    store.incr("gemini_2025-11-17")

    assert client.data == {"quota:gemini_2025-11-17": "1"}


def test_redis_errors_are_wrapped():
    store = RedisStore(FakeRedis(down=True))

    with pytest.raises(StoreUnavailableError):
        store.get("k")
    with pytest.raises(StoreUnavailableError):
        store.incr("k")
    with pytest.raises(StoreUnavailableError):
        store.delete_prefix("comps_")


def test_build_store_defaults_to_memory():
    assert isinstance(build_store("cache", Settings(USE_REDIS=False)), MemoryStore)


def test_build_store_uses_redis_when_enabled():
    store = build_store("quota", Settings(USE_REDIS=True, REDIS_URL="redis://localhost:6379/0"))

    # from_url is lazy, no connection is made here
    assert isinstance(store, RedisStore)
    assert store.namespace == "quota:"
