"""
Pytest configuration and shared fixtures.

Everything here is in-process: memory stores, a hand-driven clock, a sleep
that only records its delays and scripted providers. No test touches the
network.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from comps_engine.core.errors import StoreUnavailableError
from comps_engine.core.retry import ResilientExecutor, RetryPolicy
from comps_engine.core.store import MemoryStore
from comps_engine.data.base import Comparable, Condition, PropertyIdentity
from comps_engine.services.quota import QuotaLedger, QuotaPolicy
from comps_engine.services.result_cache import ResultCache


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 11, 17, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, days: float = 0) -> None:
        self.now += timedelta(seconds=seconds, days=days)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedProvider:
    """
    Plays back `script` one step per call: a list is returned, an exception
    is raised. The last step repeats once the script runs out.
    """

    def __init__(self, name: str, *script, estimate=None):
        self.name = name
        self.script = list(script) or [[]]
        self.estimate = estimate
        self.calls = 0
        self.estimate_calls = 0

    async def fetch_comparables(self, identity):
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, BaseException):
            raise step
        return list(step)

    async def fetch_estimate(self, identity):
        self.estimate_calls += 1
        if isinstance(self.estimate, BaseException):
            raise self.estimate
        return self.estimate


class FailingStore(MemoryStore):
    """Store whose backend is down for reads and/or writes."""

    def __init__(self, reads: bool = True, writes: bool = True):
        super().__init__()
        self.reads = reads
        self.writes = writes

    def _fail(self):
        raise StoreUnavailableError("backend down")

    def get(self, key):
        if self.reads:
            self._fail()
        return super().get(key)

    def set(self, key, value):
        if self.writes:
            self._fail()
        super().set(key, value)

    def incr(self, key):
        if self.writes:
            self._fail()
        return super().incr(key)


def make_comps(count: int, price: float = 300_000, condition: Condition = Condition.UNKNOWN,
               source: str = "test", days_ago: int = 30, **kwargs) -> list:
    today = date.today()
    return [
        Comparable(
            address=f"{100 + i} Test St",
            price=price,
            sale_date=today - timedelta(days=days_ago),
            condition=condition,
            source_provider=source,
            quality_score=90,
            **kwargs,
        )
        for i in range(count)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def executor(recording_sleep):
    return ResilientExecutor(RetryPolicy(max_attempts=3, base_delay_ms=1000), sleep=recording_sleep)


@pytest.fixture
def policies():
    return {
        "us_real_estate": QuotaPolicy("us_real_estate", "month", 300, 270),
        "zillow": QuotaPolicy("zillow", "month", 100, 90),
        "gemini": QuotaPolicy("gemini", "day", 1500, 1400),
    }


@pytest.fixture
def quota_store():
    return MemoryStore()


@pytest.fixture
def ledger(quota_store, policies, clock):
    return QuotaLedger(quota_store, policies, clock=clock)


@pytest.fixture
def cache_store():
    return MemoryStore()


@pytest.fixture
def cache(cache_store, clock):
    return ResultCache(cache_store, clock=clock)


@pytest.fixture
def identity():
    return PropertyIdentity(address="123 Main St", city="Los Angeles", state="CA", zip="90001")
