import asyncio

import httpx
import pytest

from comps_engine.core.errors import ProviderConfigurationError, RetryExhaustedError
from comps_engine.core.retry import ResilientExecutor, RetryPolicy


class Flaky:
    def __init__(self, failures: int, exc: Exception | None = None, value="ok"):
        self.failures = failures
        self.exc = exc or httpx.ConnectError("connection refused")
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return self.value


class TestResilientExecutor:

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, executor, recording_sleep):
        op = Flaky(failures=2)

        result = await executor.execute(op)

        assert result == "ok"
        assert op.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_carries_attempts_and_last_error(self, executor, recording_sleep):
        op = Flaky(failures=10)

        with pytest.raises(RetryExhaustedError) as info:
            await executor.execute(op, label="us_real_estate comps")

        assert info.value.attempts == 3
        assert isinstance(info.value.last_exception, httpx.ConnectError)
        assert "3 attempts" in str(info.value)
        assert op.calls == 3
        # no sleep after the final attempt
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_configuration_error_is_not_retried(self, executor, recording_sleep):
        op = Flaky(failures=10, exc=ProviderConfigurationError("zillow", "RAPIDAPI_KEY is not configured"))

        with pytest.raises(ProviderConfigurationError):
            await executor.execute(op)

        assert op.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_per_call_overrides(self, executor, recording_sleep):
        op = Flaky(failures=3)

        result = await executor.execute(op, max_attempts=4, base_delay_ms=250)

        assert result == "ok"
        assert recording_sleep.delays == [0.25, 0.5, 1.0]

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self, executor, recording_sleep):
        with pytest.raises(RetryExhaustedError):
            await executor.execute(Flaky(failures=1), max_attempts=1)
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_outer_timeout_aborts_backoff(self):
        executor = ResilientExecutor(RetryPolicy(max_attempts=5, base_delay_ms=60_000))
        op = Flaky(failures=10)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(executor.execute(op), timeout=0.05)

        assert op.calls == 1


def test_policy_from_settings():
    from comps_engine.core.config import Settings

    policy = RetryPolicy.from_settings(Settings(RETRY_MAX_ATTEMPTS=5, RETRY_BASE_DELAY_MS=200))

    assert policy.max_attempts == 5
    assert [policy.delay_seconds(i) for i in range(3)] == [0.2, 0.4, 0.8]
