"""
Provider waterfall for comparable sales.

The tiers are an ordered list of strategies walked by a small state machine:

    IDLE -> TRYING_TIER(1..n) -> SUCCEEDED | ALL_EXHAUSTED

A tier is skipped when its quota is used up, and abandoned when it lacks
credentials, raises, times out or comes back empty. The first tier with data
wins and nothing is merged across tiers. Missing credentials only surface as
an exception when no attempted tier had any.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import List, Optional

from ..core.config import Settings, settings as default_settings
from ..core.errors import ProviderConfigurationError, StoreUnavailableError
from ..core.metrics import PROVIDER_CALLS, QUOTA_SKIPS
from ..core.retry import ResilientExecutor
from ..data.base import Comparable, CompsProvider, PropertyIdentity
from ..data.bridge import bridge_provider
from ..data.gemini import gemini_provider
from ..data.us_real_estate import us_real_estate_provider
from ..data.zillow import zillow_provider
from .quota import QuotaLedger
from .result_cache import DataType, ResultCache, comps_cache_key

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = (
    "All API sources failed or exceeded quota. "
    "Please check your API keys or wait for quota reset."
)


class WaterfallState(str, Enum):
    IDLE = "idle"
    TRYING_TIER = "trying_tier"
    SUCCEEDED = "succeeded"
    ALL_EXHAUSTED = "all_exhausted"


class TierOutcome(str, Enum):
    SKIPPED_QUOTA = "skipped_quota"
    MISCONFIGURED = "misconfigured"
    FAILED = "failed"
    TIMEOUT = "timeout"
    EMPTY = "empty"
    SUCCEEDED = "succeeded"


@dataclass
class WaterfallTier:
    tier: int
    provider: CompsProvider
    quota_period: Optional[str] = None   # None: unmetered fallback tier

    @property
    def name(self) -> str:
        return self.provider.name


@dataclass
class TierAttempt:
    tier: int
    provider: str
    outcome: TierOutcome
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"tier": self.tier, "provider": self.provider,
                "outcome": self.outcome.value, "error": self.error}


@dataclass
class WaterfallResult:
    comparables: List[Comparable] = field(default_factory=list)
    data_source: Optional[str] = None
    from_cache: bool = False
    state: WaterfallState = WaterfallState.IDLE
    attempts: List[TierAttempt] = field(default_factory=list)
    exhausted: bool = False
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "comparables": [c.to_dict() for c in self.comparables],
            "data_source": self.data_source,
            "from_cache": self.from_cache,
            "state": self.state.value,
            "attempts": [a.to_dict() for a in self.attempts],
            "exhausted": self.exhausted,
            "message": self.message,
        }


def default_tiers(cfg: Settings = default_settings, transport=None) -> List[WaterfallTier]:
    return [
        WaterfallTier(1, us_real_estate_provider(cfg, transport), "month"),
        WaterfallTier(2, zillow_provider(cfg, transport), "month"),
        WaterfallTier(3, gemini_provider(cfg, transport), "day"),
        WaterfallTier(4, bridge_provider(cfg, transport), None),
    ]


class WaterfallOrchestrator:
    def __init__(
        self,
        tiers: List[WaterfallTier],
        ledger: QuotaLedger,
        cache: ResultCache,
        executor: ResilientExecutor,
        tier_timeout: float = 45.0,
    ):
        self.tiers = sorted(tiers, key=lambda t: t.tier)
        self.ledger = ledger
        self.cache = cache
        self.executor = executor
        self.tier_timeout = tier_timeout

    def _from_cache(self, key: str) -> Optional[WaterfallResult]:
        cached = self.cache.get(key)
        if not isinstance(cached, dict) or not cached.get("comparables"):
            return None
        try:
            comparables = [Comparable.from_dict(c) for c in cached["comparables"]]
        except (TypeError, ValueError) as exc:
            # Written by an older schema or corrupted; drop it and refetch
            logger.warning(f"Discarding unreadable cached comparables: {exc}", extra={"cache_key": key})
            self.cache.invalidate(key)
            return None
        return WaterfallResult(
            comparables=comparables,
            data_source=cached.get("source"),
            from_cache=True,
            state=WaterfallState.SUCCEEDED,
        )

    def _record(self, tier: WaterfallTier, success: bool) -> None:
        try:
            self.ledger.record_usage(tier.name, tier.quota_period or "month", success=success,
                                     reported=getattr(tier.provider, "last_usage", None))
        except StoreUnavailableError as exc:
            logger.warning(f"Failed to track API usage: {exc}", extra={"provider": tier.name})

    async def _call(self, tier: WaterfallTier, identity: PropertyIdentity) -> List[Comparable]:
        work = partial(tier.provider.fetch_comparables, identity)
        return await asyncio.wait_for(
            self.executor.execute(work, label=f"{tier.name} comps"),
            timeout=self.tier_timeout,
        )

    async def fetch_comparables(self, identity: PropertyIdentity,
                                force_refresh: bool = False) -> WaterfallResult:
        """
        Cached comparables for `identity`, or the first non-empty tier result.
        A tier missing credentials is passed over like any failed tier.
        ProviderConfigurationError is raised only when every tier that was
        attempted failed that way, i.e. nothing is configured at all.
        """
        key = comps_cache_key(identity)
        if not force_refresh:
            hit = self._from_cache(key)
            if hit is not None:
                return hit

        result = WaterfallResult(state=WaterfallState.IDLE)
        config_errors: List[ProviderConfigurationError] = []
        for tier in self.tiers:
            result.state = WaterfallState.TRYING_TIER
            log_extra = {"provider": tier.name, "tier": tier.tier}

            if tier.quota_period and not self.ledger.is_available(tier.name, tier.quota_period):
                logger.warning(f"{tier.name} quota exceeded, skipping to next API", extra=log_extra)
                QUOTA_SKIPS.labels(provider=tier.name).inc()
                result.attempts.append(TierAttempt(tier.tier, tier.name, TierOutcome.SKIPPED_QUOTA))
                continue

            logger.info(f"Trying {tier.name} (priority {tier.tier})", extra=log_extra)
            try:
                comps = await self._call(tier, identity)
            except ProviderConfigurationError as exc:
                # Never reached the provider, so nothing is charged to its quota
                logger.error(f"{tier.name} is not configured: {exc}", extra=log_extra)
                PROVIDER_CALLS.labels(provider=tier.name, outcome=TierOutcome.MISCONFIGURED.value).inc()
                config_errors.append(exc)
                result.attempts.append(TierAttempt(tier.tier, tier.name, TierOutcome.MISCONFIGURED, str(exc)))
                continue
            except asyncio.TimeoutError:
                logger.warning(f"{tier.name} timed out after {self.tier_timeout}s", extra=log_extra)
                PROVIDER_CALLS.labels(provider=tier.name, outcome=TierOutcome.TIMEOUT.value).inc()
                self._record(tier, success=False)
                result.attempts.append(TierAttempt(tier.tier, tier.name, TierOutcome.TIMEOUT,
                                                   f"timed out after {self.tier_timeout}s"))
                continue
            except Exception as exc:
                logger.warning(f"{tier.name} failed: {exc}", extra=log_extra)
                PROVIDER_CALLS.labels(provider=tier.name, outcome=TierOutcome.FAILED.value).inc()
                self._record(tier, success=False)
                result.attempts.append(TierAttempt(tier.tier, tier.name, TierOutcome.FAILED, str(exc)))
                continue

            if not comps:
                logger.warning(f"{tier.name} returned no comparables", extra=log_extra)
                PROVIDER_CALLS.labels(provider=tier.name, outcome=TierOutcome.EMPTY.value).inc()
                self._record(tier, success=False)
                result.attempts.append(TierAttempt(tier.tier, tier.name, TierOutcome.EMPTY))
                continue

            logger.info(f"{tier.name} SUCCESS: {len(comps)} comps", extra=log_extra)
            PROVIDER_CALLS.labels(provider=tier.name, outcome=TierOutcome.SUCCEEDED.value).inc()
            self._record(tier, success=True)
            self.cache.set(key, {"comparables": [c.to_dict() for c in comps], "source": tier.name},
                           DataType.COMPS)
            result.attempts.append(TierAttempt(tier.tier, tier.name, TierOutcome.SUCCEEDED))
            result.comparables = list(comps)
            result.data_source = tier.name
            result.state = WaterfallState.SUCCEEDED
            return result

        tried = [a for a in result.attempts if a.outcome is not TierOutcome.SKIPPED_QUOTA]
        if tried and all(a.outcome is TierOutcome.MISCONFIGURED for a in tried):
            raise config_errors[0]

        logger.error(EXHAUSTED_MESSAGE, extra={"cache_key": key})
        result.state = WaterfallState.ALL_EXHAUSTED
        result.exhausted = True
        result.message = EXHAUSTED_MESSAGE
        return result
