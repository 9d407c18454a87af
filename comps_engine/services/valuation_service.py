import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Callable, Dict, List, Optional

from ..core.config import Settings, settings as default_settings
from ..core.errors import ProviderConfigurationError, StoreUnavailableError
from ..core.metrics import PROVIDER_CALLS, QUOTA_SKIPS
from ..core.retry import ResilientExecutor, RetryPolicy
from ..core.store import build_store
from ..core.utils import utcnow
from ..data.base import EstimateProvider, HistorySource, PropertyIdentity, PropertyReference, SubjectProfile
from ..data.us_real_estate import us_real_estate_provider
from ..data.zillow import zillow_provider
from .aggregator import AggregatedValuation, CompsEstimate, EstimateBundle, ValuationAggregator, estimate_from_comps
from .quota import QuotaLedger, quota_policies
from .result_cache import COMPS_PREFIX, DataType, ResultCache, comps_cache_key, estimates_cache_key, ttl_table
from .validator import HistoricalValidationResult, HistoricalValidator
from .waterfall import WaterfallOrchestrator, WaterfallResult, WaterfallTier, default_tiers

logger = logging.getLogger(__name__)

LEGACY_PREMIUM = 1.20


@dataclass
class ArvEstimate:
    value: Optional[float]
    method: str
    comps: WaterfallResult
    comps_estimate: Optional[CompsEstimate] = None
    automated_estimates: Dict[str, Optional[float]] = field(default_factory=dict)
    aggregated: Optional[AggregatedValuation] = None

    def to_dict(self) -> dict:
        return {
            "value": round(self.value, 2) if self.value is not None else None,
            "method": self.method,
            "sources_used": self.aggregated.sources_used if self.aggregated else [],
            "sources": [s.to_dict() for s in self.aggregated.sources] if self.aggregated else [],
            "confidence": self.aggregated.confidence if self.aggregated else None,
            "std_dev": round(self.aggregated.std_dev) if self.aggregated else None,
            "comps_estimate": {
                "value": round(self.comps_estimate.value, 2),
                "method": self.comps_estimate.method,
                "comps_used": self.comps_estimate.comps_used,
                "remodeled_count": self.comps_estimate.remodeled_count,
                "unremodeled_count": self.comps_estimate.unremodeled_count,
            } if self.comps_estimate else None,
            "automated_estimates": dict(self.automated_estimates),
            "data_source": self.comps.data_source,
            "from_cache": self.comps.from_cache,
            "exhausted": self.comps.exhausted,
            "message": self.comps.message,
        }


class ValuationService:
    """
    Wires the acquisition engine together:
      identity → waterfall (cache, quota, retries) → comps estimate
               + automated estimates A/B → weighted ARV → historical checks
    Stores, clock and providers can be injected; anything left out is built
    from settings.
    """

    def __init__(
        self,
        cfg: Settings = default_settings,
        *,
        ledger: Optional[QuotaLedger] = None,
        cache: Optional[ResultCache] = None,
        executor: Optional[ResilientExecutor] = None,
        tiers: Optional[List[WaterfallTier]] = None,
        estimators: Optional[Dict[str, EstimateProvider]] = None,
        history: Optional[HistorySource] = None,
        aggregator: Optional[ValuationAggregator] = None,
        clock: Callable[[], datetime] = utcnow,
        transport=None,
    ):
        self.cfg = cfg
        self.ledger = ledger or QuotaLedger(build_store("quota", cfg), quota_policies(cfg), clock=clock)
        self.cache = cache or ResultCache(build_store("cache", cfg), ttl_table(cfg),
                                          cfg.CACHE_TTL_DEFAULT_SECONDS, clock=clock)
        self.executor = executor or ResilientExecutor(RetryPolicy.from_settings(cfg))

        zillow = zillow_provider(cfg, transport)
        self.estimators = estimators if estimators is not None else {
            "zillow": zillow,
            "us_real_estate": us_real_estate_provider(cfg, transport),
        }
        self.waterfall = WaterfallOrchestrator(
            tiers if tiers is not None else default_tiers(cfg, transport),
            self.ledger, self.cache, self.executor, cfg.TIER_TIMEOUT_SECONDS,
        )
        self.aggregator = aggregator or ValuationAggregator()
        self.validator = HistoricalValidator(history or zillow)

    async def fetch_comparables(self, identity: PropertyIdentity, force_refresh: bool = False) -> WaterfallResult:
        return await self.waterfall.fetch_comparables(identity, force_refresh)

    def get_quota_report(self) -> dict:
        return self.ledger.get_quota_report()

    async def validate_valuation(self, value: float, ref: PropertyReference) -> HistoricalValidationResult:
        return await self.validator.validate(value, ref)

    def invalidate_comparables(self, identity: PropertyIdentity) -> bool:
        return self.cache.invalidate(comps_cache_key(identity))

    def clear_comparables_cache(self) -> int:
        return self.cache.clear_all_with_prefix(COMPS_PREFIX)

    def comparables_cache_stats(self, identity: PropertyIdentity) -> dict:
        return self.cache.stats(comps_cache_key(identity))

    def _record(self, name: str, provider: EstimateProvider, success: bool) -> None:
        try:
            self.ledger.record_usage(name, success=success, reported=getattr(provider, "last_usage", None))
        except StoreUnavailableError as exc:
            logger.warning(f"Failed to track API usage: {exc}", extra={"provider": name})

    async def _estimate(self, name: str, identity: PropertyIdentity, force_refresh: bool) -> Optional[float]:
        """
        One automated valuation, cached as `estimates`. Quota-gated and
        retried like a waterfall tier; any failure, a missing API key
        included, leaves the slot empty.
        """
        provider = self.estimators.get(name)
        if provider is None:
            return None

        key = estimates_cache_key(identity, name)
        if not force_refresh:
            cached = self.cache.get(key)
            if isinstance(cached, dict) and isinstance(cached.get("value"), (int, float)) and cached["value"] > 0:
                return float(cached["value"])

        if not self.ledger.is_available(name):
            logger.warning(f"{name} quota exceeded, skipping estimate", extra={"provider": name})
            QUOTA_SKIPS.labels(provider=name).inc()
            return None

        try:
            value = await asyncio.wait_for(
                self.executor.execute(partial(provider.fetch_estimate, identity), label=f"{name} estimate"),
                timeout=self.cfg.TIER_TIMEOUT_SECONDS,
            )
        except ProviderConfigurationError as exc:
            logger.error(f"{name} estimate unavailable: {exc}", extra={"provider": name})
            PROVIDER_CALLS.labels(provider=name, outcome="misconfigured").inc()
            return None
        except Exception as exc:
            logger.warning(f"Failed to fetch {name} estimate: {exc}", extra={"provider": name})
            PROVIDER_CALLS.labels(provider=name, outcome="failed").inc()
            self._record(name, provider, success=False)
            return None

        if not value:
            PROVIDER_CALLS.labels(provider=name, outcome="empty").inc()
            self._record(name, provider, success=False)
            return None

        PROVIDER_CALLS.labels(provider=name, outcome="succeeded").inc()
        self._record(name, provider, success=True)
        self.cache.set(key, {"value": value, "provider": name}, DataType.ESTIMATES)
        return value

    async def estimate_arv(
        self,
        identity: PropertyIdentity,
        subject: Optional[SubjectProfile] = None,
        purchase_price: Optional[float] = None,
        force_refresh: bool = False,
    ) -> ArvEstimate:
        comps = await self.fetch_comparables(identity, force_refresh)
        comps_estimate = estimate_from_comps(comps.comparables, subject)

        zestimate, home_value = await asyncio.gather(
            self._estimate("zillow", identity, force_refresh),
            self._estimate("us_real_estate", identity, force_refresh),
        )
        bundle = EstimateBundle(
            comps_estimate=comps_estimate.value if comps_estimate else None,
            automated_estimate_a=zestimate,
            automated_estimate_b=home_value,
        )
        automated = {"zillow": zestimate, "us_real_estate": home_value}

        aggregated = self.aggregator.aggregate(bundle)
        if aggregated is not None:
            return ArvEstimate(aggregated.value, aggregated.method, comps, comps_estimate, automated, aggregated)

        if purchase_price and purchase_price > 0:
            logger.info("ARV: no sources available, using legacy purchase price premium")
            return ArvEstimate(purchase_price * LEGACY_PREMIUM, "Legacy (20% premium on purchase price)",
                               comps, comps_estimate, automated)
        return ArvEstimate(None, "No valuation sources available", comps, comps_estimate, automated)
