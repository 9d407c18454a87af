import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from ..core.config import Settings, settings as default_settings
from ..core.errors import StoreUnavailableError
from ..core.store import KeyValueStore
from ..core.utils import period_key, period_reset, utcnow
from ..data.base import ProviderUsage

logger = logging.getLogger(__name__)

LAST_SUCCESS_KEY = "last_successful_api"


class QuotaStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class QuotaPolicy:
    provider: str
    period: str      # "day" | "month"
    limit: int       # hard cap billed by the provider
    threshold: int   # soft cap checked before each call


def quota_policies(cfg: Settings = default_settings) -> Dict[str, QuotaPolicy]:
    """Quota-tracked providers in waterfall priority order. Anything not listed is unmetered."""
    return {
        "us_real_estate": QuotaPolicy("us_real_estate", "month",
                                      cfg.US_REAL_ESTATE_MONTHLY_LIMIT, cfg.US_REAL_ESTATE_THRESHOLD),
        "zillow": QuotaPolicy("zillow", "month", cfg.ZILLOW_MONTHLY_LIMIT, cfg.ZILLOW_THRESHOLD),
        "gemini": QuotaPolicy("gemini", "day", cfg.GEMINI_DAILY_LIMIT, cfg.GEMINI_THRESHOLD),
    }


def status_for(percent_used: float) -> QuotaStatus:
    if percent_used >= 100:
        return QuotaStatus.EXHAUSTED
    if percent_used >= 90:
        return QuotaStatus.CRITICAL
    if percent_used >= 75:
        return QuotaStatus.WARNING
    return QuotaStatus.HEALTHY


class QuotaLedger:
    """
    Per-provider, per-period usage counters kept in a KeyValueStore under
    "{provider}_{periodKey}". Period keys are derived from the clock on every
    call, so a new month/day starts from zero and old counters are simply
    never read again.
    """

    def __init__(self, store: KeyValueStore, policies: Optional[Dict[str, QuotaPolicy]] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.policies = policies if policies is not None else quota_policies()
        self.clock = clock

    def _period(self, provider: str, period: Optional[str]) -> str:
        if period:
            return period
        policy = self.policies.get(provider)
        return policy.period if policy else "month"

    def usage_key(self, provider: str, period: Optional[str] = None) -> str:
        return f"{provider}_{period_key(self._period(provider, period), self.clock())}"

    def get_usage(self, provider: str, period: Optional[str] = None) -> int:
        raw = self.store.get(self.usage_key(provider, period))
        return int(raw) if raw else 0

    def reported_key(self, provider: str, period: Optional[str] = None) -> str:
        return f"{provider}_reported_{period_key(self._period(provider, period), self.clock())}"

    def get_reported(self, provider: str, period: Optional[str] = None) -> Optional[ProviderUsage]:
        """Latest provider-reported usage seen this period, if any."""
        raw = self.store.get(self.reported_key(provider, period))
        if not raw:
            return None
        try:
            return ProviderUsage.from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable reported usage: {exc}", extra={"provider": provider})
            return None

    def is_available(self, provider: str, period: Optional[str] = None) -> bool:
        """
        Local counter under the threshold, and, when the provider has
        reported its own usage this period, that usage under the same
        fraction of its plan.
        """
        policy = self.policies.get(provider)
        if policy is None:
            return True
        try:
            used = self.get_usage(provider, period)
            reported = self.get_reported(provider, period)
        except StoreUnavailableError as exc:
            # Paid quota: treat an unreadable counter as exhausted
            logger.warning(f"Quota store unavailable, treating {provider} as unavailable: {exc}",
                           extra={"provider": provider})
            return False
        if used >= policy.threshold:
            return False
        if reported is not None and policy.limit > 0:
            ceiling = policy.threshold / policy.limit * 100
            if reported.percent_used >= ceiling:
                logger.warning(f"{provider} reports {reported.used}/{reported.limit} used, "
                               f"past the {ceiling:.0f}% threshold", extra={"provider": provider})
                return False
        return True

    def record_usage(self, provider: str, period: Optional[str] = None, success: bool = True,
                     reported: Optional[ProviderUsage] = None) -> int:
        """
        Counts one provider call for the current period and returns the new
        total. `reported` is the usage the provider sent back with the call.
        """
        count = self.store.incr(self.usage_key(provider, period))
        if reported is not None:
            self.store.set(self.reported_key(provider, period), json.dumps(reported.to_dict()))
        if success:
            self.store.set(LAST_SUCCESS_KEY, json.dumps({
                "provider": provider,
                "at": self.clock().isoformat(),
            }))
        logger.info(f"{provider} usage this period: {count} ({'success' if success else 'failed'})",
                    extra={"provider": provider})
        return count

    def last_success(self) -> Optional[dict]:
        raw = self.store.get(LAST_SUCCESS_KEY)
        return json.loads(raw) if raw else None

    def get_quota_report(self) -> dict:
        now = self.clock()
        providers = {}
        for name, policy in self.policies.items():
            used = self.get_usage(name, policy.period)
            reported = self.get_reported(name, policy.period)
            percent = round(used / policy.limit * 100) if policy.limit > 0 else 0
            providers[name] = {
                "used": used,
                "limit": policy.limit,
                "threshold": policy.threshold,
                "remaining": max(0, policy.limit - used),
                "percent_used": percent,
                "status": status_for(percent).value,
                "available": self.is_available(name, policy.period),
                "period": policy.period,
                "period_key": period_key(policy.period, now),
                "reset_date": period_reset(policy.period, now).isoformat(),
                "provider_reported": reported.to_dict() if reported else None,
            }
        return {"providers": providers, "last_success": self.last_success()}
