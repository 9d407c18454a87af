import logging
from datetime import date, timedelta
from typing import List, Optional

import httpx

from .base import Comparable, Condition, PropertyIdentity
from .normalize import dig, first_present, to_float
from ..core.config import Settings, settings as default_settings
from ..core.errors import ProviderConfigurationError
from ..core.utils import fnv1a_32, seeded_rand

logger = logging.getLogger(__name__)

NAME = "bridge"
QUALITY = 40


def synthesize_comparables(identity: PropertyIdentity, median: float,
                           today: Optional[date] = None) -> List[Comparable]:
    """
    Six placeholder comps spread +/-10% around a market median.
    The first three are tagged unremodeled, the rest remodeled. Seeded from
    the property identity so the same request always yields the same set.
    """
    today = today or date.today()
    seed = fnv1a_32(f"bridge:{identity.normalized()}")
    out: List[Comparable] = []
    for i in range(6):
        r = seeded_rand(seed + i * 17, 4)
        variance = (r[0] - 0.5) * 0.2
        out.append(Comparable(
            address=f"Comparable {i + 1} near {identity.city}, {identity.state}",
            price=float(round(median * (1 + variance))),
            square_feet=round(1500 + (r[1] - 0.5) * 500),
            sale_date=today - timedelta(days=int(r[2] * 180)),
            distance_miles=round(r[3] * 2, 1),
            condition=Condition.UNREMODELED if i < 3 else Condition.REMODELED,
            source_provider=NAME,
            quality_score=QUALITY,
        ))
    return out


class MockBridge:
    name = NAME

    async def market_median(self, identity: PropertyIdentity) -> Optional[float]:
        r = seeded_rand(fnv1a_32(f"market:{identity.location.lower()}"), 1)
        return float(int(300_000 + r[0] * 500_000))

    async def fetch_comparables(self, identity: PropertyIdentity) -> List[Comparable]:
        median = await self.market_median(identity)
        return synthesize_comparables(identity, median) if median else []


class HttpBridge(MockBridge):
    """
    Bridge zgecon dataset. Last tier: it only knows regional market data,
    so comparables are synthesized around the median home value.
    """

    def __init__(self, api_key: str | None, base_url: str | None,
                 timeout: float = 15, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def market_median(self, identity: PropertyIdentity) -> Optional[float]:
        if not self.api_key or not self.base_url:
            raise ProviderConfigurationError(self.name, "BRIDGE_API_KEY and BRIDGE_BASE_URL must be configured")
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(f"{self.base_url}/api/v2/zgecon",
                                 params={"state": identity.state, "city": identity.city},
                                 headers=headers)
            r.raise_for_status()
            payload = r.json()
        median = to_float(
            first_present(payload, "medianHomeValue", "median_home_value")
            or dig(payload, "bundle", "medianHomeValue")
        )
        if not median or median <= 0:
            logger.info("No median home value in market data", extra={"provider": self.name})
            return None
        return median


def bridge_provider(cfg: Settings = default_settings,
                    transport: httpx.AsyncBaseTransport | None = None):
    if cfg.BRIDGE_PROVIDER == "http":
        return HttpBridge(cfg.BRIDGE_API_KEY, cfg.BRIDGE_BASE_URL, cfg.HTTP_TIMEOUT_SECONDS, transport)
    return MockBridge()
