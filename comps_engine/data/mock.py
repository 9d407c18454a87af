from datetime import date, timedelta
from typing import List, Optional

from .base import (
    Comparable, Condition, PropertyIdentity, PricePoint, MarketSnapshot, ValueChange,
)
from ..core.utils import fnv1a_32, seeded_rand


class MockDataset:
    """
    Deterministic stand-in for a real-estate data provider. Everything is
    derived from a hash of the property identity (or zpid/location), so the
    same input always yields the same comps, estimates and history.
    Prices/attributes are plausible but fake.
    """
    name = "mock"
    quality = 50
    comps_count = 6

    def _base_price(self, key: str) -> int:
        seed = fnv1a_32(key)
        return 250_000 + int(seeded_rand(seed, 1)[0] * 650_000)

    async def fetch_comparables(self, identity: PropertyIdentity) -> List[Comparable]:
        key = identity.normalized()
        seed = fnv1a_32(f"{self.name}:{key}")
        base = self._base_price(key)
        today = date.today()
        out: List[Comparable] = []
        for i in range(self.comps_count):
            r = seeded_rand(seed + i * 31, 5)
            condition = Condition.REMODELED if i % 2 else Condition.UNREMODELED
            premium = 1.15 if condition is Condition.REMODELED else 1.0
            out.append(Comparable(
                address=f"{100 + int(r[0] * 900)} Mock Ave, {identity.city}, {identity.state}",
                price=float(int(base * premium * (0.9 + r[1] * 0.2))),
                square_feet=1100 + int(r[2] * 1400),
                beds=float(2 + int(r[3] * 3)),
                baths=float(1 + int(r[3] * 3)),
                sale_date=today - timedelta(days=int(r[4] * 365)),
                distance_miles=round(r[0] * 2.0, 2),
                condition=condition,
                source_provider=self.name,
                quality_score=self.quality,
            ))
        # Closer first, like the real feeds
        out.sort(key=lambda c: (c.distance_miles or 0.0))
        return out

    async def fetch_estimate(self, identity: PropertyIdentity) -> Optional[float]:
        key = identity.normalized()
        drift = seeded_rand(fnv1a_32(f"{self.name}:estimate:{key}"), 1)[0]
        return float(int(self._base_price(key) * (0.97 + drift * 0.08)))

    async def price_history(self, zpid: str) -> List[PricePoint]:
        seed = fnv1a_32(f"history:{zpid}")
        r = seeded_rand(seed, 3)
        today = date.today()
        first_price = 180_000 + r[0] * 300_000
        growth = 0.02 + r[1] * 0.05
        years = [12, 7, 2]
        return [
            PricePoint(
                date=today - timedelta(days=int(y * 365.25)),
                price=round(first_price * (1 + growth) ** (years[0] - y)),
            )
            for y in years
        ]

    async def local_market(self, location: str) -> Optional[MarketSnapshot]:
        r = seeded_rand(fnv1a_32(f"market:{location.lower()}"), 2)
        return MarketSnapshot(
            location=location,
            median_home_value=float(int(300_000 + r[0] * 500_000)),
            value_change=round(-3.0 + r[1] * 10.0, 1),
        )

    async def value_change(self, zpid: str) -> Optional[ValueChange]:
        r = seeded_rand(fnv1a_32(f"change:{zpid}"), 2)
        one_year = round(-4.0 + r[0] * 12.0, 1)
        return ValueChange(thirty_day=round(one_year / 12, 2), one_year=one_year,
                           five_year=round(one_year * 4.5, 1))
