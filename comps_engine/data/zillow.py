import logging
from typing import List, Optional

import httpx

from .base import Comparable, PropertyIdentity, PricePoint, MarketSnapshot, ValueChange
from .mock import MockDataset
from .normalize import first_present, keep_priced, parse_sale_date, to_float, to_int
from .rapidapi import RapidApiAdapter
from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

NAME = "zillow"


class MockZillow(MockDataset):
    name = NAME
    quality = 95


class HttpZillow(RapidApiAdapter):
    """
    Zillow API (RapidAPI). Tier 2 of the comps waterfall, automated
    estimate A (Zestimate) and the history source used by the validator.
    """
    name = NAME
    host = "zillow-com1.p.rapidapi.com"

    def _to_comparable(self, prop: dict, source: str, quality: int) -> Comparable:
        zpid = prop.get("zpid")
        link = first_present(prop, "detailUrl", "hdpUrl")
        if not link and zpid:
            link = f"https://www.zillow.com/homedetails/{zpid}_zpid/"
        return Comparable(
            address=str(first_present(prop, "address", "streetAddress", default="Unknown")),
            price=to_float(first_present(prop, "price", "lastSoldPrice")) or 0.0,
            square_feet=to_int(first_present(prop, "livingArea", "sqft")),
            beds=to_float(first_present(prop, "bedrooms", "beds")),
            baths=to_float(first_present(prop, "bathrooms", "baths")),
            sale_date=parse_sale_date(first_present(prop, "dateSold", "lastSoldDate")),
            distance_miles=to_float(prop.get("distance")),
            source_provider=source,
            quality_score=quality,
            external_link=link,
            latitude=to_float(first_present(prop, "latitude", "lat")),
            longitude=to_float(first_present(prop, "longitude", "lng")),
            provider_property_id=str(zpid) if zpid else None,
        )

    async def resolve_zpid(self, identity: PropertyIdentity) -> Optional[str]:
        if identity.zpid:
            return identity.zpid
        payload = await self._get("/property", {"address": identity.full_address})
        zpid = first_present(payload, "zpid")
        return str(zpid) if zpid else None

    async def _search_recently_sold(self, identity: PropertyIdentity) -> List[Comparable]:
        payload = await self._get("/propertyExtendedSearch", {
            "location": identity.location,
            "status_type": "RecentlySold",
            "home_type": "Houses",
            "sort": "Newest",
        })
        props = first_present(payload, "props", default=[])
        if not isinstance(props, list):
            return []
        return keep_priced(self._to_comparable(p, "zillow", 100) for p in props[:6] if isinstance(p, dict))

    async def fetch_comparables(self, identity: PropertyIdentity) -> List[Comparable]:
        zpid = await self.resolve_zpid(identity)
        if not zpid:
            logger.info("Could not resolve zpid, using generic search", extra={"provider": self.name})
            return await self._search_recently_sold(identity)

        payload = await self._get("/propertyComps", {"zpid": zpid})
        raw = first_present(payload, "comps", "properties", default=[])
        comps = keep_priced(
            self._to_comparable(p, "zillow_property_comps", 95)
            for p in (raw if isinstance(raw, list) else [])[:10] if isinstance(p, dict)
        )
        if comps:
            return comps
        logger.info("No property comps found, using generic search", extra={"provider": self.name})
        return await self._search_recently_sold(identity)

    async def fetch_estimate(self, identity: PropertyIdentity) -> Optional[float]:
        zpid = await self.resolve_zpid(identity)
        if not zpid:
            return None
        payload = await self._get("/zestimate", {"zpid": zpid})
        value = to_float(first_present(payload, "zestimate", "price"))
        return value if value and value > 0 else None

    async def price_history(self, zpid: str) -> List[PricePoint]:
        payload = await self._get("/priceAndTaxHistory", {"zpid": zpid})
        events = first_present(payload, "priceHistory", default=[])
        points = []
        for event in events if isinstance(events, list) else []:
            when = parse_sale_date(first_present(event, "date", "time"))
            price = to_float(first_present(event, "price", "value"))
            if when and price:
                points.append(PricePoint(date=when, price=price))
        points.sort(key=lambda p: p.date)
        return points

    async def local_market(self, location: str) -> Optional[MarketSnapshot]:
        payload = await self._get("/valueHistory/localHomeValues", {"location": location})
        if not isinstance(payload, dict):
            return None
        return MarketSnapshot(
            location=location,
            median_home_value=to_float(first_present(payload, "medianHomeValue", "median_home_value")),
            median_rent=to_float(first_present(payload, "medianRent", "median_rent")),
            value_change=to_float(first_present(payload, "valueChange", "value_change")),
        )

    async def value_change(self, zpid: str) -> Optional[ValueChange]:
        payload = await self._get("/valueHistory/zestimatePercentChange", {"zpid": zpid})
        if not isinstance(payload, dict):
            return None
        return ValueChange(
            thirty_day=to_float(first_present(payload, "thirtyDayChange", "30DayChange")),
            one_year=to_float(first_present(payload, "oneYearChange", "1YearChange")),
            five_year=to_float(first_present(payload, "fiveYearChange", "5YearChange")),
            ten_year=to_float(first_present(payload, "tenYearChange", "10YearChange")),
        )


def zillow_provider(cfg: Settings = default_settings,
                    transport: httpx.AsyncBaseTransport | None = None):
    if cfg.ZILLOW_PROVIDER == "http":
        return HttpZillow(cfg.RAPIDAPI_KEY, cfg.ZILLOW_BASE_URL, cfg.HTTP_TIMEOUT_SECONDS, transport)
    return MockZillow()
