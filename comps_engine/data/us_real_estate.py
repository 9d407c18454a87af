import logging
from typing import List, Optional

import httpx

from .base import Comparable, PropertyIdentity
from .mock import MockDataset
from .normalize import dig, first_present, keep_priced, parse_sale_date, to_float, to_int
from .rapidapi import RapidApiAdapter
from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

NAME = "us_real_estate"


class MockUSRealEstate(MockDataset):
    name = NAME
    quality = 95


class HttpUSRealEstate(RapidApiAdapter):
    """
    US Real Estate API (RapidAPI). Tier 1 of the comps waterfall and
    automated estimate B.
    """
    name = NAME
    host = "us-real-estate.p.rapidapi.com"
    quality = 95

    def _to_comparable(self, home: dict, source: str) -> Comparable:
        description = home.get("description") or {}
        coordinate = dig(home, "location", "coordinate") or {}
        return Comparable(
            address=dig(home, "location", "address", "line") or "Unknown",
            price=to_float(first_present(home, "list_price", "price", "sold_price")) or 0.0,
            square_feet=to_int(first_present(description, "sqft")),
            beds=to_float(first_present(description, "beds")),
            baths=to_float(first_present(description, "baths")),
            sale_date=parse_sale_date(first_present(home, "sold_date", "list_date")),
            distance_miles=None,  # not provided by this API
            source_provider=source,
            quality_score=self.quality,
            external_link=home.get("href"),
            latitude=to_float(coordinate.get("lat")),
            longitude=to_float(coordinate.get("lon")),
            provider_property_id=home.get("property_id"),
        )

    @staticmethod
    def _results(payload) -> list:
        homes = dig(payload, "data", "home_search", "results") or first_present(payload, "results")
        return homes if isinstance(homes, list) else []

    async def fetch_comparables(self, identity: PropertyIdentity) -> List[Comparable]:
        payload = await self._get("/for-sale/similiar-homes", {
            "city": identity.city, "state_code": identity.state,
            "offset": 0, "limit": 10, "sort": "relevance",
        })
        comps = keep_priced(
            self._to_comparable(h, "us_real_estate_similar_homes")
            for h in self._results(payload)[:10] if isinstance(h, dict)
        )
        if comps:
            return comps

        logger.info("No similar homes found, falling back to sold homes search", extra={"provider": self.name})
        payload = await self._get("/sold-homes", {
            "city": identity.city, "state_code": identity.state, "limit": 6,
        })
        return keep_priced(
            self._to_comparable(h, "us_real_estate_sold_homes")
            for h in self._results(payload)[:6] if isinstance(h, dict)
        )

    async def lookup_property_id(self, identity: PropertyIdentity) -> Optional[str]:
        """Finds the provider's property_id by fuzzy-matching the street line in a city search."""
        payload = await self._get("/v3/for-sale", {
            "city": identity.city, "state_code": identity.state, "limit": 10,
        })
        wanted = identity.address.lower().strip()
        for home in self._results(payload):
            if not isinstance(home, dict):
                continue
            line = str(dig(home, "location", "address", "line") or "").lower().strip()
            if line and (wanted in line or line in wanted) and home.get("property_id"):
                return str(home["property_id"])
        return None

    async def fetch_estimate(self, identity: PropertyIdentity) -> Optional[float]:
        property_id = identity.property_id or await self.lookup_property_id(identity)
        if not property_id:
            logger.info("No matching property_id, no estimate", extra={"provider": self.name})
            return None
        payload = await self._get("/for-sale/home-estimate-value", {"property_id": property_id})
        estimate = to_float(
            first_present(payload, "estimate", "estimated_value", "value")
            or first_present(payload.get("data") if isinstance(payload, dict) else None,
                             "estimate", "estimated_value", "value")
        )
        return estimate if estimate and estimate > 0 else None


def us_real_estate_provider(cfg: Settings = default_settings,
                            transport: httpx.AsyncBaseTransport | None = None):
    if cfg.USRE_PROVIDER == "http":
        return HttpUSRealEstate(cfg.RAPIDAPI_KEY, cfg.USRE_BASE_URL, cfg.HTTP_TIMEOUT_SECONDS, transport)
    return MockUSRealEstate()
