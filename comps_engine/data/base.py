from typing import Protocol, List, Optional
from dataclasses import dataclass, asdict
from datetime import date
from enum import Enum

from ..core.utils import normalize_address

# ----- Data shapes (thin & explicit) -----

@dataclass(frozen=True)
class PropertyIdentity:
    address: str
    city: str
    state: str
    zip: str
    # Provider-specific ids, when the caller already knows them.
    # Not part of the identity key.
    zpid: Optional[str] = None
    property_id: Optional[str] = None

    def normalized(self) -> str:
        """Stable, case-folded key shared by the cache and the seeds."""
        return "_".join([
            normalize_address(self.address),
            normalize_address(self.city),
            normalize_address(self.state),
            self.zip.strip(),
        ])

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip}".strip()

    @property
    def location(self) -> str:
        return f"{self.city}, {self.state}"


class Condition(str, Enum):
    REMODELED = "remodeled"
    UNREMODELED = "unremodeled"
    UNKNOWN = "unknown"


@dataclass
class Comparable:
    address: str
    price: float
    square_feet: Optional[int] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    sale_date: Optional[date] = None
    distance_miles: Optional[float] = None
    condition: Condition = Condition.UNKNOWN
    source_provider: str = "unknown"
    quality_score: int = 0           # static per-adapter confidence, display only
    external_link: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    provider_property_id: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["condition"] = self.condition.value
        d["sale_date"] = self.sale_date.isoformat() if self.sale_date else None
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Comparable":
        data = dict(d)
        data["condition"] = Condition(data.get("condition") or Condition.UNKNOWN.value)
        raw_date = data.get("sale_date")
        data["sale_date"] = date.fromisoformat(raw_date) if raw_date else None
        return cls(**data)


@dataclass
class SubjectProfile:
    """Physical description of the property being valued (drives comp filtering)."""
    square_feet: Optional[int] = None
    beds: Optional[float] = None
    baths: Optional[float] = None


@dataclass
class PricePoint:
    date: date
    price: float


@dataclass
class MarketSnapshot:
    location: str
    median_home_value: Optional[float] = None
    median_rent: Optional[float] = None
    value_change: Optional[float] = None   # one-year % change, e.g. 3.4


@dataclass
class ValueChange:
    thirty_day: Optional[float] = None
    one_year: Optional[float] = None
    five_year: Optional[float] = None
    ten_year: Optional[float] = None


@dataclass(frozen=True)
class ProviderUsage:
    """Billing-side usage as the provider itself reports it (RapidAPI response headers)."""
    limit: int
    remaining: int
    observed_at: str

    @property
    def used(self) -> int:
        return self.limit - self.remaining

    @property
    def percent_used(self) -> float:
        return self.used / self.limit * 100 if self.limit > 0 else 0.0

    def to_dict(self) -> dict:
        return {"limit": self.limit, "remaining": self.remaining, "used": self.used,
                "percent_used": round(self.percent_used, 1), "observed_at": self.observed_at}

    @classmethod
    def from_dict(cls, d: dict) -> "ProviderUsage":
        return cls(int(d["limit"]), int(d["remaining"]), str(d["observed_at"]))


@dataclass(frozen=True)
class PropertyReference:
    """Where the validator should look for history: a zpid and/or a "City, ST" location."""
    zpid: Optional[str] = None
    location: Optional[str] = None

# ----- Protocols (interfaces) -----

class CompsProvider(Protocol):
    name: str

    async def fetch_comparables(self, identity: PropertyIdentity) -> List[Comparable]: ...

class EstimateProvider(Protocol):
    name: str

    async def fetch_estimate(self, identity: PropertyIdentity) -> Optional[float]: ...

class HistorySource(Protocol):
    async def price_history(self, zpid: str) -> List[PricePoint]: ...
    async def local_market(self, location: str) -> Optional[MarketSnapshot]: ...
    async def value_change(self, zpid: str) -> Optional[ValueChange]: ...
