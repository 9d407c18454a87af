from typing import Optional

from pydantic import BaseModel, Field

from .data.base import PropertyIdentity, PropertyReference, SubjectProfile


class PropertyIn(BaseModel):
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=2)
    zip: str = ""
    zpid: Optional[str] = None
    property_id: Optional[str] = None

    def identity(self) -> PropertyIdentity:
        return PropertyIdentity(
            address=self.address.strip(), city=self.city.strip(), state=self.state.strip(),
            zip=self.zip.strip(), zpid=self.zpid, property_id=self.property_id,
        )


class CompsRequest(PropertyIn):
    force_refresh: bool = False


class ComparableOut(BaseModel):
    address: str
    price: float
    square_feet: Optional[int] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    sale_date: Optional[str] = None
    distance_miles: Optional[float] = None
    condition: str = "unknown"
    source_provider: str
    quality_score: int
    external_link: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    provider_property_id: Optional[str] = None


class TierAttemptOut(BaseModel):
    tier: int
    provider: str
    outcome: str
    error: Optional[str] = None


class CompsResponse(BaseModel):
    comparables: list[ComparableOut]
    data_source: Optional[str] = None
    from_cache: bool = False
    state: str
    attempts: list[TierAttemptOut] = []
    exhausted: bool = False
    message: Optional[str] = None
    etag: Optional[str] = None


class ProviderQuota(BaseModel):
    used: int
    limit: int
    threshold: int
    remaining: int
    percent_used: int
    status: str
    available: bool
    period: str
    period_key: str
    reset_date: str
    provider_reported: Optional[dict] = None


class QuotaResponse(BaseModel):
    providers: dict[str, ProviderQuota]
    last_success: Optional[dict] = None


class SubjectIn(BaseModel):
    square_feet: Optional[int] = Field(default=None, gt=0)
    beds: Optional[float] = Field(default=None, ge=0)
    baths: Optional[float] = Field(default=None, ge=0)

    def profile(self) -> SubjectProfile:
        return SubjectProfile(square_feet=self.square_feet, beds=self.beds, baths=self.baths)


class ArvRequest(PropertyIn):
    subject: Optional[SubjectIn] = None
    purchase_price: Optional[float] = Field(default=None, gt=0)
    force_refresh: bool = False


class SourceOut(BaseModel):
    name: str
    value: float
    base_weight: float
    weight: float


class CompsEstimateOut(BaseModel):
    value: float
    method: str
    comps_used: int
    remodeled_count: int
    unremodeled_count: int


class ArvResponse(BaseModel):
    value: Optional[float] = None
    method: str
    sources_used: list[str] = []
    sources: list[SourceOut] = []
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    std_dev: Optional[float] = None
    comps_estimate: Optional[CompsEstimateOut] = None
    automated_estimates: dict[str, Optional[float]] = {}
    data_source: Optional[str] = None
    from_cache: bool = False
    exhausted: bool = False
    message: Optional[str] = None


class ValidateRequest(BaseModel):
    value: float
    zpid: Optional[str] = None
    location: Optional[str] = None

    def reference(self) -> PropertyReference:
        return PropertyReference(zpid=self.zpid, location=self.location)


class SalePatternOut(BaseModel):
    pattern: str
    holding_period_years: float
    flip_count: int


class ValidationResponse(BaseModel):
    is_valid: bool
    deviation_ratio: float
    historical_projected_value: Optional[float] = None
    market_trend: str
    warnings: list[str]
    appreciation_rate: float
    sale_pattern: SalePatternOut


class CacheClearResponse(BaseModel):
    removed: int


class CacheInvalidateResponse(BaseModel):
    key: str
    removed: bool


class CacheStatsResponse(BaseModel):
    key: str
    exists: bool
    data_type: Optional[str] = None
    age_minutes: Optional[int] = None
    age_hours: Optional[int] = None
    max_age_hours: Optional[int] = None
    freshness: Optional[str] = None
    error: Optional[str] = None
