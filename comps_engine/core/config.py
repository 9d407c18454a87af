import os
from pydantic import BaseModel


def _threshold(env_name: str, limit: int, ratio: float) -> int:
    raw = os.getenv(env_name)
    if raw:
        return int(raw)
    return int(limit * ratio)


_RATIO = float(os.getenv("QUOTA_THRESHOLD_RATIO", "0.9"))
_USRE_LIMIT = int(os.getenv("US_REAL_ESTATE_MONTHLY_LIMIT", "300"))
_ZILLOW_LIMIT = int(os.getenv("ZILLOW_MONTHLY_LIMIT", "100"))
_GEMINI_LIMIT = int(os.getenv("GEMINI_DAILY_LIMIT", "1500"))

_DAY = 24 * 60 * 60


class Settings(BaseModel):
    # Basic
    ENV: str = os.getenv("ENV", "dev")

    # Data providers (mock | http), one flag per waterfall tier
    USRE_PROVIDER: str = os.getenv("USRE_PROVIDER", "mock")
    ZILLOW_PROVIDER: str = os.getenv("ZILLOW_PROVIDER", "mock")
    GEMINI_PROVIDER: str = os.getenv("GEMINI_PROVIDER", "mock")
    BRIDGE_PROVIDER: str = os.getenv("BRIDGE_PROVIDER", "mock")

    # Credentials and endpoints
    RAPIDAPI_KEY: str | None = os.getenv("RAPIDAPI_KEY")
    USRE_BASE_URL: str = os.getenv("USRE_BASE_URL", "https://us-real-estate.p.rapidapi.com")
    ZILLOW_BASE_URL: str = os.getenv("ZILLOW_BASE_URL", "https://zillow-com1.p.rapidapi.com")
    GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    BRIDGE_API_KEY: str | None = os.getenv("BRIDGE_API_KEY")
    BRIDGE_BASE_URL: str | None = os.getenv("BRIDGE_BASE_URL")

    # Quotas (threshold is the soft cap checked before each call)
    QUOTA_THRESHOLD_RATIO: float = _RATIO
    US_REAL_ESTATE_MONTHLY_LIMIT: int = _USRE_LIMIT
    US_REAL_ESTATE_THRESHOLD: int = _threshold("US_REAL_ESTATE_THRESHOLD", _USRE_LIMIT, _RATIO)
    ZILLOW_MONTHLY_LIMIT: int = _ZILLOW_LIMIT
    ZILLOW_THRESHOLD: int = _threshold("ZILLOW_THRESHOLD", _ZILLOW_LIMIT, _RATIO)
    GEMINI_DAILY_LIMIT: int = _GEMINI_LIMIT
    GEMINI_THRESHOLD: int = int(os.getenv("GEMINI_THRESHOLD", "1400"))

    # Cache TTLs per data type
    CACHE_TTL_PROPERTY_SECONDS: int = int(os.getenv("CACHE_TTL_PROPERTY_SECONDS", str(30 * _DAY)))
    CACHE_TTL_LOCATION_SECONDS: int = int(os.getenv("CACHE_TTL_LOCATION_SECONDS", str(30 * _DAY)))
    CACHE_TTL_COMPS_SECONDS: int = int(os.getenv("CACHE_TTL_COMPS_SECONDS", str(7 * _DAY)))
    CACHE_TTL_ESTIMATES_SECONDS: int = int(os.getenv("CACHE_TTL_ESTIMATES_SECONDS", str(7 * _DAY)))
    CACHE_TTL_RATES_SECONDS: int = int(os.getenv("CACHE_TTL_RATES_SECONDS", str(_DAY)))
    CACHE_TTL_DEFAULT_SECONDS: int = int(os.getenv("CACHE_TTL_DEFAULT_SECONDS", str(7 * _DAY)))

    # Retry / timeouts
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY_MS: int = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
    TIER_TIMEOUT_SECONDS: float = float(os.getenv("TIER_TIMEOUT_SECONDS", "45"))
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

    # Stores
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    LOCAL_STORE_MAXSIZE: int = int(os.getenv("LOCAL_STORE_MAXSIZE", "65536"))

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

settings = Settings()
