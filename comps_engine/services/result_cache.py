import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.config import Settings, settings as default_settings
from ..core.errors import StoreUnavailableError
from ..core.metrics import CACHE_LOOKUPS
from ..core.store import KeyValueStore
from ..core.utils import utcnow
from ..data.base import PropertyIdentity

logger = logging.getLogger(__name__)

COMPS_PREFIX = "comps_"
ESTIMATES_PREFIX = "estimates_"


class DataType(str, Enum):
    COMPS = "comps"
    PROPERTY = "property"
    LOCATION = "location"
    ESTIMATES = "estimates"
    RATES = "rates"


def ttl_table(cfg: Settings = default_settings) -> Dict[str, int]:
    """Max age in seconds per data type."""
    return {
        DataType.PROPERTY.value: cfg.CACHE_TTL_PROPERTY_SECONDS,
        DataType.LOCATION.value: cfg.CACHE_TTL_LOCATION_SECONDS,
        DataType.COMPS.value: cfg.CACHE_TTL_COMPS_SECONDS,
        DataType.ESTIMATES.value: cfg.CACHE_TTL_ESTIMATES_SECONDS,
        DataType.RATES.value: cfg.CACHE_TTL_RATES_SECONDS,
    }


def comps_cache_key(identity: PropertyIdentity) -> str:
    return f"{COMPS_PREFIX}{identity.normalized()}"


def estimates_cache_key(identity: PropertyIdentity, provider: str) -> str:
    return f"{ESTIMATES_PREFIX}{identity.normalized()}_{provider}"


def _family(key: str) -> str:
    return key.split("_", 1)[0] if "_" in key else "other"


class ResultCache:
    """
    TTL cache on top of a plain key/value store. Each entry remembers its
    data type and write time; freshness is checked on every read and expired
    entries are deleted right there (no background sweep).
    """

    def __init__(self, store: KeyValueStore, ttls: Optional[Dict[str, int]] = None,
                 default_ttl: Optional[int] = None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.ttls = ttls if ttls is not None else ttl_table()
        self.default_ttl = default_ttl if default_ttl is not None else default_settings.CACHE_TTL_DEFAULT_SECONDS
        self.clock = clock

    def max_age(self, data_type: Optional[str]) -> int:
        return self.ttls.get(data_type or "", self.default_ttl)

    def _now(self) -> float:
        return self.clock().timestamp()

    def _read(self, key: str) -> Optional[dict]:
        """Decoded envelope, None when absent. Raises ValueError on a malformed one."""
        raw = self.store.get(key)
        if not raw:
            return None
        entry = json.loads(raw)
        if not isinstance(entry, dict) or "stored_at" not in entry:
            raise ValueError("not a cache envelope")
        try:
            entry["stored_at"] = float(entry["stored_at"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"bad stored_at {entry['stored_at']!r}") from exc
        return entry

    def get(self, key: str) -> Any:
        """Payload for `key`, or None when absent, expired or unreadable."""
        family = _family(key)
        try:
            entry = self._read(key)
        except StoreUnavailableError as exc:
            logger.error(f"Error reading cache: {exc}", extra={"cache_key": key})
            CACHE_LOOKUPS.labels(family=family, result="miss").inc()
            return None
        except ValueError as exc:
            logger.error(f"Discarding corrupt cache entry: {exc}", extra={"cache_key": key})
            self.invalidate(key)
            CACHE_LOOKUPS.labels(family=family, result="miss").inc()
            return None

        if entry is None:
            logger.info("Cache miss", extra={"cache_key": key})
            CACHE_LOOKUPS.labels(family=family, result="miss").inc()
            return None

        age = self._now() - entry["stored_at"]
        max_age = self.max_age(entry.get("data_type"))
        if age > max_age:
            logger.warning(
                f"Cache expired (age: {round(age / 3600)}h, max: {round(max_age / 3600)}h, "
                f"type: {entry.get('data_type') or 'unknown'})",
                extra={"cache_key": key},
            )
            self.invalidate(key)
            CACHE_LOOKUPS.labels(family=family, result="expired").inc()
            return None

        logger.info(f"Cache hit (age: {round(age / 60)}m, type: {entry.get('data_type')})",
                    extra={"cache_key": key})
        CACHE_LOOKUPS.labels(family=family, result="hit").inc()
        return entry.get("payload")

    def set(self, key: str, payload: Any, data_type: DataType | str = DataType.COMPS) -> bool:
        data_type = data_type.value if isinstance(data_type, DataType) else data_type
        entry = {"payload": payload, "data_type": data_type, "stored_at": self._now()}
        try:
            self.store.set(key, json.dumps(entry, separators=(",", ":")))
        except (StoreUnavailableError, TypeError, ValueError) as exc:
            logger.error(f"Error writing cache: {exc}", extra={"cache_key": key})
            return False
        logger.info(f"Cache set ({data_type}, {round(self.max_age(data_type) / 86400)}d TTL)",
                    extra={"cache_key": key})
        return True

    def invalidate(self, key: str) -> bool:
        try:
            return self.store.delete(key)
        except StoreUnavailableError as exc:
            logger.error(f"Error clearing cache: {exc}", extra={"cache_key": key})
            return False

    def clear_all_with_prefix(self, prefix: str) -> int:
        """Drops every entry whose key starts with `prefix`; returns how many went."""
        removed = self.store.delete_prefix(prefix)
        logger.info(f"Cleared {removed} cache entries", extra={"cache_key": f"{prefix}*"})
        return removed

    def stats(self, key: str) -> dict:
        """Age and freshness of an entry without touching it."""
        try:
            entry = self._read(key)
        except (StoreUnavailableError, ValueError) as exc:
            return {"exists": False, "error": str(exc)}
        if entry is None:
            return {"exists": False}

        age = self._now() - entry["stored_at"]
        max_age = self.max_age(entry.get("data_type"))
        if age <= max_age * 0.5:
            freshness = "fresh"
        elif age <= max_age:
            freshness = "stale"
        else:
            freshness = "expired"
        return {
            "exists": True,
            "data_type": entry.get("data_type"),
            "age_minutes": round(age / 60),
            "age_hours": round(age / 3600),
            "max_age_hours": round(max_age / 3600),
            "freshness": freshness,
        }
