"""
Defensive field extraction for provider payloads.

Provider schemas are treated as untrusted input: every lookup tolerates
missing keys, wrong types and alternate field names, falling back to a
default instead of raising.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional

from .base import Comparable, Condition

_NUMBER_NOISE = re.compile(r"[,$\s]")


def first_present(d: Any, *keys: str, default: Any = None) -> Any:
    """First value under `keys` that is neither missing, None nor an empty string."""
    if not isinstance(d, dict):
        return default
    for key in keys:
        value = d.get(key)
        if value is not None and value != "":
            return value
    return default


def dig(d: Any, *path: str) -> Any:
    """Nested lookup that returns None as soon as a level is missing."""
    current = d
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = _NUMBER_NOISE.sub("", value)
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def to_int(value: Any) -> Optional[int]:
    f = to_float(value)
    return int(round(f)) if f is not None else None


def parse_sale_date(value: Any) -> Optional[date]:
    """
    Accepts ISO dates/timestamps, US style M/D/YYYY strings and epoch
    timestamps in seconds or milliseconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        for fmt in ("%m/%d/%Y", "%m/%d/%y"):
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        if text.isdigit():
            return parse_sale_date(int(text))
    return None


def parse_condition(value: Any) -> Condition:
    text = str(value or "").strip().lower()
    if text in ("remodeled", "renovated", "updated"):
        return Condition.REMODELED
    if text in ("unremodeled", "as-is", "as is", "original"):
        return Condition.UNREMODELED
    return Condition.UNKNOWN


def comparable_from_raw(raw: Any, source: str, quality: int) -> Optional[Comparable]:
    """
    Normalizes a flat comparable record ({address, price, sqft, saleDate, ...})
    as produced by LLM providers and the mock adapters.
    """
    if not isinstance(raw, dict):
        return None
    return Comparable(
        address=str(first_present(raw, "address", "streetAddress", default="Unknown")),
        price=to_float(first_present(raw, "price", "salePrice", "sale_price")) or 0.0,
        square_feet=to_int(first_present(raw, "sqft", "squareFeet", "square_feet", "livingArea")),
        beds=to_float(first_present(raw, "beds", "bedrooms")),
        baths=to_float(first_present(raw, "baths", "bathrooms")),
        sale_date=parse_sale_date(first_present(raw, "saleDate", "sale_date", "dateSold")),
        distance_miles=to_float(first_present(raw, "distance", "distanceMiles", "distance_miles")),
        condition=parse_condition(raw.get("condition")),
        source_provider=source,
        quality_score=quality,
        external_link=first_present(raw, "link", "url"),
    )


def keep_priced(comps: Iterable[Optional[Comparable]]) -> List[Comparable]:
    """Drops unparseable records and comparables without a positive price."""
    return [c for c in comps if c is not None and c.price and c.price > 0]
