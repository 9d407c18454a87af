import hashlib
from datetime import datetime, timedelta, timezone

def normalize_address(addr: str) -> str:
    """
    Minimal normalization so cache keys & seeds are stable:
    - trim whitespace
    - lowercase
    - collapse multiple spaces
    """
    return " ".join(addr.strip().lower().split())

def utcnow() -> datetime:
    """Wall clock used by the ledger and the cache unless a test injects its own."""
    return datetime.now(timezone.utc)

def period_key(period: str, now: datetime) -> str:
    """
    Quota bucket for a point in time: "2025-11" for monthly quotas,
    "2025-11-17" for daily ones (anything else is treated as daily).
    """
    if period == "month":
        return now.strftime("%Y-%m")
    return now.strftime("%Y-%m-%d")

def period_reset(period: str, now: datetime) -> datetime:
    """Start of the next quota bucket."""
    if period == "month":
        if now.month == 12:
            return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)

def fnv1a_32(s: str) -> int:
    """Deterministic, fast hash for seed generation."""
    h = 0x811c9dc5
    for c in s.encode("utf-8"):
        h ^= c
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h

def seeded_rand(seed: int, n: int = 1) -> list[float]:
    """
    Stateless pseudo-random generator (Mulberry32-like) so
    same seed → same outputs without storing PRNG state.
    """
    out = []
    t = (seed + 0x6D2B79F5) & 0xFFFFFFFF
    for _ in range(n):
        t = (t ^ (t >> 15)) * (t | 1) & 0xFFFFFFFF
        t ^= t + ((t ^ (t >> 7)) * (t | 61) & 0xFFFFFFFF)
        r = ((t ^ (t >> 14)) & 0xFFFFFFFF) / 4294967296.0
        out.append(r)
    return out

def weak_etag(payload_bytes: bytes) -> str:
    """Weak ETag for client-side conditional requests."""
    h = hashlib.sha256(payload_bytes).hexdigest()[:24]
    return f'W/"{h}"'
