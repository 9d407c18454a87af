import logging
from dataclasses import dataclass, field
from datetime import date
from math import sqrt
from typing import Iterable, List, Optional

from ..data.base import Comparable, Condition, SubjectProfile

logger = logging.getLogger(__name__)

# Base weights before renormalization over the sources actually present
BASE_WEIGHTS = {
    "comps": 0.50,
    "zillow": 0.25,
    "us_real_estate": 0.25,
}

MAX_RENOVATION_PREMIUM = 1.25
UNREMODELED_PREMIUM = 1.25
FALLBACK_PREMIUM = 1.20
RECENT_YEARS = 2
MIN_COMPS = 3


@dataclass
class EstimateBundle:
    comps_estimate: Optional[float] = None
    automated_estimate_a: Optional[float] = None   # Zillow Zestimate
    automated_estimate_b: Optional[float] = None   # US Real Estate home value

    def present(self) -> List[tuple]:
        candidates = [
            ("comps", self.comps_estimate),
            ("zillow", self.automated_estimate_a),
            ("us_real_estate", self.automated_estimate_b),
        ]
        return [(name, float(v)) for name, v in candidates if v is not None and v > 0]


@dataclass
class SourceContribution:
    name: str
    value: float
    base_weight: float
    weight: float

    def to_dict(self) -> dict:
        return {"name": self.name, "value": round(self.value, 2),
                "base_weight": self.base_weight, "weight": round(self.weight, 4)}


@dataclass
class AggregatedValuation:
    value: float
    method: str
    sources: List[SourceContribution] = field(default_factory=list)
    confidence: int = 100
    std_dev: float = 0.0

    @property
    def sources_used(self) -> List[str]:
        return [s.name for s in self.sources]

    def to_dict(self) -> dict:
        return {
            "value": round(self.value, 2),
            "method": self.method,
            "sources_used": self.sources_used,
            "sources": [s.to_dict() for s in self.sources],
            "confidence": self.confidence,
            "std_dev": round(self.std_dev),
        }


def confidence_from_spread(values: List[float], weights: List[float], mean: float) -> tuple:
    """
    Weighted standard deviation and a 50..100 confidence score: 100 while the
    coefficient of variation stays at or under 5%, falling linearly to 50 at 20%.
    """
    variance = sum(w * (v - mean) ** 2 for v, w in zip(values, weights))
    std_dev = sqrt(variance)
    cv = std_dev / mean if mean else 0.0
    confidence = 100.0
    if cv > 0.05:
        confidence = max(50.0, 100 - (cv - 0.05) / 0.15 * 50)
    return int(round(confidence)), std_dev


class ValuationAggregator:
    """Blends the comps estimate and the two automated valuations into one ARV."""

    def __init__(self, weights: Optional[dict] = None):
        self.weights = dict(weights or BASE_WEIGHTS)

    def aggregate(self, bundle: EstimateBundle) -> Optional[AggregatedValuation]:
        """
        Weighted average over the sources present, weights renormalized to sum
        to 1. None when no source is present; the caller owns that fallback.
        """
        present = bundle.present()
        if not present:
            return None

        if len(present) == 1:
            name, value = present[0]
            logger.info(f"Final ARV: single source ({name}): {value:,.0f}")
            return AggregatedValuation(
                value=value,
                method=f"Single source: {name} (100%)",
                sources=[SourceContribution(name, value, self.weights[name], 1.0)],
            )

        total = sum(self.weights[name] for name, _ in present)
        sources = [SourceContribution(name, value, self.weights[name], self.weights[name] / total)
                   for name, value in present]
        value = sum(s.value * s.weight for s in sources)
        confidence, std_dev = confidence_from_spread(
            [s.value for s in sources], [s.weight for s in sources], value
        )
        breakdown = " + ".join(f"{s.name} ({s.weight * 100:.0f}%)" for s in sources)
        logger.info(f"Final ARV (multi-source weighted): {value:,.0f} via {breakdown}")
        return AggregatedValuation(
            value=value,
            method=f"Multi-source weighted: {breakdown}",
            sources=sources,
            confidence=confidence,
            std_dev=std_dev,
        )


# ----- Comparable-sales sub-estimate -----

@dataclass
class CompsEstimate:
    value: float
    method: str
    comps_used: int
    remodeled_count: int
    unremodeled_count: int


def _years_ago(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:  # Feb 29
        return today.replace(year=today.year - years, day=28)


def _within(value, target, tolerance) -> bool:
    return value is None or target is None or abs(value - target) <= tolerance


def is_similar(comp: Comparable, subject: SubjectProfile) -> bool:
    """+/-20% living area, beds and baths within one (a missing count never disqualifies)."""
    if subject.square_feet:
        if not comp.square_feet:
            return False
        if abs(comp.square_feet - subject.square_feet) / subject.square_feet > 0.2:
            return False
    return _within(comp.beds, subject.beds, 1) and _within(comp.baths, subject.baths, 1)


def _mean(comps: List[Comparable]) -> float:
    return sum(c.price for c in comps) / len(comps)


def estimate_from_comps(comps: Iterable[Comparable], subject: Optional[SubjectProfile] = None,
                        today: Optional[date] = None) -> Optional[CompsEstimate]:
    """
    ARV implied by comparable sales, walking a ladder of progressively
    weaker evidence:

      1. 3+ remodeled comps: their mean, no premium.
      2. Remodeled and unremodeled comps: unremodeled mean times the
         observed remodeled/unremodeled ratio, capped at 1.25.
      3. 3+ unremodeled comps only: unremodeled mean times 1.25.
      4. Anything else: mean of what is left times 1.20.

    Only sales from the last two years count. The similarity filter is
    dropped when it would leave fewer than three comps.
    """
    subject = subject or SubjectProfile()
    cutoff = _years_ago(today or date.today(), RECENT_YEARS)
    priced = [c for c in comps if c.price and c.price > 0]
    recent = [c for c in priced if c.sale_date and c.sale_date >= cutoff]
    similar = [c for c in recent if is_similar(c, subject)]
    pool = similar if len(similar) >= MIN_COMPS else recent
    logger.info(f"Comps: {len(priced)} priced, {len(recent)} recent, {len(similar)} similar")

    remodeled = [c for c in pool if c.condition is Condition.REMODELED]
    unremodeled = [c for c in pool if c.condition is Condition.UNREMODELED]
    counts = dict(comps_used=len(pool), remodeled_count=len(remodeled),
                  unremodeled_count=len(unremodeled))

    if len(remodeled) >= MIN_COMPS:
        return CompsEstimate(_mean(remodeled),
                             f"{len(remodeled)} remodeled comps average (no premium)", **counts)
    if remodeled and unremodeled:
        avg_unremodeled = _mean(unremodeled)
        premium = min(_mean(remodeled) / avg_unremodeled, MAX_RENOVATION_PREMIUM)
        return CompsEstimate(avg_unremodeled * premium,
                             f"Mixed comps with {(premium - 1) * 100:.1f}% premium (capped at 25%)",
                             **counts)
    if len(unremodeled) >= MIN_COMPS:
        return CompsEstimate(_mean(unremodeled) * UNREMODELED_PREMIUM,
                             f"{len(unremodeled)} unremodeled comps + 25% premium", **counts)
    if pool:
        return CompsEstimate(_mean(pool) * FALLBACK_PREMIUM,
                             f"{len(pool)} mixed comps + 20% premium", **counts)
    return None
