import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional

from ..data.base import HistorySource, MarketSnapshot, PricePoint, PropertyReference, ValueChange

logger = logging.getLogger(__name__)

MAX_DEVIATION = 0.15
MEDIAN_MULTIPLE = 1.5
FLIP_SALES = 2            # more than this many short-hold sales is worth a warning
SHARP_DECLINE_PCT = -5.0
_YEAR_DAYS = 365.25


class MarketTrend(str, Enum):
    HOT = "hot"
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class SalePattern:
    pattern: str = "unknown"        # flip | medium-term | long-term | unknown
    holding_period_years: float = 0.0
    flip_count: int = 0

    def to_dict(self) -> dict:
        return {"pattern": self.pattern,
                "holding_period_years": round(self.holding_period_years, 2),
                "flip_count": self.flip_count}


@dataclass
class HistoricalValidationResult:
    is_valid: bool
    deviation_ratio: float = 0.0
    historical_projected_value: Optional[float] = None
    market_trend: MarketTrend = MarketTrend.STABLE
    warnings: List[str] = field(default_factory=list)
    appreciation_rate: float = 0.0
    sale_pattern: SalePattern = field(default_factory=SalePattern)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "deviation_ratio": round(self.deviation_ratio, 4),
            "historical_projected_value": (round(self.historical_projected_value, 2)
                                           if self.historical_projected_value is not None else None),
            "market_trend": self.market_trend.value,
            "warnings": list(self.warnings),
            "appreciation_rate": round(self.appreciation_rate, 4),
            "sale_pattern": self.sale_pattern.to_dict(),
        }


def _years_between(start: date, end: date) -> float:
    return (end - start).days / _YEAR_DAYS


def compound_annual_growth(history: List[PricePoint]) -> float:
    """CAGR between the earliest and the latest recorded sale; 0 when undefined."""
    points = sorted((p for p in history if p.price and p.price > 0), key=lambda p: p.date)
    if len(points) < 2:
        return 0.0
    first, last = points[0], points[-1]
    years = _years_between(first.date, last.date)
    if years <= 0:
        return 0.0
    return (last.price / first.price) ** (1 / years) - 1


def identify_sale_pattern(history: List[PricePoint]) -> SalePattern:
    points = sorted(history, key=lambda p: p.date)
    if len(points) < 2:
        return SalePattern()
    resales = len(points) - 1
    holding = _years_between(points[0].date, points[-1].date) / resales
    if holding < 2:
        pattern = "flip"
    elif holding < 7:
        pattern = "medium-term"
    else:
        pattern = "long-term"
    return SalePattern(pattern, holding, resales)


def classify_trend(one_year_change_pct: Optional[float]) -> MarketTrend:
    if one_year_change_pct is None:
        return MarketTrend.STABLE
    if one_year_change_pct > 5:
        return MarketTrend.HOT
    if one_year_change_pct > 2:
        return MarketTrend.RISING
    if one_year_change_pct < -2:
        return MarketTrend.DECLINING
    return MarketTrend.STABLE


class HistoricalValidator:
    """
    Sanity checks an ARV against the property's own sale history and its
    local market. Purely advisory: every outcome is a result object, and any
    failure while gathering history becomes a warning on a valid result.
    """

    def __init__(self, source: HistorySource):
        self.source = source

    async def _gather(self, ref: PropertyReference):
        async def none():
            return None

        return await asyncio.gather(
            self.source.price_history(ref.zpid) if ref.zpid else none(),
            self.source.local_market(ref.location) if ref.location else none(),
            self.source.value_change(ref.zpid) if ref.zpid else none(),
        )

    async def validate(self, value: float, ref: PropertyReference) -> HistoricalValidationResult:
        if not value or value <= 0:
            logger.warning("Invalid ARV provided for validation")
            return HistoricalValidationResult(is_valid=False, warnings=["Invalid ARV value"])

        try:
            history, market, change = await self._gather(ref)
            return self._assess(value, history or [], market, change)
        except Exception as exc:
            logger.error(f"Failed to validate ARV: {exc}")
            return HistoricalValidationResult(is_valid=True, warnings=[f"Validation error: {exc}"])

    def _assess(self, value: float, history: List[PricePoint], market: Optional[MarketSnapshot],
                change: Optional[ValueChange]) -> HistoricalValidationResult:
        result = HistoricalValidationResult(is_valid=True)
        warnings = result.warnings

        points = sorted((p for p in history if p.price and p.price > 0), key=lambda p: p.date)
        if points:
            latest = points[-1]
            result.appreciation_rate = compound_annual_growth(points)
            result.sale_pattern = identify_sale_pattern(points)
            # One year ahead of the last recorded sale at the property's own growth rate
            projected = latest.price * (1 + result.appreciation_rate)
            result.historical_projected_value = projected
            result.deviation_ratio = (value - projected) / projected
            logger.info(f"Historical projection {projected:,.0f} "
                        f"({result.appreciation_rate * 100:.2f}% CAGR), deviation "
                        f"{result.deviation_ratio * 100:.2f}%")

            if abs(result.deviation_ratio) > MAX_DEVIATION:
                direction = "higher" if result.deviation_ratio > 0 else "lower"
                warnings.append(f"ARV is {abs(result.deviation_ratio) * 100:.1f}% {direction} "
                                f"than historical projection")

            pattern = result.sale_pattern
            if pattern.pattern == "flip" and pattern.flip_count > FLIP_SALES:
                warnings.append(f"Property has been flipped {pattern.flip_count} times "
                                f"(avg holding: {pattern.holding_period_years:.1f} years)")

        if market is not None:
            result.market_trend = classify_trend(market.value_change)
            median = market.median_home_value
            if median and value > median * MEDIAN_MULTIPLE:
                warnings.append(f"ARV is {(value / median - 1) * 100:.1f}% above local median "
                                f"(${median:,.0f})")
            if result.market_trend is MarketTrend.DECLINING:
                warnings.append(f"Market is declining ({market.value_change}% change)")

        if change is not None and change.one_year is not None and change.one_year < SHARP_DECLINE_PCT:
            warnings.append(f"Property value declined {abs(change.one_year):.1f}% in past year")

        result.is_valid = not warnings or abs(result.deviation_ratio) <= MAX_DEVIATION
        if warnings:
            logger.warning(f"ARV validation raised {len(warnings)} warning(s)")
        return result
