"""
Multi-criteria supplier scoring.

WHAT: Normalizes quality, cost, lead time and payment terms to 0-100
WHY: The buyer's priorities weight these four criteria to pick a winner
HOW: Pure functions over final offers; thresholds live in ScoringConfig
"""

from decimal import Decimal, ROUND_HALF_UP

from pydantic import BaseModel, Field

from ..core.config import settings
from ..models.negotiation import DecisionPriorities, ScoreBreakdown
from ..models.offer import Offer

# Fixed supplier quality ratings on a 5-point scale
DEFAULT_QUALITY_RATINGS: dict[int, float] = {1: 4.0, 2: 4.7, 3: 4.0, 4: 4.3}

# Canonical upfront-heavy splits score low; balanced splits score high
DEFAULT_PAYMENT_TERMS_TABLE: dict[str, int] = {
    "33/33/33": 100,
    "30/30/40": 90,
    "50/50": 80,
    "30/70": 60,
    "100": 0,
}

UNPARSEABLE_PAYMENT_TERMS_SCORE = 50


class ScoringConfig(BaseModel):
    """Normalization bounds and lookup tables for scoring."""

    quality_worst: float = 3.0
    quality_best: float = 5.0
    lead_time_best_days: int = Field(default=10, gt=0)
    lead_time_worst_days: int = Field(default=60, gt=0)
    quality_ratings: dict[int, float] = Field(
        default_factory=lambda: dict(DEFAULT_QUALITY_RATINGS)
    )
    payment_terms_table: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_PAYMENT_TERMS_TABLE)
    )

    @classmethod
    def from_settings(cls) -> "ScoringConfig":
        return cls(
            quality_worst=settings.QUALITY_WORST,
            quality_best=settings.QUALITY_BEST,
            lead_time_best_days=settings.LEAD_TIME_BEST_DAYS,
            lead_time_worst_days=settings.LEAD_TIME_WORST_DAYS,
        )


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (Python's round() is banker's)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _clamp_score(value: float) -> int:
    return round_half_up(max(0.0, min(100.0, value)))


def _normalize_terms(terms: str) -> str:
    return "/".join(part.strip().rstrip("%").strip() for part in terms.split("/"))


def score_quality(supplier_id: int, config: ScoringConfig) -> int:
    rating = config.quality_ratings.get(supplier_id, config.quality_worst)
    span = config.quality_best - config.quality_worst
    if span <= 0:
        return 100
    return _clamp_score((rating - config.quality_worst) / span * 100)


def score_cost(price: float, all_prices: list[float]) -> int:
    """
    Relative price score across completed offers.

    Cheapest offer gets 100, most expensive 0; all equal -> 100 for everyone.
    """
    low, high = min(all_prices), max(all_prices)
    if high == low:
        return 100
    return _clamp_score((high - price) / (high - low) * 100)


def score_lead_time(lead_time_days: int, config: ScoringConfig) -> int:
    span = config.lead_time_worst_days - config.lead_time_best_days
    if span <= 0:
        return 100 if lead_time_days <= config.lead_time_best_days else 0
    return _clamp_score((config.lead_time_worst_days - lead_time_days) / span * 100)


def score_payment_terms(terms: str, config: ScoringConfig) -> int:
    """
    Score a payment split.

    Known splits come from the table; otherwise 100 minus the upfront
    (leading) percentage; unparseable terms get a neutral 50.
    """
    normalized = _normalize_terms(terms or "")
    if normalized in config.payment_terms_table:
        return config.payment_terms_table[normalized]

    leading = normalized.split("/")[0] if normalized else ""
    if not leading.isdigit():
        return UNPARSEABLE_PAYMENT_TERMS_SCORE

    upfront = max(0, min(100, int(leading)))
    return 100 - upfront


def weighted_total(scores: dict[str, int], priorities: DecisionPriorities) -> float:
    """Sum(score * weight) / 100, rounded half-up to 2 decimals."""
    raw = (
        Decimal(scores["quality"]) * Decimal(str(priorities.quality))
        + Decimal(scores["cost"]) * Decimal(str(priorities.cost))
        + Decimal(scores["lead_time"]) * Decimal(str(priorities.lead_time))
        + Decimal(scores["payment_terms"]) * Decimal(str(priorities.payment_terms))
    ) / Decimal(100)
    return float(raw.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def score_offer(
    supplier_id: int,
    offer: Offer,
    all_prices: list[float],
    priorities: DecisionPriorities,
    config: ScoringConfig,
) -> ScoreBreakdown:
    """Full breakdown for one completed negotiation's final offer."""
    scores = {
        "quality": score_quality(supplier_id, config),
        "cost": score_cost(offer.unit_price, all_prices),
        "lead_time": score_lead_time(offer.lead_time_days, config),
        "payment_terms": score_payment_terms(offer.payment_terms, config),
    }
    return ScoreBreakdown(
        quality_score=scores["quality"],
        cost_score=scores["cost"],
        lead_time_score=scores["lead_time"],
        payment_terms_score=scores["payment_terms"],
        total_score=weighted_total(scores, priorities),
    )
