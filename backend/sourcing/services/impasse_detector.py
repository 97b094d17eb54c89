"""
Supervisory impasse detection.

WHAT: Round/price heuristics that force an unproductive negotiation to impasse
WHY: An agent can keep countering forever; the engine must still terminate
HOW: Three checks in fixed order (max rounds, stagnation, price gap),
     first match wins. Thresholds come from NegotiationConfig.
"""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

from ..core.config import settings
from .offer_tracker import OfferTracker

ImpasseReason = Literal["max_rounds", "price_stagnation", "price_gap"]


class NegotiationConfig(BaseModel):
    """Termination thresholds for the negotiation state machine."""

    max_rounds: int = Field(default=8, ge=1)
    stagnation_window: int = Field(default=3, ge=2)
    stagnation_epsilon_percent: float = Field(default=1.0, ge=0.0)
    price_gap_threshold_percent: float = Field(default=40.0, ge=0.0)

    @classmethod
    def from_settings(cls) -> "NegotiationConfig":
        return cls(
            max_rounds=settings.MAX_NEGOTIATION_ROUNDS,
            stagnation_window=settings.STAGNATION_WINDOW,
            stagnation_epsilon_percent=settings.STAGNATION_EPSILON_PERCENT,
            price_gap_threshold_percent=settings.PRICE_GAP_THRESHOLD_PERCENT,
        )


@dataclass
class ImpasseResult:
    """Outcome of a supervisory check."""
    is_impasse: bool
    reason: ImpasseReason | None = None
    details: str = ""


NO_IMPASSE = ImpasseResult(is_impasse=False)


class ImpasseDetector:
    """Evaluates the supervisory termination heuristics."""

    def __init__(self, config: NegotiationConfig | None = None):
        self.config = config or NegotiationConfig.from_settings()

    def check(
        self,
        round_count: int,
        tracker: OfferTracker,
        target_price: float | None = None,
    ) -> ImpasseResult:
        """
        Run the heuristics against the post-turn state.

        Args:
            round_count: Rounds completed so far (after this turn's increment)
            tracker: Offer history of the negotiation
            target_price: Buyer's target unit price, if the quote has one

        Returns:
            ImpasseResult for the first heuristic that fires, else NO_IMPASSE
        """
        cfg = self.config

        if round_count >= cfg.max_rounds:
            return ImpasseResult(
                True, "max_rounds",
                f"Maximum {cfg.max_rounds} rounds reached without agreement."
            )

        # Deadlock: the supplier holds its price and the brand is not conceding either
        first = tracker.first_offer()
        if first is not None:
            window = cfg.stagnation_window
            epsilon = first.offer.unit_price * cfg.stagnation_epsilon_percent / 100
            if (
                tracker.is_stalled(window, epsilon, "supplier")
                and not tracker.has_moved(window, epsilon, "brand")
            ):
                return ImpasseResult(
                    True, "price_stagnation",
                    f"Supplier price moved less than {epsilon:.2f} across its last "
                    f"{window} offers and the brand has not moved either."
                )

        if round_count >= 1:
            reference = target_price
            if reference is None:
                brand_offer = tracker.latest_by_source("brand")
                reference = brand_offer.offer.unit_price if brand_offer else None
            if reference is not None:
                gap = tracker.price_gap_ratio(reference)
                if gap is not None and gap * 100 > cfg.price_gap_threshold_percent:
                    return ImpasseResult(
                        True, "price_gap",
                        f"Latest price is {gap * 100:.1f}% away from the buyer reference "
                        f"${reference:.2f} (limit {cfg.price_gap_threshold_percent:.0f}%)."
                    )

        return NO_IMPASSE
