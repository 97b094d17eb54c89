"""
Offer history tracking for a single negotiation.

WHAT: Ordered ledger of proposals and counter-offers with their ids
WHY: Counter-offers must reference issued ids; heuristics need price history
HOW: In-memory list of OfferHistoryEntry owned by the state machine
"""

from dataclasses import dataclass, field
from datetime import datetime

from ..models.negotiation import AgentSender, utc_now
from ..models.offer import LineItem, Offer


@dataclass
class OfferHistoryEntry:
    """One proposal or counter-offer."""
    offer_id: str
    round_number: int
    source: AgentSender
    offer: Offer
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class NegotiationStats:
    """Summary statistics for a negotiation's offers."""
    total_offers: int
    min_price: float
    max_price: float
    average_price: float
    price_improvement_percent: float  # supplier first -> last


class OfferTracker:
    """Tracks offer history and provides price analysis."""

    def __init__(self, supplier_id: int):
        self.supplier_id = supplier_id
        self._history: list[OfferHistoryEntry] = []

    def __len__(self) -> int:
        return len(self._history)

    def add_offer(self, entry: OfferHistoryEntry) -> None:
        self._history.append(entry)

    def extended(self, entry: OfferHistoryEntry) -> "OfferTracker":
        """Copy of this tracker with one more entry; the original is untouched."""
        tracker = OfferTracker(self.supplier_id)
        tracker._history = [*self._history, entry]
        return tracker

    @property
    def history(self) -> list[OfferHistoryEntry]:
        return list(self._history)

    @property
    def offer_ids(self) -> frozenset[str]:
        return frozenset(e.offer_id for e in self._history)

    def first_offer(self) -> OfferHistoryEntry | None:
        return self._history[0] if self._history else None

    def latest_offer(self) -> OfferHistoryEntry | None:
        return self._history[-1] if self._history else None

    def latest_by_source(self, source: AgentSender) -> OfferHistoryEntry | None:
        for entry in reversed(self._history):
            if entry.source == source:
                return entry
        return None

    def latest_products(self) -> list[LineItem] | None:
        """Most recent line-item breakdown any party submitted."""
        for entry in reversed(self._history):
            if entry.offer.products:
                return entry.offer.products
        return None

    def price_progression(self, source: AgentSender | None = None) -> list[float]:
        return [
            e.offer.unit_price for e in self._history
            if source is None or e.source == source
        ]

    def is_stalled(self, window: int, epsilon: float, source: AgentSender = "supplier") -> bool:
        """
        True when one party's last `window` offers each moved less than epsilon.

        Only that party's own successive prices are compared; with fewer than
        `window` of them the party has not had the chance to stall yet.
        """
        if window < 2:
            return False
        prices = self.price_progression(source)
        if len(prices) < window:
            return False

        recent = prices[-window:]
        return all(abs(b - a) < epsilon for a, b in zip(recent, recent[1:]))

    def has_moved(self, window: int, epsilon: float, source: AgentSender) -> bool:
        """True when any step among the party's last `window` offers reached epsilon."""
        recent = self.price_progression(source)[-window:]
        return any(abs(b - a) >= epsilon for a, b in zip(recent, recent[1:]))

    def price_gap_ratio(self, reference_price: float) -> float | None:
        """Distance of the latest price from a reference, as a fraction of it."""
        latest = self.latest_offer()
        if latest is None or reference_price <= 0:
            return None
        return abs(latest.offer.unit_price - reference_price) / reference_price

    def stats(self) -> NegotiationStats:
        prices = self.price_progression()
        supplier_prices = [e.offer.unit_price for e in self._history if e.source == "supplier"]

        improvement = 0.0
        if len(supplier_prices) >= 2:
            first, last = supplier_prices[0], supplier_prices[-1]
            improvement = (first - last) / first * 100

        return NegotiationStats(
            total_offers=len(prices),
            min_price=min(prices) if prices else 0.0,
            max_price=max(prices) if prices else 0.0,
            average_price=sum(prices) / len(prices) if prices else 0.0,
            price_improvement_percent=improvement,
        )
