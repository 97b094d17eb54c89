"""
Decision engine for selecting the winning supplier.

WHAT: Scores every negotiation of a quote and records one Decision
WHY: The buyer's weighted priorities, not just price, pick the winner
HOW: Score completed final offers (scoring.py), fill zero rows for the
     remaining slots 1-4, pick the strictly highest total in supplier
     order, write the Decision once through the DecisionStore
"""

from dataclasses import dataclass

from ..models.negotiation import (
    SUPPLIER_SLOTS,
    Decision,
    DecisionPriorities,
    NegotiationState,
    ScoreBreakdown,
)
from ..utils.exceptions import NoCompletedNegotiationsException
from ..utils.logger import get_logger
from .gateway import DecisionStore
from .scoring import ScoringConfig, score_offer

logger = get_logger(__name__)


def score_key(supplier_id: int) -> str:
    return f"supplier{supplier_id}"


@dataclass
class Evaluation:
    """Scores for every slot plus the selected supplier."""
    scores: dict[str, ScoreBreakdown]
    winner_id: int
    completed: list[NegotiationState]


def all_resolved(negotiations: list[NegotiationState]) -> bool:
    """True when the quote has negotiations and none is still active."""
    return bool(negotiations) and all(n.is_terminal for n in negotiations)


def evaluate_negotiations(
    quote_id: str,
    negotiations: list[NegotiationState],
    priorities: DecisionPriorities,
    config: ScoringConfig,
) -> Evaluation:
    """
    Score negotiations and choose a winner (pure).

    Only completed negotiations with a final offer are scored; every other
    slot 1-4 gets an all-zero row. Ties keep the lowest supplier id.

    Raises:
        NoCompletedNegotiationsException: Nothing reached completed
    """
    completed = sorted(
        (n for n in negotiations if n.status == "completed" and n.final_offer is not None),
        key=lambda n: n.supplier_id,
    )
    for n in negotiations:
        if n.status == "completed" and n.final_offer is None:
            logger.warning(f"Negotiation {n.negotiation_id} is completed without a final offer; scoring as zero")

    if not completed:
        raise NoCompletedNegotiationsException(quote_id)

    prices = [n.final_offer.unit_price for n in completed]
    scores = {score_key(slot): ScoreBreakdown() for slot in SUPPLIER_SLOTS}

    winner: NegotiationState | None = None
    for n in completed:
        breakdown = score_offer(n.supplier_id, n.final_offer, prices, priorities, config)
        scores[score_key(n.supplier_id)] = breakdown
        if winner is None or breakdown.total_score > scores[score_key(winner.supplier_id)].total_score:
            winner = n

    return Evaluation(scores=scores, winner_id=winner.supplier_id, completed=completed)


def build_reasoning(evaluation: Evaluation, priorities: DecisionPriorities) -> str:
    """Human-readable summary: weights, winning terms, sub-scores, runner-up."""
    winner = next(n for n in evaluation.completed if n.supplier_id == evaluation.winner_id)
    offer = winner.final_offer
    s = evaluation.scores[score_key(winner.supplier_id)]

    lines = [
        f"Supplier {winner.supplier_id} selected with a weighted score of {s.total_score:.2f}/100.",
        "",
        f"Priority weights: quality {priorities.quality:g}%, cost {priorities.cost:g}%, "
        f"lead time {priorities.lead_time:g}%, payment terms {priorities.payment_terms:g}%.",
        "",
        f"Winning offer: ${offer.unit_price:.2f}/unit, {offer.lead_time_days} days lead time, "
        f"payment terms {offer.payment_terms}.",
        f"Scores: quality {s.quality_score}, cost {s.cost_score}, "
        f"lead time {s.lead_time_score}, payment terms {s.payment_terms_score}.",
    ]

    others = [n for n in evaluation.completed if n.supplier_id != winner.supplier_id]
    if others:
        runner_up = max(
            others, key=lambda n: evaluation.scores[score_key(n.supplier_id)].total_score
        )
        r = evaluation.scores[score_key(runner_up.supplier_id)]
        lines.append(
            f"Runner-up: supplier {runner_up.supplier_id} at {r.total_score:.2f} "
            f"({s.total_score - r.total_score:.2f} points behind, "
            f"${runner_up.final_offer.unit_price:.2f}/unit, "
            f"{runner_up.final_offer.lead_time_days} days)."
        )
    else:
        lines.append("No other supplier reached an agreement.")

    return "\n".join(lines)


class DecisionEngine:
    """
    Runs scoring for a quote once all its negotiations are resolved.

    WHAT: evaluate() reads negotiations and priorities, writes a Decision
    WHY: Keep store access out of the pure scoring functions
    HOW: DecisionStore protocol; a second Decision is rejected by the store
    """

    def __init__(self, store: DecisionStore, config: ScoringConfig | None = None):
        self.store = store
        self.config = config or ScoringConfig.from_settings()

    def evaluate(self, quote_id: str) -> Decision:
        """
        Score and persist the Decision for a quote.

        Raises:
            NoCompletedNegotiationsException: No negotiation reached completed
            ConflictException: A Decision already exists for the quote
        """
        negotiations = self.store.list_negotiations(quote_id)
        priorities = self.store.get_decision_priorities(quote_id)

        evaluation = evaluate_negotiations(quote_id, negotiations, priorities, self.config)
        reasoning = build_reasoning(evaluation, priorities)

        decision = self.store.create_decision(
            quote_id=quote_id,
            selected_supplier_id=evaluation.winner_id,
            reasoning=reasoning,
            evaluation_scores=evaluation.scores,
        )
        logger.info(
            f"Decision for quote {quote_id}: supplier {evaluation.winner_id} "
            f"({evaluation.scores[score_key(evaluation.winner_id)].total_score:.2f})"
        )
        return decision

    def evaluate_if_resolved(self, quote_id: str) -> Decision | None:
        """Evaluate only when every negotiation of the quote is terminal."""
        negotiations = self.store.list_negotiations(quote_id)
        if not all_resolved(negotiations):
            active = [n.supplier_id for n in negotiations if not n.is_terminal]
            logger.info(f"Quote {quote_id} not resolved yet (active suppliers: {active})")
            return None
        return self.evaluate(quote_id)
