"""
Decision endpoints.

WHAT: Trigger and read the winning-supplier decision of a quote
WHY: Scoring runs once, after every negotiation is terminal
HOW: DecisionEngine through the shared runner; the store enforces uniqueness
"""

from fastapi import APIRouter, Depends, status

from ....core.store import SQLStore
from ....models.negotiation import Decision
from ....services.decision_engine import all_resolved
from ....services.negotiation_runner import NegotiationRunner
from ....utils.exceptions import ConflictException, DecisionNotFoundException
from ...deps import get_runner, get_store

router = APIRouter()


@router.post("/quotes/{quote_id}/decision", response_model=Decision, status_code=status.HTTP_201_CREATED)
def create_decision(quote_id: str, runner: NegotiationRunner = Depends(get_runner)):
    """
    Score the quote's negotiations and record the winner.

    Raises:
        ConflictException: Negotiations still active, or a decision exists
        NoCompletedNegotiationsException: Nothing reached completed
    """
    negotiations = runner.store.list_negotiations(quote_id)
    if not all_resolved(negotiations):
        active = [n.supplier_id for n in negotiations if not n.is_terminal]
        raise ConflictException(
            f"Negotiations still active for quote {quote_id}",
            details={"quote_id": quote_id, "active_suppliers": active},
        )
    return runner.decision_engine.evaluate(quote_id)


@router.get("/quotes/{quote_id}/decision", response_model=Decision)
def get_decision(quote_id: str, store: SQLStore = Depends(get_store)):
    """The recorded decision; 404 until one exists."""
    decision = store.get_decision(quote_id)
    if decision is None:
        raise DecisionNotFoundException(quote_id)
    return decision
