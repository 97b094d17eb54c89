"""
Persistence gateway contracts.

WHAT: Interfaces the state machine and decision engine read and write through
WHY: The negotiation core never talks to a concrete database
HOW: Protocols; core.store provides the SQLAlchemy-backed implementation

Write paths (on_message, on_status_change, create_decision) must succeed and
propagate their errors. on_offer_received and get_user_interventions are
best-effort: callers log and continue when they fail.
"""

from datetime import datetime
from typing import Protocol

from ..models.negotiation import (
    Decision,
    DecisionPriorities,
    MessageRecord,
    NegotiationState,
    NegotiationStatusValue,
    OfferReceived,
    ScoreBreakdown,
    UserInterventionMessage,
)
from ..models.offer import Offer


class NegotiationCallbacks(Protocol):
    """Async callback contract used by NegotiationStateMachine."""

    async def on_message(self, negotiation_id: str, message: MessageRecord) -> MessageRecord | None:
        """Append a transcript message. Returns the stored record when available."""
        ...

    async def on_status_change(
        self,
        negotiation_id: str,
        status: NegotiationStatusValue,
        round_count: int,
        final_offer: Offer | None = None,
        *,
        expected_round_count: int | None = None,
        message: MessageRecord | None = None,
    ) -> MessageRecord | None:
        """
        Persist status and round counter.

        When expected_round_count is given the write is a compare-and-swap:
        it must fail with a ConflictException unless the stored negotiation
        is still active at that round. A message passed along is stored in
        the same transaction and returned; on failure neither is written.
        """
        ...

    async def on_offer_received(self, negotiation_id: str, offer: OfferReceived) -> None:
        """Record proposed terms (best-effort)."""
        ...

    async def get_user_interventions(
        self, negotiation_id: str, since: datetime | None = None
    ) -> list[UserInterventionMessage]:
        """Human messages newer than `since` (best-effort)."""
        ...


class DecisionStore(Protocol):
    """Read/write surface the decision engine needs."""

    def list_negotiations(self, quote_id: str) -> list[NegotiationState]:
        ...

    def get_decision_priorities(self, quote_id: str) -> DecisionPriorities:
        ...

    def create_decision(
        self,
        quote_id: str,
        selected_supplier_id: int,
        reasoning: str,
        evaluation_scores: dict[str, ScoreBreakdown],
    ) -> Decision:
        """Create the quote's only Decision; a second call raises ConflictException."""
        ...
