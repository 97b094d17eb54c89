"""
Negotiation endpoints.

WHAT: Transcript reads, agent turns and user interventions
WHY: External agents drive negotiations one turn at a time over HTTP
HOW: Turns go through the shared NegotiationRunner so the per-negotiation
     lock and state machine cache apply
"""

from fastapi import APIRouter, Depends, status

from ....core.store import SQLStore
from ....models.api_schemas import (
    InterventionRequest,
    InterventionResponse,
    NegotiationResponse,
    TurnResponse,
)
from ....models.negotiation import AgentTurn
from ....services.negotiation_runner import NegotiationRunner
from ....utils.logger import get_logger
from ...deps import get_runner, get_store

logger = get_logger(__name__)

router = APIRouter()


@router.get("/negotiations/{negotiation_id}", response_model=NegotiationResponse)
def get_negotiation(negotiation_id: str, store: SQLStore = Depends(get_store)):
    """Negotiation state plus its ordered transcript."""
    return NegotiationResponse(
        negotiation=store.get_negotiation(negotiation_id),
        messages=store.get_messages(negotiation_id),
    )


@router.post("/negotiations/{negotiation_id}/turns", response_model=TurnResponse)
async def submit_turn(
    negotiation_id: str,
    turn: AgentTurn,
    runner: NegotiationRunner = Depends(get_runner),
):
    """
    Apply one agent turn.

    Terminal negotiations answer with applied=false instead of an error, so a
    replayed accept is harmless.
    """
    outcome = await runner.apply_turn(negotiation_id, turn)

    return TurnResponse(
        applied=outcome.applied,
        negotiation=outcome.state,
        message=outcome.message,
        tool=outcome.action.tool.value if outcome.action else None,
        tool_result=outcome.action.payload if outcome.action else None,
        impasse_reason=outcome.impasse.reason if outcome.impasse else None,
    )


@router.post(
    "/negotiations/{negotiation_id}/interventions",
    response_model=InterventionResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_intervention(
    negotiation_id: str,
    request: InterventionRequest,
    store: SQLStore = Depends(get_store),
):
    """Post a human message the agent sees on its next turn."""
    intervention = store.add_user_intervention(negotiation_id, request.content)
    return InterventionResponse(intervention=intervention)
