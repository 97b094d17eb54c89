"""
Quote endpoints.

WHAT: Open sourcing requests and read them back
WHY: A quote creates one active negotiation per supplier slot
HOW: Thin FastAPI handlers over SQLStore
"""

from fastapi import APIRouter, Depends, status

from ....core.store import SQLStore
from ....models.api_schemas import CreateQuoteRequest, QuoteResponse
from ...deps import get_store

router = APIRouter()


@router.post("/quotes", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
def create_quote(request: CreateQuoteRequest, store: SQLStore = Depends(get_store)):
    """
    Create a sourcing request.

    Returns:
        The quote and its freshly created active negotiations
    """
    quote, negotiations = store.create_quote(
        request.products,
        request.decision_priorities,
        target_unit_price=request.target_unit_price,
        user_notes=request.user_notes,
        supplier_ids=request.supplier_ids,
    )
    return QuoteResponse(quote=quote, negotiations=negotiations)


@router.get("/quotes/{quote_id}", response_model=QuoteResponse)
def get_quote(quote_id: str, store: SQLStore = Depends(get_store)):
    """Quote with the current state of every negotiation."""
    return QuoteResponse(
        quote=store.get_quote(quote_id),
        negotiations=store.list_negotiations(quote_id),
    )
