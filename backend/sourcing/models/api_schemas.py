"""
Pydantic API schemas for the v1 endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and camelCase serialization for clients
HOW: Pydantic v2 models wrapping the domain models
"""

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .negotiation import (
    DecisionPriorities,
    MessageRecord,
    NegotiationState,
    UserInterventionMessage,
)
from .quote import QuoteProduct, QuoteRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ========== Quotes ==========

class CreateQuoteRequest(_CamelModel):
    """Open a sourcing request."""
    products: List[QuoteProduct] = Field(..., min_length=1, description="Requested products")
    decision_priorities: DecisionPriorities = Field(..., alias="decisionPriorities")
    target_unit_price: Optional[float] = Field(default=None, gt=0, alias="targetUnitPrice")
    user_notes: Optional[str] = Field(default=None, max_length=2000, alias="userNotes")
    supplier_ids: Optional[List[int]] = Field(
        default=None, min_length=1, max_length=4, alias="supplierIds",
        description="Supplier slots 1-4; defaults to DEFAULT_SUPPLIER_IDS"
    )

    @field_validator("supplier_ids")
    @classmethod
    def validate_supplier_slots(cls, v):
        """Supplier ids are the fixed slots 1-4, each at most once."""
        if v is None:
            return v
        if any(s not in (1, 2, 3, 4) for s in v):
            raise ValueError("supplierIds must be between 1 and 4")
        if len(set(v)) != len(v):
            raise ValueError("supplierIds must be unique")
        return v


class QuoteResponse(_CamelModel):
    """Quote with its negotiations."""
    quote: QuoteRecord
    negotiations: List[NegotiationState]


# ========== Negotiations ==========

class NegotiationResponse(_CamelModel):
    """Negotiation state plus its transcript."""
    negotiation: NegotiationState
    messages: List[MessageRecord]


class TurnResponse(_CamelModel):
    """Result of applying one agent turn."""
    applied: bool
    negotiation: NegotiationState
    message: Optional[MessageRecord] = None
    tool: Optional[str] = None
    tool_result: Optional[dict[str, Any]] = Field(default=None, alias="toolResult")
    impasse_reason: Optional[str] = Field(default=None, alias="impasseReason")


class InterventionRequest(_CamelModel):
    """Human message posted into a running negotiation."""
    content: str = Field(..., min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v):
        """Reject whitespace-only messages."""
        if not v.strip():
            raise ValueError("content cannot be blank")
        return v.strip()


class InterventionResponse(_CamelModel):
    intervention: UserInterventionMessage
