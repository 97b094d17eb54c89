"""
Sourcing request (quote) models.

WHAT: The brand's request that owns one negotiation per supplier
WHY: Carries the decision priorities and optional target price
HOW: Pydantic v2 models with camelCase aliases
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .negotiation import DecisionPriorities, utc_now

QuoteStatusValue = Literal["pending", "negotiating", "completed", "cancelled"]


class QuoteProduct(BaseModel):
    """Requested product and quantity."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(min_length=1, alias="productId")
    quantity: int = Field(gt=0)


class QuoteRecord(BaseModel):
    """A persisted sourcing request."""

    model_config = ConfigDict(populate_by_name=True)

    quote_id: str = Field(alias="id")
    products: list[QuoteProduct]
    user_notes: str | None = Field(default=None, alias="userNotes")
    target_unit_price: float | None = Field(default=None, gt=0.0, alias="targetUnitPrice")
    decision_priorities: DecisionPriorities = Field(alias="decisionPriorities")
    status: QuoteStatusValue = "pending"
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
