"""
Offer domain model.

WHAT: Canonical shape of a price/terms proposal and its line items
WHY: Every tool call that carries terms is validated against one model
HOW: Pydantic v2 models plus a validate_offer() entry point that maps
     pydantic errors onto the business ValidationException
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..utils.exceptions import ValidationException
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Line totals are money; allow a cent of drift from quantity * unit price
LINE_TOTAL_TOLERANCE = 0.01


class MaterialSubstitution(BaseModel):
    """Accepted material swap attached to a line item."""

    model_config = ConfigDict(populate_by_name=True)

    original: str
    suggested: str
    savings_percent: float = Field(ge=0.0, le=100.0, alias="savingsPercent")
    description: str = ""


class LineItem(BaseModel):
    """Per-product pricing row inside an offer."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(min_length=1, alias="productId")
    product_name: str = Field(min_length=1, alias="productName")
    quantity: int = Field(gt=0)
    unit_price: float = Field(gt=0.0, alias="unitPrice")
    line_total: float | None = Field(default=None, alias="lineTotal")
    material_substitution: MaterialSubstitution | None = Field(
        default=None, alias="materialSubstitution"
    )

    @model_validator(mode="after")
    def fill_line_total(self):
        """lineTotal is always quantity * unitPrice."""
        expected = round(self.quantity * self.unit_price, 2)
        if self.line_total is None:
            self.line_total = expected
        elif abs(self.line_total - expected) > LINE_TOTAL_TOLERANCE:
            raise ValueError(
                f"lineTotal {self.line_total} does not equal quantity * unitPrice ({expected})"
            )
        return self


class Offer(BaseModel):
    """A price/terms proposal exchanged during a negotiation."""

    model_config = ConfigDict(populate_by_name=True)

    unit_price: float = Field(gt=0.0, alias="unitPrice")
    lead_time_days: int = Field(gt=0, alias="leadTimeDays")
    payment_terms: str = Field(alias="paymentTerms")
    notes: str | None = None
    products: list[LineItem] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize with the camelCase keys used on the tool-call surface."""
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_payment_terms(terms: str) -> list[int] | None:
    """
    Split a payment-terms string such as "30/70" into integer percentages.

    Returns None when any part does not parse.
    """
    if not terms or not terms.strip():
        return None

    parts = []
    for raw in terms.split("/"):
        cleaned = raw.strip().rstrip("%").strip()
        if not cleaned.isdigit():
            return None
        parts.append(int(cleaned))
    return parts


def validate_offer(candidate: Offer | dict[str, Any]) -> Offer:
    """
    Validate agent-submitted terms.

    WHAT: Turn an arbitrary payload into a validated Offer
    WHY: Non-positive prices or lead times must never reach the state machine
    HOW: Pydantic validation; errors are re-raised as ValidationException

    Args:
        candidate: Offer instance or raw dict (camelCase or snake_case keys)

    Returns:
        Validated Offer

    Raises:
        ValidationException: If the payload is malformed
    """
    if isinstance(candidate, Offer):
        candidate = candidate.model_dump(by_alias=True)

    if not isinstance(candidate, dict):
        raise ValidationException(f"Offer must be an object, got {type(candidate).__name__}")

    try:
        offer = Offer.model_validate(candidate)
    except ValidationError as e:
        field_errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationException("Invalid offer terms", field_errors=field_errors) from e

    # Payment terms are stored opaquely; only flag obviously inconsistent splits
    parts = parse_payment_terms(offer.payment_terms)
    if parts is not None and abs(sum(parts) - 100) > len(parts):
        logger.warning(
            f"Payment terms '{offer.payment_terms}' sum to {sum(parts)}, expected 100"
        )

    return offer
