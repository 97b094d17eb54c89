"""
Negotiation domain models.

WHAT: Core data structures for negotiations, transcripts, agent turns and decisions
WHY: Consistent typing across interpreter, state machine, scoring and persistence
HOW: Pydantic v2 models; camelCase aliases mirror the agent tool-call surface
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .offer import Offer

NegotiationStatusValue = Literal["active", "completed", "impasse"]
SenderType = Literal["brand", "supplier", "user"]
AgentSender = Literal["brand", "supplier"]
SupplierId = Literal[1, 2, 3, 4]

SUPPLIER_SLOTS: tuple[int, ...] = (1, 2, 3, 4)
TERMINAL_STATUSES = frozenset({"completed", "impasse"})


def utc_now() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so everything stays naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TokenUsage(BaseModel):
    """Token accounting reported by the agent's model."""

    model_config = ConfigDict(populate_by_name=True)

    prompt_tokens: int = Field(default=0, ge=0, alias="promptTokens")
    completion_tokens: int = Field(default=0, ge=0, alias="completionTokens")
    total_tokens: int = Field(default=0, ge=0, alias="totalTokens")


class MessageMetadata(BaseModel):
    """Optional metadata stored with a transcript message."""

    model_config = ConfigDict(populate_by_name=True)

    model: str | None = None
    token_usage: TokenUsage | None = Field(default=None, alias="tokenUsage")
    tool_calls: list[str] | None = Field(default=None, alias="toolCalls")
    # Ids issued by this message's tool call
    offer_id: str | None = Field(default=None, alias="offerId")
    substitution_id: str | None = Field(default=None, alias="substitutionId")


class MessageRecord(BaseModel):
    """An immutable transcript entry."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message_id: str | None = Field(default=None, alias="messageId")
    negotiation_id: str = Field(alias="negotiationId")
    sender: SenderType
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: MessageMetadata | None = None


class UserInterventionMessage(BaseModel):
    """A human message posted into a running negotiation."""

    model_config = ConfigDict(populate_by_name=True)

    content: str
    timestamp: datetime
    message_id: str = Field(alias="messageId")


class ToolCall(BaseModel):
    """A structured function-call request emitted by the agent."""

    model_config = ConfigDict(populate_by_name=True)

    tool_name: str = Field(alias="toolName")
    tool_call_id: str | None = Field(default=None, alias="toolCallId")
    args: dict[str, Any] = Field(default_factory=dict)


class AgentTurn(BaseModel):
    """One agent turn: natural-language text plus optional tool calls."""

    model_config = ConfigDict(populate_by_name=True)

    sender: AgentSender
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list, alias="toolCalls")
    model: str | None = None
    token_usage: TokenUsage | None = Field(default=None, alias="tokenUsage")


class NegotiationState(BaseModel):
    """Per-supplier negotiation record."""

    model_config = ConfigDict(populate_by_name=True)

    negotiation_id: str = Field(alias="id")
    quote_id: str = Field(alias="quoteId")
    supplier_id: SupplierId = Field(alias="supplierId")
    status: NegotiationStatusValue = "active"
    round_count: int = Field(default=0, ge=0, alias="roundCount")
    final_offer: Offer | None = Field(default=None, alias="finalOffer")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    target_unit_price: float | None = Field(default=None, gt=0.0, alias="targetUnitPrice")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class DecisionPriorities(BaseModel):
    """Buyer weights over the four scoring criteria (0-100 each)."""

    model_config = ConfigDict(populate_by_name=True)

    quality: float = Field(ge=0.0, le=100.0)
    cost: float = Field(ge=0.0, le=100.0)
    lead_time: float = Field(ge=0.0, le=100.0, alias="leadTime")
    payment_terms: float = Field(ge=0.0, le=100.0, alias="paymentTerms")


class ScoreBreakdown(BaseModel):
    """Normalized per-criterion scores plus the weighted composite."""

    model_config = ConfigDict(populate_by_name=True)

    quality_score: int = Field(default=0, ge=0, le=100, alias="qualityScore")
    cost_score: int = Field(default=0, ge=0, le=100, alias="costScore")
    lead_time_score: int = Field(default=0, ge=0, le=100, alias="leadTimeScore")
    payment_terms_score: int = Field(default=0, ge=0, le=100, alias="paymentTermsScore")
    total_score: float = Field(default=0.0, ge=0.0, alias="totalScore")


class Decision(BaseModel):
    """The single winner selection for a quote."""

    model_config = ConfigDict(populate_by_name=True)

    decision_id: str | None = Field(default=None, alias="id")
    quote_id: str = Field(alias="quoteId")
    selected_supplier_id: SupplierId = Field(alias="selectedSupplierId")
    reasoning: str
    evaluation_scores: dict[str, ScoreBreakdown] = Field(alias="evaluationScores")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")


class OfferReceived(BaseModel):
    """Offer notification sent to the gateway when terms are proposed."""

    model_config = ConfigDict(populate_by_name=True)

    supplier_id: int = Field(alias="supplierId")
    avg_price: float = Field(alias="avgPrice")
    lead_time: int = Field(alias="leadTime")
    payment_terms: str = Field(alias="paymentTerms")
    offer_id: str | None = Field(default=None, alias="offerId")
    source: AgentSender | None = None
    round_number: int = Field(default=0, alias="roundNumber")
