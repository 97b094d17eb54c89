"""
Tool-call interpreter for negotiation actions.

WHAT: Maps an agent's structured tool invocation onto a negotiation transition
WHY: Only tool-call payloads are load-bearing; free text never changes state
HOW: Pydantic input schemas per tool, pure handler methods that return an
     InterpretedAction (result payload + requested transition). The
     interpreter never talks to persistence; the state machine decides what
     to write.
"""

import itertools
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..models.negotiation import SupplierId, ToolCall
from ..models.offer import Offer, validate_offer
from ..utils.exceptions import ValidationException
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ToolName(str, Enum):
    """Tool ids recognized on the agent surface."""
    PROPOSE_OFFER = "propose-offer"
    COUNTER_OFFER = "counter-offer"
    ACCEPT_OFFER = "accept-offer"
    REJECT_OFFER = "reject-offer"
    SUGGEST_SUBSTITUTION = "suggest-substitution"
    ACCEPT_SUBSTITUTION = "accept-substitution"
    REJECT_SUBSTITUTION = "reject-substitution"


# Highest priority first; a turn is resolved by its most decisive call
TOOL_PRIORITY: tuple[ToolName, ...] = (
    ToolName.ACCEPT_OFFER,
    ToolName.REJECT_OFFER,
    ToolName.COUNTER_OFFER,
    ToolName.PROPOSE_OFFER,
    ToolName.ACCEPT_SUBSTITUTION,
    ToolName.REJECT_SUBSTITUTION,
    ToolName.SUGGEST_SUBSTITUTION,
)

Transition = Literal["none", "round", "completed", "impasse"]
RejectionCategory = Literal[
    "price_too_high",
    "lead_time_too_long",
    "payment_terms_unacceptable",
    "quality_concerns",
    "other",
]
SubstitutionRejectionReason = Literal[
    "quality_concerns",
    "customer_requirements",
    "certification_issues",
    "insufficient_savings",
    "other",
]


# ========== Tool input schemas ==========

class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProposeOfferInput(_ToolInput):
    supplier_id: SupplierId = Field(alias="supplierId")
    offer: Offer
    message: str


class CounterOfferInput(_ToolInput):
    previous_offer_id: str = Field(min_length=1, alias="previousOfferId")
    counter_offer: Offer = Field(alias="counterOffer")
    changes_explanation: str = Field(alias="changesExplanation")
    message: str


class AcceptOfferInput(_ToolInput):
    offer_id: str = Field(min_length=1, alias="offerId")
    accepted_terms: Offer = Field(alias="acceptedTerms")
    confirmation_message: str = Field(alias="confirmationMessage")


class RejectOfferInput(_ToolInput):
    offer_id: str = Field(min_length=1, alias="offerId")
    reason: str
    is_negotiation_ended: bool = Field(alias="isNegotiationEnded")
    message: str
    rejection_category: RejectionCategory | None = Field(default=None, alias="rejectionCategory")


class SubstitutionProposal(_ToolInput):
    product_id: str = Field(min_length=1, alias="productId")
    original_material: str = Field(alias="originalMaterial")
    suggested_material: str = Field(alias="suggestedMaterial")
    cost_reduction_percent: float = Field(ge=0.0, le=50.0, alias="costReductionPercent")
    quality_impact: Literal["none", "minor", "moderate", "significant"] = Field(alias="qualityImpact")
    quality_justification: str = Field(alias="qualityJustification")
    lead_time_change: int | None = Field(default=None, alias="leadTimeChange")


class SuggestSubstitutionInput(_ToolInput):
    proposal: SubstitutionProposal
    message: str


class AcceptSubstitutionInput(_ToolInput):
    substitution_id: str = Field(min_length=1, alias="substitutionId")
    conditions: str | None = None
    message: str


class RejectSubstitutionInput(_ToolInput):
    substitution_id: str = Field(min_length=1, alias="substitutionId")
    reason: SubstitutionRejectionReason
    explanation: str
    message: str


TOOL_INPUTS: dict[ToolName, type[_ToolInput]] = {
    ToolName.PROPOSE_OFFER: ProposeOfferInput,
    ToolName.COUNTER_OFFER: CounterOfferInput,
    ToolName.ACCEPT_OFFER: AcceptOfferInput,
    ToolName.REJECT_OFFER: RejectOfferInput,
    ToolName.SUGGEST_SUBSTITUTION: SuggestSubstitutionInput,
    ToolName.ACCEPT_SUBSTITUTION: AcceptSubstitutionInput,
    ToolName.REJECT_SUBSTITUTION: RejectSubstitutionInput,
}


# ========== Results ==========

@dataclass
class InterpretedAction:
    """Result payload of one tool call plus the transition it requests."""
    tool: ToolName
    payload: dict[str, Any]
    message: str
    transition: Transition = "none"
    offer_id: str | None = None
    offer: Offer | None = None
    substitution: SubstitutionProposal | None = None
    substitution_id: str | None = None


@dataclass
class InterpreterContext:
    """What the interpreter needs to know about the negotiation it serves."""
    supplier_id: int
    issued_offer_ids: Collection[str] = field(default_factory=tuple)
    known_substitution_ids: Collection[str] = field(default_factory=tuple)


class OfferIdGenerator:
    """
    Collision-free short ids for offers and substitutions.

    A nanosecond clock alone repeats within one tick, so a process-wide
    counter is appended.
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next_id(self, prefix: str, scope: int | str) -> str:
        with self._lock:
            seq = next(self._counter)
        return f"{prefix}-{scope}-{time.time_ns():x}-{seq}"


class ToolCallInterpreter:
    """
    Stateless interpreter for negotiation tool calls.

    WHAT: One entry point per action plus a raw-call dispatcher
    WHY: Keep protocol rules pure and testable without persistence
    HOW: Validate inputs, generate ids, return InterpretedAction
    """

    def __init__(self, id_generator: OfferIdGenerator | None = None):
        self.ids = id_generator or OfferIdGenerator()

    # ---------- offer actions ----------

    def propose(
        self,
        supplier_id: int,
        offer: Offer | dict[str, Any],
        message: str,
        *,
        issued_offer_ids: Collection[str] = (),
    ) -> InterpretedAction:
        """Open the negotiation with initial terms."""
        if issued_offer_ids:
            raise ValidationException(
                "propose-offer is only valid as the first offer of a negotiation; "
                "use counter-offer to revise terms"
            )
        validated = validate_offer(offer)
        offer_id = self.ids.next_id("offer", supplier_id)

        return InterpretedAction(
            tool=ToolName.PROPOSE_OFFER,
            payload={"offerId": offer_id, "offer": validated.to_payload(), "message": message},
            message=message,
            transition="none",
            offer_id=offer_id,
            offer=validated,
        )

    def counter_offer(
        self,
        previous_offer_id: str,
        counter_offer: Offer | dict[str, Any],
        changes_explanation: str,
        message: str,
        *,
        supplier_id: int,
        issued_offer_ids: Collection[str] = (),
    ) -> InterpretedAction:
        """Revise terms in response to an earlier offer."""
        if previous_offer_id not in issued_offer_ids:
            raise ValidationException(
                f"Unknown previousOfferId: {previous_offer_id}",
                field_errors=[{"field": "previousOfferId", "message": "not issued in this negotiation"}],
            )
        validated = validate_offer(counter_offer)
        offer_id = self.ids.next_id("counter", supplier_id)

        return InterpretedAction(
            tool=ToolName.COUNTER_OFFER,
            payload={
                "offerId": offer_id,
                "previousOfferId": previous_offer_id,
                "counterOffer": validated.to_payload(),
                "changesExplanation": changes_explanation,
                "message": message,
            },
            message=message,
            transition="round",
            offer_id=offer_id,
            offer=validated,
        )

    def accept_offer(
        self,
        offer_id: str,
        accepted_terms: Offer | dict[str, Any],
        confirmation_message: str,
        *,
        issued_offer_ids: Collection[str] = (),
    ) -> InterpretedAction:
        """Accept terms; always terminal."""
        validated = validate_offer(accepted_terms)
        if issued_offer_ids and offer_id not in issued_offer_ids:
            logger.warning(f"accept-offer references unknown offer id {offer_id}")

        return InterpretedAction(
            tool=ToolName.ACCEPT_OFFER,
            payload={
                "status": "accepted",
                "offerId": offer_id,
                "acceptedTerms": validated.to_payload(),
                "message": confirmation_message,
            },
            message=confirmation_message,
            transition="completed",
            offer_id=offer_id,
            offer=validated,
        )

    def reject_offer(
        self,
        offer_id: str,
        reason: str,
        is_negotiation_ended: bool,
        message: str,
        rejection_category: RejectionCategory | None = None,
    ) -> InterpretedAction:
        """Reject terms; terminal only when the rejection ends the negotiation."""
        status = "impasse" if is_negotiation_ended else "rejected"
        payload = {"status": status, "offerId": offer_id, "reason": reason, "message": message}
        if rejection_category:
            payload["rejectionCategory"] = rejection_category

        return InterpretedAction(
            tool=ToolName.REJECT_OFFER,
            payload=payload,
            message=message,
            transition="impasse" if is_negotiation_ended else "round",
            offer_id=offer_id,
        )

    # ---------- substitution actions ----------

    def suggest_substitution(
        self, supplier_id: int, proposal: SubstitutionProposal, message: str
    ) -> InterpretedAction:
        substitution_id = self.ids.next_id("sub", f"{supplier_id}-{proposal.product_id}")
        return InterpretedAction(
            tool=ToolName.SUGGEST_SUBSTITUTION,
            payload={
                "substitutionId": substitution_id,
                "proposal": proposal.model_dump(by_alias=True, exclude_none=True),
                "message": message,
            },
            message=message,
            substitution=proposal,
            substitution_id=substitution_id,
        )

    def accept_substitution(
        self,
        substitution_id: str,
        message: str,
        conditions: str | None = None,
        *,
        known_substitution_ids: Collection[str] = (),
    ) -> InterpretedAction:
        self._require_substitution(substitution_id, known_substitution_ids)
        payload = {"status": "accepted", "substitutionId": substitution_id, "message": message}
        if conditions:
            payload["conditions"] = conditions
        return InterpretedAction(
            tool=ToolName.ACCEPT_SUBSTITUTION,
            payload=payload,
            message=message,
            substitution_id=substitution_id,
        )

    def reject_substitution(
        self,
        substitution_id: str,
        reason: SubstitutionRejectionReason,
        explanation: str,
        message: str,
        *,
        known_substitution_ids: Collection[str] = (),
    ) -> InterpretedAction:
        self._require_substitution(substitution_id, known_substitution_ids)
        return InterpretedAction(
            tool=ToolName.REJECT_SUBSTITUTION,
            payload={
                "status": "rejected",
                "substitutionId": substitution_id,
                "reason": reason,
                "explanation": explanation,
                "message": message,
            },
            message=message,
            substitution_id=substitution_id,
        )

    @staticmethod
    def _require_substitution(substitution_id: str, known: Collection[str]):
        if substitution_id not in known:
            raise ValidationException(
                f"Unknown substitutionId: {substitution_id}",
                field_errors=[{"field": "substitutionId", "message": "not suggested in this negotiation"}],
            )

    # ---------- dispatch ----------

    def select_primary(self, tool_calls: list[ToolCall]) -> ToolCall | None:
        """
        Pick the single tool call a turn is resolved by.

        Unrecognized tools are ignored; among recognized ones the most
        decisive wins (accept > reject > counter > propose > substitutions).
        """
        recognized = {}
        for call in tool_calls:
            try:
                name = ToolName(call.tool_name)
            except ValueError:
                logger.debug(f"Ignoring unrecognized tool call: {call.tool_name}")
                continue
            recognized.setdefault(name, call)

        if len(recognized) > 1:
            logger.warning(
                f"Turn carried {len(recognized)} recognized tool calls; resolving by priority"
            )

        for name in TOOL_PRIORITY:
            if name in recognized:
                return recognized[name]
        return None

    def interpret(self, tool_call: ToolCall, context: InterpreterContext) -> InterpretedAction:
        """
        Validate and execute one raw tool call.

        Args:
            tool_call: Raw call with toolName and args
            context: Supplier id and ids already issued in this negotiation

        Returns:
            InterpretedAction

        Raises:
            ValidationException: Unknown tool, bad arguments or unknown ids
        """
        try:
            name = ToolName(tool_call.tool_name)
        except ValueError:
            raise ValidationException(f"Unrecognized tool: {tool_call.tool_name}") from None

        parsed = _parse_args(TOOL_INPUTS[name], tool_call.args)

        if name is ToolName.PROPOSE_OFFER:
            if parsed.supplier_id != context.supplier_id:
                raise ValidationException(
                    f"propose-offer for supplier {parsed.supplier_id} sent to "
                    f"negotiation with supplier {context.supplier_id}"
                )
            return self.propose(
                parsed.supplier_id, parsed.offer, parsed.message,
                issued_offer_ids=context.issued_offer_ids,
            )
        if name is ToolName.COUNTER_OFFER:
            return self.counter_offer(
                parsed.previous_offer_id, parsed.counter_offer,
                parsed.changes_explanation, parsed.message,
                supplier_id=context.supplier_id,
                issued_offer_ids=context.issued_offer_ids,
            )
        if name is ToolName.ACCEPT_OFFER:
            return self.accept_offer(
                parsed.offer_id, parsed.accepted_terms, parsed.confirmation_message,
                issued_offer_ids=context.issued_offer_ids,
            )
        if name is ToolName.REJECT_OFFER:
            return self.reject_offer(
                parsed.offer_id, parsed.reason, parsed.is_negotiation_ended,
                parsed.message, parsed.rejection_category,
            )
        if name is ToolName.SUGGEST_SUBSTITUTION:
            return self.suggest_substitution(context.supplier_id, parsed.proposal, parsed.message)
        if name is ToolName.ACCEPT_SUBSTITUTION:
            return self.accept_substitution(
                parsed.substitution_id, parsed.message, parsed.conditions,
                known_substitution_ids=context.known_substitution_ids,
            )
        return self.reject_substitution(
            parsed.substitution_id, parsed.reason, parsed.explanation, parsed.message,
            known_substitution_ids=context.known_substitution_ids,
        )


def _parse_args(schema: type[_ToolInput], args: dict[str, Any]):
    try:
        return schema.model_validate(args)
    except ValidationError as e:
        field_errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationException(f"Invalid arguments for {schema.__name__}", field_errors=field_errors) from e
