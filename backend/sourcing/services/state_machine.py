"""
Per-negotiation state machine.

WHAT: Applies agent turns to one negotiation (active -> completed | impasse)
WHY: Status, round counter and final offer must only move through one place
HOW: Interpret the turn's primary tool call, plan the next state, write it
     through the gateway, and only then advance in-memory state.
     An asyncio.Lock keeps one turn in flight per negotiation; the gateway's
     compare-and-swap status write catches writers in other processes.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, TypeVar

from ..models.negotiation import (
    AgentTurn,
    MessageMetadata,
    MessageRecord,
    NegotiationState,
    NegotiationStatusValue,
    OfferReceived,
    UserInterventionMessage,
    utc_now,
)
from ..models.offer import MaterialSubstitution, Offer
from ..utils.exceptions import ConflictException, DependencyException
from ..utils.logger import get_negotiation_logger
from .gateway import NegotiationCallbacks
from .impasse_detector import ImpasseDetector, ImpasseResult, NegotiationConfig
from .offer_tracker import OfferHistoryEntry, OfferTracker
from .tool_interpreter import (
    InterpretedAction,
    InterpreterContext,
    SubstitutionProposal,
    ToolCallInterpreter,
    ToolName,
)

T = TypeVar("T")


@dataclass
class TurnOutcome:
    """What one apply_turn() call did."""
    applied: bool
    state: NegotiationState
    message: MessageRecord | None = None
    action: InterpretedAction | None = None
    impasse: ImpasseResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass
class _Plan:
    status: NegotiationStatusValue
    round_count: int
    final_offer: Offer | None = None
    offer_entry: OfferHistoryEntry | None = None
    impasse: ImpasseResult | None = None
    accepted_substitution: str | None = None
    suggested: dict[str, SubstitutionProposal] = field(default_factory=dict)


class NegotiationStateMachine:
    """
    Owns status, round counter, offer ledger and transcript of one negotiation.

    Writes go through NegotiationCallbacks. Message and status writes are
    required: a failure raises DependencyException and leaves this object
    exactly as it was before the turn.
    """

    def __init__(
        self,
        state: NegotiationState,
        callbacks: NegotiationCallbacks,
        *,
        config: NegotiationConfig | None = None,
        interpreter: ToolCallInterpreter | None = None,
        transcript: list[MessageRecord] | None = None,
        offer_history: list[OfferHistoryEntry] | None = None,
    ):
        self._state = state.model_copy()
        self.callbacks = callbacks
        self.log = get_negotiation_logger(__name__, state.negotiation_id)
        self.detector = ImpasseDetector(config)
        self.interpreter = interpreter or ToolCallInterpreter()

        self._transcript: list[MessageRecord] = list(transcript or [])
        self.tracker = OfferTracker(state.supplier_id)
        for entry in offer_history or []:
            self.tracker.add_offer(entry)

        self._substitutions: dict[str, SubstitutionProposal] = {}
        self._accepted_substitutions: list[str] = []

        # User messages after the last agent message have not reached an agent yet
        last_agent = max(
            (i for i, m in enumerate(self._transcript) if m.sender != "user"), default=-1
        )
        self._seen_interventions = {
            m.message_id for m in self._transcript[:last_agent + 1] if m.sender == "user"
        }
        self._interventions_since: datetime | None = None

        self._lock = asyncio.Lock()

    # ---------- read access ----------

    @property
    def negotiation_id(self) -> str:
        return self._state.negotiation_id

    @property
    def state(self) -> NegotiationState:
        return self._state.model_copy()

    @property
    def transcript(self) -> list[MessageRecord]:
        return list(self._transcript)

    @property
    def substitutions(self) -> dict[str, SubstitutionProposal]:
        return dict(self._substitutions)

    # ---------- turns ----------

    async def apply_turn(self, turn: AgentTurn) -> TurnOutcome:
        """
        Apply one agent turn.

        Args:
            turn: Agent text plus zero or more tool calls

        Returns:
            TurnOutcome; applied is False when the negotiation was already terminal

        Raises:
            ValidationException: Bad tool arguments or unknown offer ids (nothing written)
            ConflictException: Another writer already moved the negotiation
            DependencyException: A required gateway write failed
        """
        async with self._lock:
            if self._state.is_terminal:
                self.log.warning(
                    f"Ignoring {turn.sender} turn: negotiation "
                    f"already {self._state.status}"
                )
                return TurnOutcome(applied=False, state=self.state)

            action = None
            primary = self.interpreter.select_primary(turn.tool_calls)
            if primary is not None:
                action = self.interpreter.interpret(primary, self._context())

            plan = self._plan(turn, action)

            record = MessageRecord(
                negotiation_id=self.negotiation_id,
                sender=turn.sender,
                content=turn.content or (action.message if action else ""),
                timestamp=utc_now(),
                metadata=self._metadata(turn, plan),
            )
            if plan.status != self._state.status or plan.round_count != self._state.round_count:
                # Message rides along with the swap: a stale writer stores neither
                stored = await self._required(
                    "on_status_change",
                    self.callbacks.on_status_change(
                        self.negotiation_id,
                        plan.status,
                        plan.round_count,
                        plan.final_offer,
                        expected_round_count=self._state.round_count,
                        message=record,
                    ),
                )
            else:
                stored = await self._required(
                    "on_message", self.callbacks.on_message(self.negotiation_id, record)
                )
            record = stored or record

            self._commit(plan, record)

            if plan.offer_entry is not None:
                await self._notify_offer(plan.offer_entry)

            return TurnOutcome(
                applied=True,
                state=self.state,
                message=record,
                action=action,
                impasse=plan.impasse,
            )

    def _context(self) -> InterpreterContext:
        return InterpreterContext(
            supplier_id=self._state.supplier_id,
            issued_offer_ids=self.tracker.offer_ids,
            known_substitution_ids=frozenset(self._substitutions),
        )

    def _plan(self, turn: AgentTurn, action: InterpretedAction | None) -> _Plan:
        """Work out the post-turn state without touching self."""
        status: NegotiationStatusValue = self._state.status
        round_count = self._state.round_count
        plan = _Plan(status=status, round_count=round_count)

        if action is None:
            return plan

        if action.transition == "completed":
            plan.status = "completed"
            plan.final_offer = self._final_offer(action.offer)
            return plan

        if action.transition == "impasse":
            plan.status = "impasse"
            return plan

        if action.transition == "round":
            plan.round_count = round_count + 1

        tracker = self.tracker
        if action.offer is not None and action.offer_id is not None:
            plan.offer_entry = OfferHistoryEntry(
                offer_id=action.offer_id,
                round_number=plan.round_count,
                source=turn.sender,
                offer=action.offer,
            )
            tracker = tracker.extended(plan.offer_entry)

        if action.tool is ToolName.SUGGEST_SUBSTITUTION:
            plan.suggested[action.substitution_id] = action.substitution
        elif action.tool is ToolName.ACCEPT_SUBSTITUTION:
            plan.accepted_substitution = action.substitution_id

        result = self.detector.check(plan.round_count, tracker, self._state.target_unit_price)
        if result.is_impasse:
            self.log.info(f"Supervisory impasse ({result.reason}): {result.details}")
            plan.status = "impasse"
            plan.impasse = result

        return plan

    def _final_offer(self, accepted: Offer) -> Offer:
        """Accepted terms with known line items and accepted substitutions folded in."""
        products = accepted.products or self.tracker.latest_products()
        if not products:
            return accepted

        swaps = {
            self._substitutions[sub_id].product_id: self._substitutions[sub_id]
            for sub_id in self._accepted_substitutions
        }
        folded = []
        for item in products:
            swap = swaps.get(item.product_id)
            if swap is not None and item.material_substitution is None:
                item = item.model_copy(update={
                    "material_substitution": MaterialSubstitution(
                        original=swap.original_material,
                        suggested=swap.suggested_material,
                        savings_percent=swap.cost_reduction_percent,
                        description=swap.quality_justification,
                    )
                })
            folded.append(item)
        return accepted.model_copy(update={"products": folded})

    def _commit(self, plan: _Plan, record: MessageRecord) -> None:
        previous = self._state.status
        updates = {"status": plan.status, "round_count": plan.round_count}
        if plan.status != "active":
            updates["final_offer"] = plan.final_offer
            updates["completed_at"] = utc_now()
        self._state = self._state.model_copy(update=updates)

        self._transcript.append(record)
        if plan.offer_entry is not None:
            self.tracker.add_offer(plan.offer_entry)
        self._substitutions.update(plan.suggested)
        if plan.accepted_substitution:
            self._accepted_substitutions.append(plan.accepted_substitution)

        if plan.status != previous:
            self.log.info(
                f"{previous} -> {plan.status} at round {plan.round_count}"
            )

    @staticmethod
    def _metadata(turn: AgentTurn, plan: _Plan) -> MessageMetadata | None:
        """Model info, tool names and any id the turn issued (agents reference these)."""
        metadata = MessageMetadata(
            model=turn.model,
            token_usage=turn.token_usage,
            tool_calls=[c.tool_name for c in turn.tool_calls] or None,
            offer_id=plan.offer_entry.offer_id if plan.offer_entry else None,
            substitution_id=next(iter(plan.suggested), None),
        )
        if not metadata.model_dump(exclude_none=True):
            return None
        return metadata

    async def _required(self, operation: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except ConflictException:
            self.log.warning(f"{operation} rejected as stale; standing down")
            raise
        except Exception as e:
            self.log.error(f"{operation} failed: {e}")
            raise DependencyException(operation, self.negotiation_id, e) from e

    async def _notify_offer(self, entry: OfferHistoryEntry) -> None:
        notice = OfferReceived(
            supplier_id=self._state.supplier_id,
            avg_price=entry.offer.unit_price,
            lead_time=entry.offer.lead_time_days,
            payment_terms=entry.offer.payment_terms,
            offer_id=entry.offer_id,
            source=entry.source,
            round_number=entry.round_number,
        )
        try:
            await self.callbacks.on_offer_received(self.negotiation_id, notice)
        except Exception as e:
            self.log.warning(f"on_offer_received failed (ignored): {e}")

    # ---------- human interventions ----------

    async def collect_user_interventions(self) -> list[UserInterventionMessage]:
        """
        New human messages since the last call (best-effort).

        Gateway failures are logged and yield an empty list; each message is
        returned once.
        """
        try:
            messages = await self.callbacks.get_user_interventions(
                self.negotiation_id, self._interventions_since
            )
        except Exception as e:
            self.log.warning(f"Could not fetch user interventions: {e}")
            return []

        fresh = [m for m in messages if m.message_id not in self._seen_interventions]
        in_transcript = {m.message_id for m in self._transcript if m.sender == "user"}
        for message in fresh:
            self._seen_interventions.add(message.message_id)
            if message.message_id in in_transcript:
                continue
            self._transcript.append(MessageRecord(
                message_id=message.message_id,
                negotiation_id=self.negotiation_id,
                sender="user",
                content=message.content,
                timestamp=message.timestamp,
            ))
        if messages:
            self._interventions_since = max(m.timestamp for m in messages)
        return fresh
