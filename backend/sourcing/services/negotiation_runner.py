"""
Negotiation runner.

WHAT: Drives agents against state machines and triggers the decision
WHY: One negotiation per supplier runs independently; scoring waits for all
HOW: Cached state machines (rehydrated from the store on miss), an agent
     loop per negotiation, asyncio.gather bounded by a semaphore
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Callable, Protocol

from ..core.config import settings
from ..core.store import SQLStore, StoreCallbacks
from ..models.negotiation import AgentTurn, Decision, MessageRecord, NegotiationState
from ..utils.exceptions import (
    ConflictException,
    NoCompletedNegotiationsException,
    ValidationException,
)
from ..utils.logger import get_logger, get_negotiation_logger
from .decision_engine import DecisionEngine
from .gateway import NegotiationCallbacks
from .impasse_detector import NegotiationConfig
from .offer_tracker import NegotiationStats
from .scoring import ScoringConfig
from .state_machine import NegotiationStateMachine, TurnOutcome
from .user_guidance import FormattedGuidance, format_user_guidance

logger = get_logger(__name__)


class NegotiationAgent(Protocol):
    """The external agent that writes messages and chooses tools."""

    async def next_turn(
        self,
        transcript: list[MessageRecord],
        state: NegotiationState,
        guidance: FormattedGuidance,
    ) -> AgentTurn:
        ...


AgentFactory = Callable[[NegotiationState], NegotiationAgent]


@dataclass
class NegotiationRunResult:
    """How one negotiation's agent loop ended."""
    negotiation_id: str
    supplier_id: int
    state: NegotiationState
    turns: int = 0
    rejected_turns: int = 0
    error: str | None = None
    stats: NegotiationStats | None = None


@dataclass
class SourcingRunResult:
    """All negotiations of a quote plus the decision, if one was made."""
    quote_id: str
    negotiations: list[NegotiationRunResult] = field(default_factory=list)
    decision: Decision | None = None
    decision_error: str | None = None


class NegotiationRunner:
    """
    Owns one state machine per negotiation id.

    WHAT: apply_turn / run_negotiation / run_sourcing_request
    WHY: Keeps the in-process single-writer guarantee per negotiation
    HOW: Machine cache guarded by a lock; stale machines are evicted on conflict
    """

    def __init__(
        self,
        store: SQLStore,
        *,
        callbacks: NegotiationCallbacks | None = None,
        negotiation_config: NegotiationConfig | None = None,
        scoring_config: ScoringConfig | None = None,
        max_agent_turns: int | None = None,
        parallel_limit: int | None = None,
    ):
        self.store = store
        self.callbacks = callbacks or StoreCallbacks(store)
        self.negotiation_config = negotiation_config or NegotiationConfig.from_settings()
        self.decision_engine = DecisionEngine(store, scoring_config)
        self.max_agent_turns = max_agent_turns or settings.MAX_AGENT_TURNS
        self.parallel_limit = parallel_limit or settings.PARALLEL_NEGOTIATION_LIMIT

        self._machines: dict[str, NegotiationStateMachine] = {}
        self._cache_lock = threading.Lock()

    # ---------- machine cache ----------

    def _load_machine(self, negotiation_id: str) -> NegotiationStateMachine:
        with self._cache_lock:
            machine = self._machines.get(negotiation_id)
            if machine is not None:
                return machine

        state = self.store.get_negotiation(negotiation_id)
        machine = NegotiationStateMachine(
            state,
            self.callbacks,
            config=self.negotiation_config,
            transcript=self.store.get_messages(negotiation_id),
            offer_history=self.store.get_offer_history(negotiation_id),
        )

        with self._cache_lock:
            # Another caller may have loaded it meanwhile; keep the first one
            machine = self._machines.setdefault(negotiation_id, machine)
        logger.debug(f"Loaded state machine for negotiation {negotiation_id}")
        return machine

    async def get_machine(self, negotiation_id: str) -> NegotiationStateMachine:
        return await asyncio.to_thread(self._load_machine, negotiation_id)

    @property
    def cached_machine_count(self) -> int:
        with self._cache_lock:
            return len(self._machines)

    def forget(self, negotiation_id: str) -> None:
        with self._cache_lock:
            self._machines.pop(negotiation_id, None)

    # ---------- single turns ----------

    async def apply_turn(self, negotiation_id: str, turn: AgentTurn) -> TurnOutcome:
        """
        Apply one externally produced turn.

        Raises:
            NegotiationNotFoundException: Unknown negotiation
            ValidationException / ConflictException / DependencyException: from the machine
        """
        machine = await self.get_machine(negotiation_id)
        try:
            return await machine.apply_turn(turn)
        except ConflictException:
            # Someone else advanced it; reload from the store next time
            self.forget(negotiation_id)
            raise

    # ---------- agent loops ----------

    async def run_negotiation(self, negotiation_id: str, agent: NegotiationAgent) -> NegotiationRunResult:
        """
        Let an agent negotiate until the negotiation is terminal.

        Invalid tool calls are logged and the agent is prompted again; they
        count toward max_agent_turns. Conflicts end the loop.
        """
        log = get_negotiation_logger(__name__, negotiation_id)
        machine = await self.get_machine(negotiation_id)
        result = NegotiationRunResult(
            negotiation_id=negotiation_id,
            supplier_id=machine.state.supplier_id,
            state=machine.state,
        )

        while not machine.state.is_terminal:
            if result.turns >= self.max_agent_turns:
                log.warning(
                    f"Stopping after {result.turns} agent turns; still active"
                )
                result.error = "max_agent_turns"
                break

            interventions = await machine.collect_user_interventions()
            guidance = format_user_guidance(interventions)
            turn = await agent.next_turn(machine.transcript, machine.state, guidance)
            result.turns += 1

            try:
                await machine.apply_turn(turn)
            except ValidationException as e:
                result.rejected_turns += 1
                log.warning(f"Rejected {turn.sender} turn: {e.message}")
            except ConflictException as e:
                self.forget(negotiation_id)
                result.error = e.code
                log.warning(f"Standing down: {e.message}")
                result.state = await asyncio.to_thread(self.store.get_negotiation, negotiation_id)
                return result

        result.state = machine.state
        result.stats = machine.tracker.stats()
        log.info(
            f"Finished {result.state.status} after {result.turns} turns, "
            f"{result.stats.total_offers} offers, supplier moved "
            f"{result.stats.price_improvement_percent:.1f}%"
        )
        return result

    async def run_sourcing_request(self, quote_id: str, agent_factory: AgentFactory) -> SourcingRunResult:
        """
        Run every negotiation of a quote concurrently, then decide once.

        Args:
            quote_id: Sourcing request id
            agent_factory: Builds the agent for a negotiation

        Returns:
            SourcingRunResult; decision is None when a negotiation is still
            active or none completed
        """
        negotiations = await asyncio.to_thread(self.store.list_negotiations, quote_id)
        semaphore = asyncio.Semaphore(self.parallel_limit)

        async def _run(state: NegotiationState) -> NegotiationRunResult:
            async with semaphore:
                return await self.run_negotiation(state.negotiation_id, agent_factory(state))

        logger.info(f"Running {len(negotiations)} negotiations for quote {quote_id}")
        pending = [n for n in negotiations if not n.is_terminal]
        outcomes = await asyncio.gather(*(_run(n) for n in pending), return_exceptions=True)

        summary = SourcingRunResult(quote_id=quote_id)
        for state, outcome in zip(pending, outcomes):
            if isinstance(outcome, Exception):
                get_negotiation_logger(__name__, state.negotiation_id).error(
                    f"Negotiation task failed: {outcome}"
                )
                outcome = NegotiationRunResult(
                    negotiation_id=state.negotiation_id,
                    supplier_id=state.supplier_id,
                    state=state,
                    error=getattr(outcome, "code", type(outcome).__name__),
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            summary.negotiations.append(outcome)

        try:
            summary.decision = await asyncio.to_thread(
                self.decision_engine.evaluate_if_resolved, quote_id
            )
        except (NoCompletedNegotiationsException, ConflictException) as e:
            summary.decision_error = e.code
            logger.warning(f"No decision recorded for quote {quote_id}: {e.message}")

        return summary
