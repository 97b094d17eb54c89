"""
Integration tests for the negotiation runner.

WHAT: Test full sourcing runs, agent loop limits, conflicts and rehydration
WHY: Verify concurrent negotiations, persistence and the single decision together
HOW: Scripted agents against a real SQLite store
"""

import pytest

from sourcing.models.negotiation import AgentTurn
from sourcing.services.negotiation_runner import NegotiationRunner
from sourcing.services.scoring import ScoringConfig
from sourcing.utils.exceptions import ConflictException

from tests.fixtures.scripted_agent import (
    TalkativeAgent,
    agent_factory,
    counter,
    latest_offer_id,
    propose,
    reject,
)

# Final prices 25 / 22 / 28 after three counter-offers each
PRICE_SCRIPT = {
    1: [30.0, 24.0, 27.0, 25.0],
    2: [26.0, 21.0, 23.0, 22.0],
    3: [32.0, 27.0, 29.0, 28.0],
}
LEAD_TIMES = {1: 30, 2: 35, 3: 20}


class SequenceAgent:
    """Plays a fixed list of turn builders, each given the transcript."""

    def __init__(self, builders):
        self.builders = list(builders)

    async def next_turn(self, transcript, state, guidance) -> AgentTurn:
        return self.builders.pop(0)(transcript)


@pytest.fixture
def runner(store, negotiation_config):
    return NegotiationRunner(
        store,
        negotiation_config=negotiation_config,
        scoring_config=ScoringConfig(),
        max_agent_turns=10,
        parallel_limit=2,
    )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_sourcing_request_runs_to_decision(runner, store, open_quote):
    """Test three concurrent negotiations complete and supplier 2 is selected."""
    quote, negotiations = open_quote

    result = await runner.run_sourcing_request(quote.quote_id, agent_factory(PRICE_SCRIPT, LEAD_TIMES))

    assert result.decision_error is None
    assert result.decision.selected_supplier_id == 2
    assert result.decision.evaluation_scores["supplier2"].total_score == 84.75
    assert result.decision.evaluation_scores["supplier4"].total_score == 0.0

    for run in result.negotiations:
        assert run.error is None
        assert run.turns == 5
        assert run.state.status == "completed"
        assert run.state.round_count == 3

    by_supplier = {r.supplier_id: r for r in result.negotiations}
    assert by_supplier[2].stats.total_offers == 4
    assert by_supplier[2].stats.price_improvement_percent == pytest.approx(300 / 26)

    stored = {n.supplier_id: n for n in store.list_negotiations(quote.quote_id)}
    assert {s: n.final_offer.unit_price for s, n in stored.items()} == {1: 25.0, 2: 22.0, 3: 28.0}
    assert len(store.get_messages(stored[2].negotiation_id)) == 5
    assert len(store.get_offer_history(stored[2].negotiation_id)) == 4
    assert store.get_decision(quote.quote_id).selected_supplier_id == 2
    assert store.get_quote(quote.quote_id).status == "completed"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_agent_turn_limit_leaves_negotiation_active(store, open_quote, negotiation_config):
    """Test an agent that never calls a tool is stopped after max_agent_turns."""
    runner = NegotiationRunner(store, negotiation_config=negotiation_config, max_agent_turns=3)
    quote, _ = open_quote

    result = await runner.run_sourcing_request(quote.quote_id, lambda state: TalkativeAgent())

    assert all(r.error == "max_agent_turns" for r in result.negotiations)
    assert all(r.turns == 3 and r.state.status == "active" for r in result.negotiations)
    assert result.decision is None
    assert result.decision_error is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_all_impasse_records_no_decision(runner, store, open_quote):
    """Test a quote where every supplier walks away ends without a decision."""
    quote, _ = open_quote

    def walk_away(state):
        return SequenceAgent([
            lambda t: propose(state.supplier_id, 40.0),
            lambda t: reject(latest_offer_id(t), ended=True),
        ])

    result = await runner.run_sourcing_request(quote.quote_id, walk_away)

    assert all(r.state.status == "impasse" for r in result.negotiations)
    assert result.decision is None
    assert result.decision_error == "NO_COMPLETED_NEGOTIATIONS"
    assert store.get_decision(quote.quote_id) is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_turns_are_counted_and_retried(runner, open_quote):
    """Test a rejected tool call does not stop the agent loop."""
    negotiation = open_quote[1][0]
    agent = SequenceAgent([
        lambda t: propose(1, 30.0),
        lambda t: counter("offer-that-never-existed", 25.0),
        lambda t: reject(latest_offer_id(t), ended=True),
    ])

    result = await runner.run_negotiation(negotiation.negotiation_id, agent)

    assert result.turns == 3
    assert result.rejected_turns == 1
    assert result.state.status == "impasse"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_user_intervention_reaches_agent(runner, store, open_quote):
    """Test a stored intervention shows up as guidance on the next turn."""
    quote, negotiations = open_quote
    store.add_user_intervention(negotiations[0].negotiation_id, "Keep the price under $26")
    factory = agent_factory({1: PRICE_SCRIPT[1]})
    agents = {}

    def build(state):
        agents[state.supplier_id] = factory(state)
        return agents[state.supplier_id]

    await runner.run_negotiation(negotiations[0].negotiation_id, build(negotiations[0]))

    first, later = agents[1].guidance_seen[0], agents[1].guidance_seen[1:]
    assert "Keep the price under $26" in first.summary
    assert first.context.startswith("---\n## User Guidance (1 message)")
    assert all(g.is_empty for g in later)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_fresh_runner_rehydrates_from_store(store, open_quote, negotiation_config):
    """Test a new process can continue a negotiation from stored history."""
    negotiation_id = open_quote[1][0].negotiation_id
    first = NegotiationRunner(store, negotiation_config=negotiation_config)
    opening = await first.apply_turn(negotiation_id, propose(1, 30.0))

    second = NegotiationRunner(store, negotiation_config=negotiation_config)
    outcome = await second.apply_turn(
        negotiation_id, counter(opening.message.metadata.offer_id, 26.0)
    )

    assert outcome.state.round_count == 1
    machine = await second.get_machine(negotiation_id)
    assert len(machine.transcript) == 2
    assert store.get_negotiation(negotiation_id).round_count == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_concurrent_writer_conflict_evicts_machine(store, open_quote, negotiation_config):
    """Test a stale runner gets a conflict, then reloads the newer state."""
    negotiation_id = open_quote[1][0].negotiation_id
    runner_a = NegotiationRunner(store, negotiation_config=negotiation_config)
    runner_b = NegotiationRunner(store, negotiation_config=negotiation_config)

    opening = await runner_a.apply_turn(negotiation_id, propose(1, 30.0))
    offer_id = opening.message.metadata.offer_id
    await runner_b.get_machine(negotiation_id)
    await runner_a.apply_turn(negotiation_id, counter(offer_id, 26.0))

    with pytest.raises(ConflictException):
        await runner_b.apply_turn(negotiation_id, counter(offer_id, 27.0))

    reloaded = await runner_b.get_machine(negotiation_id)
    assert reloaded.state.round_count == 1
    assert store.get_negotiation(negotiation_id).round_count == 1
    # Only the opening offer and the winning counter reached the transcript
    transcript = store.get_messages(negotiation_id)
    assert len(transcript) == 2
    assert [m.metadata.offer_id for m in transcript] == [
        offer_id, reloaded.tracker.latest_offer().offer_id,
    ]
