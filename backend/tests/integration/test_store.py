"""
Integration tests for the SQLAlchemy store.

WHAT: Test persistence, compare-and-swap updates and decision uniqueness
WHY: The store is the last line of defence for terminal immutability
HOW: Real SQLite database per test through the store fixture
"""

import pytest

from sourcing.models.negotiation import (
    MessageMetadata,
    MessageRecord,
    OfferReceived,
    ScoreBreakdown,
)
from sourcing.models.offer import Offer
from sourcing.models.quote import QuoteProduct
from sourcing.utils.exceptions import (
    DecisionAlreadyExistsException,
    NegotiationNotFoundException,
    NegotiationTerminalException,
    QuoteNotFoundException,
    StaleNegotiationStateException,
    ValidationException,
)


def _scores(winner=2):
    return {
        f"supplier{i}": ScoreBreakdown(total_score=80.0 if i == winner else 0.0)
        for i in range(1, 5)
    }


@pytest.mark.integration
class TestQuotes:
    """Quote creation and lookup."""

    def test_create_quote_opens_active_negotiations(self, store, open_quote):
        """Test one active negotiation per supplier, quote negotiating."""
        quote, negotiations = open_quote

        assert quote.status == "negotiating"
        assert [n.supplier_id for n in negotiations] == [1, 2, 3]
        assert all(n.status == "active" and n.round_count == 0 for n in negotiations)
        assert store.get_quote(quote.quote_id).products[0].product_id == "prod-1"

    def test_target_price_reaches_negotiations(self, store, priorities):
        """Test the quote's target price is visible on each negotiation."""
        quote, negotiations = store.create_quote(
            [QuoteProduct(product_id="prod-1", quantity=100)],
            priorities,
            target_unit_price=18.5,
            supplier_ids=[4],
        )

        assert store.get_negotiation(negotiations[0].negotiation_id).target_unit_price == 18.5
        assert store.list_negotiations(quote.quote_id)[0].supplier_id == 4

    def test_duplicate_supplier_ids_rejected(self, store, priorities):
        """Test a supplier slot cannot be negotiated twice in one quote."""
        with pytest.raises(ValidationException):
            store.create_quote(
                [QuoteProduct(product_id="prod-1", quantity=1)], priorities, supplier_ids=[1, 1]
            )

    def test_unknown_ids(self, store):
        """Test unknown quote and negotiation ids raise not-found errors."""
        with pytest.raises(QuoteNotFoundException):
            store.get_quote("missing")
        with pytest.raises(NegotiationNotFoundException):
            store.get_negotiation("missing")


@pytest.mark.integration
class TestNegotiationWrites:
    """Status updates and transcript writes."""

    def test_round_update_with_expected_round(self, store, open_quote):
        """Test a CAS update advances the round once."""
        negotiation = open_quote[1][0]

        store.update_status(negotiation.negotiation_id, "active", 1, expected_round_count=0)

        assert store.get_negotiation(negotiation.negotiation_id).round_count == 1
        with pytest.raises(StaleNegotiationStateException):
            store.update_status(negotiation.negotiation_id, "active", 1, expected_round_count=0)

    def test_status_update_stores_message_in_same_transaction(self, store, open_quote):
        """Test a message passed with the swap is stored and returned."""
        negotiation_id = open_quote[1][0].negotiation_id

        stored = store.update_status(
            negotiation_id, "active", 1, expected_round_count=0,
            message=MessageRecord(negotiation_id=negotiation_id, sender="brand", content="Could you do $27.00?"),
        )

        assert stored.message_id
        assert [m.content for m in store.get_messages(negotiation_id)] == ["Could you do $27.00?"]

    def test_stale_update_leaves_no_message(self, store, open_quote):
        """Test a lost swap rolls back the message that came with it."""
        negotiation_id = open_quote[1][0].negotiation_id
        store.update_status(negotiation_id, "active", 1, expected_round_count=0)

        with pytest.raises(StaleNegotiationStateException):
            store.update_status(
                negotiation_id, "active", 1, expected_round_count=0,
                message=MessageRecord(negotiation_id=negotiation_id, sender="brand", content="Could you do $26.00?"),
            )

        assert store.get_messages(negotiation_id) == []
        assert store.get_negotiation(negotiation_id).round_count == 1

    def test_completion_stores_final_offer(self, store, open_quote):
        """Test finalOffer and completedAt are written with the terminal status."""
        negotiation_id = open_quote[1][0].negotiation_id
        offer = Offer(unit_price=22.0, lead_time_days=35, payment_terms="30/70")

        store.update_status(negotiation_id, "completed", 0, offer, expected_round_count=0)

        stored = store.get_negotiation(negotiation_id)
        assert stored.status == "completed"
        assert stored.final_offer == offer
        assert stored.completed_at is not None

    def test_terminal_negotiation_is_immutable(self, store, open_quote):
        """Test no status change or message is accepted after impasse."""
        negotiation_id = open_quote[1][0].negotiation_id
        store.update_status(negotiation_id, "impasse", 0)

        with pytest.raises(NegotiationTerminalException):
            store.update_status(negotiation_id, "completed", 0)
        with pytest.raises(NegotiationTerminalException):
            store.append_message(MessageRecord(
                negotiation_id=negotiation_id, sender="brand", content="One more thing"
            ))
        assert store.get_negotiation(negotiation_id).status == "impasse"

    def test_messages_keep_order_and_metadata(self, store, open_quote):
        """Test transcript order and metadata survive a round trip."""
        negotiation_id = open_quote[1][0].negotiation_id
        store.append_message(MessageRecord(
            negotiation_id=negotiation_id,
            sender="supplier",
            content="Opening offer",
            metadata=MessageMetadata(tool_calls=["propose-offer"], offer_id="offer-1-x-1"),
        ))
        store.append_message(MessageRecord(
            negotiation_id=negotiation_id, sender="brand", content="Too high"
        ))

        messages = store.get_messages(negotiation_id)

        assert [m.sender for m in messages] == ["supplier", "brand"]
        assert messages[0].metadata.offer_id == "offer-1-x-1"
        assert messages[0].metadata.tool_calls == ["propose-offer"]
        assert messages[1].metadata is None
        assert all(m.message_id for m in messages)

    def test_user_interventions_since(self, store, open_quote):
        """Test interventions are filtered by timestamp, inclusive."""
        negotiation_id = open_quote[1][0].negotiation_id
        first = store.add_user_intervention(negotiation_id, "Aim lower")
        second = store.add_user_intervention(negotiation_id, "Ask for 30 days")
        store.append_message(MessageRecord(
            negotiation_id=negotiation_id, sender="brand", content="Agent text"
        ))

        everything = store.get_user_interventions(negotiation_id)
        recent = store.get_user_interventions(negotiation_id, since=second.timestamp)

        assert [i.message_id for i in everything] == [first.message_id, second.message_id]
        assert second.message_id in {i.message_id for i in recent}

    def test_offer_history_round_trip(self, store, open_quote):
        """Test logged offers come back as tracker entries in order."""
        negotiation_id = open_quote[1][0].negotiation_id
        for i, (price, source) in enumerate([(30.0, "supplier"), (25.0, "brand")]):
            store.record_offer(negotiation_id, OfferReceived(
                supplier_id=1, avg_price=price, lead_time=30, payment_terms="30/70",
                offer_id=f"offer-{i}", source=source, round_number=i,
            ))

        history = store.get_offer_history(negotiation_id)

        assert [(e.offer_id, e.source, e.offer.unit_price) for e in history] == [
            ("offer-0", "supplier", 30.0),
            ("offer-1", "brand", 25.0),
        ]


@pytest.mark.integration
class TestDecisions:
    """Decision persistence."""

    def test_decision_is_unique(self, store, open_quote):
        """Test a second decision fails and the first stays unchanged."""
        quote_id = open_quote[0].quote_id
        first = store.create_decision(quote_id, 2, "Supplier 2 wins", _scores(2))

        with pytest.raises(DecisionAlreadyExistsException):
            store.create_decision(quote_id, 3, "Supplier 3 wins", _scores(3))

        stored = store.get_decision(quote_id)
        assert stored.decision_id == first.decision_id
        assert stored.selected_supplier_id == 2
        assert stored.evaluation_scores["supplier2"].total_score == 80.0

    def test_decision_completes_quote(self, store, open_quote):
        """Test recording a decision marks the quote completed."""
        quote_id = open_quote[0].quote_id

        assert store.get_decision(quote_id) is None
        store.create_decision(quote_id, 1, "Only option", _scores(1))

        quote = store.get_quote(quote_id)
        assert quote.status == "completed"
        assert quote.completed_at is not None

    def test_decision_for_unknown_quote(self, store):
        """Test decisions need an existing quote."""
        with pytest.raises(QuoteNotFoundException):
            store.create_decision("missing", 1, "n/a", _scores(1))
