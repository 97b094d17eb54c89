"""
Schema and constraint tests.

WHAT: Test CHECK, UNIQUE and foreign key constraints on the negotiation tables
WHY: Ensure data integrity at database level, below the store's own checks
HOW: Insert invalid rows and verify IntegrityError is raised
"""

import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from sourcing.core.database import build_engine, build_session_factory, init_db
from sourcing.core.models import (
    Decision,
    Message,
    Negotiation,
    NegotiationStatus,
    OfferLog,
    Quote,
    QuoteStatus,
)


@pytest.fixture(scope="function")
def db_session(tmp_path):
    """Create a fresh database for each test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'schema.db'}")
    init_db(engine)
    session = build_session_factory(engine)()
    yield session
    session.rollback()
    session.close()
    engine.dispose()


def _quote(db, **overrides):
    values = dict(
        id=str(uuid.uuid4()),
        status=QuoteStatus.NEGOTIATING,
        products=[{"productId": "prod-1", "quantity": 10}],
        priority_quality=25,
        priority_cost=50,
        priority_lead_time=15,
        priority_payment_terms=10,
    )
    values.update(overrides)
    quote = Quote(**values)
    db.add(quote)
    db.flush()
    return quote


def _negotiation(db, quote, supplier_id=1):
    negotiation = Negotiation(
        id=str(uuid.uuid4()),
        quote_id=quote.id,
        supplier_id=supplier_id,
        status=NegotiationStatus.ACTIVE,
    )
    db.add(negotiation)
    db.flush()
    return negotiation


@pytest.mark.unit
class TestCheckConstraints:
    """Test CHECK constraints."""

    def test_priority_range(self, db_session):
        """Test that priorities stay within 0-100."""
        with pytest.raises(IntegrityError):
            _quote(db_session, priority_cost=120)

    def test_target_price_positive(self, db_session):
        """Test that a target price, when set, is > 0."""
        with pytest.raises(IntegrityError):
            _quote(db_session, target_unit_price=0)

    def test_supplier_slot_range(self, db_session):
        """Test that supplier_id is one of the four slots."""
        quote = _quote(db_session)

        with pytest.raises(IntegrityError):
            _negotiation(db_session, quote, supplier_id=5)

    def test_message_sender(self, db_session):
        """Test that only brand, supplier and user can send messages."""
        negotiation = _negotiation(db_session, _quote(db_session))
        db_session.add(Message(negotiation_id=negotiation.id, sender="system", content="hi"))

        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_offer_price_positive(self, db_session):
        """Test that logged offers carry a positive price."""
        negotiation = _negotiation(db_session, _quote(db_session))
        db_session.add(OfferLog(
            offer_id="offer-1", negotiation_id=negotiation.id, unit_price=-1.0,
            lead_time_days=30, payment_terms="30/70",
        ))

        with pytest.raises(IntegrityError):
            db_session.flush()


@pytest.mark.unit
class TestUniqueConstraints:
    """Test UNIQUE constraints."""

    def test_one_negotiation_per_supplier(self, db_session):
        """Test that a supplier slot appears once per quote."""
        quote = _quote(db_session)
        _negotiation(db_session, quote, supplier_id=2)

        with pytest.raises(IntegrityError):
            _negotiation(db_session, quote, supplier_id=2)

    def test_one_decision_per_quote(self, db_session):
        """Test that a quote has at most one decision row."""
        quote = _quote(db_session)
        for supplier_id in (1, 2):
            db_session.add(Decision(
                quote_id=quote.id, selected_supplier_id=supplier_id,
                reasoning="r", evaluation_scores={},
            ))

        with pytest.raises(IntegrityError):
            db_session.flush()


@pytest.mark.unit
class TestForeignKeys:
    """Test foreign keys and cascades."""

    def test_negotiation_requires_quote(self, db_session):
        """Test that negotiations reference an existing quote."""
        db_session.add(Negotiation(
            id=str(uuid.uuid4()), quote_id="missing", supplier_id=1,
            status=NegotiationStatus.ACTIVE,
        ))

        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_quote_delete_cascades(self, db_session):
        """Test that deleting a quote removes its negotiations and messages."""
        quote = _quote(db_session)
        negotiation = _negotiation(db_session, quote)
        db_session.add(Message(negotiation_id=negotiation.id, sender="brand", content="hi"))
        db_session.flush()

        db_session.delete(quote)
        db_session.flush()

        assert db_session.query(Negotiation).count() == 0
        assert db_session.query(Message).count() == 0
