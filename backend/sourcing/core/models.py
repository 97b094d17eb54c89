"""
ORM models for negotiation persistence.

WHAT: SQLAlchemy models for quotes, negotiations, messages, offers and decisions
WHY: Persist the replayable history each negotiation state machine writes
HOW: Declarative models with constraints, relationships and indexes
"""

from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from .database import Base


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums for status fields
class QuoteStatus(str, enum.Enum):
    """Sourcing request status values."""
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NegotiationStatus(str, enum.Enum):
    """Per-supplier negotiation status values."""
    ACTIVE = "active"
    COMPLETED = "completed"
    IMPASSE = "impasse"


class Quote(Base):
    """
    Quote table - one sourcing request from the brand.

    WHAT: Requested products, buyer priorities and overall status
    WHY: Groups the per-supplier negotiations that a Decision is drawn from
    HOW: Primary key on id with CASCADE relationships
    """
    __tablename__ = "quotes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(SQLEnum(QuoteStatus), nullable=False, default=QuoteStatus.PENDING)
    products = Column(JSON, nullable=False)  # [{productId, quantity}]
    user_notes = Column(Text, nullable=True)
    target_unit_price = Column(Float, nullable=True)

    # Decision priorities (0-100 each)
    priority_quality = Column(Float, nullable=False)
    priority_cost = Column(Float, nullable=False)
    priority_lead_time = Column(Float, nullable=False)
    priority_payment_terms = Column(Float, nullable=False)

    __table_args__ = (
        CheckConstraint("target_unit_price IS NULL OR target_unit_price > 0", name="check_target_price_positive"),
        CheckConstraint("priority_quality BETWEEN 0 AND 100", name="check_priority_quality_range"),
        CheckConstraint("priority_cost BETWEEN 0 AND 100", name="check_priority_cost_range"),
        CheckConstraint("priority_lead_time BETWEEN 0 AND 100", name="check_priority_lead_time_range"),
        CheckConstraint("priority_payment_terms BETWEEN 0 AND 100", name="check_priority_payment_range"),
    )

    # Relationships
    negotiations = relationship("Negotiation", back_populates="quote", cascade="all, delete-orphan")
    decision = relationship("Decision", back_populates="quote", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Quote(id={self.id}, status={self.status})>"


class Negotiation(Base):
    """
    Negotiation table - the brand's exchange with one supplier.

    WHAT: Status, round counter and final offer of one negotiation
    WHY: Exactly one per (quote, supplier); the CAS target for turn writes
    HOW: UNIQUE (quote_id, supplier_id), CHECKs on supplier slot and rounds
    """
    __tablename__ = "negotiations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    quote_id = Column(String(36), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False)
    supplier_id = Column(Integer, nullable=False)
    status = Column(SQLEnum(NegotiationStatus), nullable=False, default=NegotiationStatus.ACTIVE)
    round_count = Column(Integer, nullable=False, default=0)
    final_offer = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("quote_id", "supplier_id", name="unique_quote_supplier"),
        CheckConstraint("supplier_id BETWEEN 1 AND 4", name="check_supplier_slot"),
        CheckConstraint("round_count >= 0", name="check_round_count_non_negative"),
        Index("idx_negotiation_status", "status"),
    )

    # Relationships
    quote = relationship("Quote", back_populates="negotiations")
    messages = relationship(
        "Message", back_populates="negotiation", cascade="all, delete-orphan",
        order_by="Message.timestamp"
    )
    offers = relationship(
        "OfferLog", back_populates="negotiation", cascade="all, delete-orphan",
        order_by="OfferLog.id"
    )

    def __repr__(self):
        return f"<Negotiation(id={self.id}, supplier={self.supplier_id}, status={self.status})>"


class Message(Base):
    """
    Message table - append-only negotiation transcript.

    WHAT: Agent and user messages in timestamp order
    WHY: The transcript is what agents read and what gets replayed
    HOW: Foreign key to Negotiation; metadata kept as JSON
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid4()))
    negotiation_id = Column(String(36), ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False)
    sender = Column(String(20), nullable=False)  # brand, supplier or user
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=_utcnow)
    message_metadata = Column("metadata", JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("sender IN ('brand', 'supplier', 'user')", name="check_message_sender"),
        Index("idx_message_negotiation_time", "negotiation_id", "timestamp"),
    )

    # Relationships
    negotiation = relationship("Negotiation", back_populates="messages")

    def __repr__(self):
        return f"<Message(id={self.message_id}, sender={self.sender})>"


class OfferLog(Base):
    """
    Offer table - proposals and counter-offers issued during a negotiation.

    WHAT: Offer ids with their headline terms
    WHY: Lets a restarted process rebuild the set of referenceable offer ids
    HOW: Foreign key to Negotiation; offer_id unique
    """
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offer_id = Column(String(100), unique=True, nullable=False)
    negotiation_id = Column(String(36), ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False)
    source = Column(String(20), nullable=True)
    round_number = Column(Integer, nullable=False, default=0)
    unit_price = Column(Float, nullable=False)
    lead_time_days = Column(Integer, nullable=False)
    payment_terms = Column(String(50), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("unit_price > 0", name="check_offer_price_positive"),
        CheckConstraint("lead_time_days > 0", name="check_offer_lead_time_positive"),
        Index("idx_offer_negotiation", "negotiation_id"),
    )

    # Relationships
    negotiation = relationship("Negotiation", back_populates="offers")

    def __repr__(self):
        return f"<OfferLog(offer_id={self.offer_id}, price=${self.unit_price})>"


class Decision(Base):
    """
    Decision table - the winning supplier for a quote.

    WHAT: Selected supplier, reasoning and per-slot score breakdown
    WHY: Written exactly once per quote
    HOW: UNIQUE quote_id; a second insert raises IntegrityError
    """
    __tablename__ = "decisions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    quote_id = Column(String(36), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False)
    selected_supplier_id = Column(Integer, nullable=False)
    reasoning = Column(Text, nullable=False)
    evaluation_scores = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("quote_id", name="unique_decision_per_quote"),
        CheckConstraint("selected_supplier_id BETWEEN 1 AND 4", name="check_selected_supplier_slot"),
    )

    # Relationships
    quote = relationship("Quote", back_populates="decision")

    def __repr__(self):
        return f"<Decision(quote={self.quote_id}, supplier={self.selected_supplier_id})>"
