"""
SQLAlchemy-backed negotiation store.

WHAT: Quote/negotiation/message/offer/decision persistence
WHY: Concrete gateway behind the negotiation core and the HTTP API
HOW: Sync sessions via get_db(); StoreCallbacks wraps the write paths in
     asyncio.to_thread for the async NegotiationCallbacks contract.
     Status updates are compare-and-swap UPDATEs keyed by negotiation id.
"""

import asyncio
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession, sessionmaker

from .config import settings
from .database import get_db
from .models import (
    Quote, Negotiation, Message, OfferLog, Decision as DecisionRow,
    QuoteStatus, NegotiationStatus
)
from ..models.negotiation import (
    Decision,
    DecisionPriorities,
    MessageMetadata,
    MessageRecord,
    NegotiationState,
    NegotiationStatusValue,
    OfferReceived,
    ScoreBreakdown,
    UserInterventionMessage,
    utc_now,
)
from ..models.offer import Offer
from ..models.quote import QuoteProduct, QuoteRecord
from ..services.offer_tracker import OfferHistoryEntry
from ..utils.exceptions import (
    DecisionAlreadyExistsException,
    NegotiationNotFoundException,
    NegotiationTerminalException,
    QuoteNotFoundException,
    StaleNegotiationStateException,
    ValidationException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _quote_record(row: Quote) -> QuoteRecord:
    return QuoteRecord(
        quote_id=row.id,
        products=[QuoteProduct.model_validate(p) for p in row.products],
        user_notes=row.user_notes,
        target_unit_price=row.target_unit_price,
        decision_priorities=DecisionPriorities(
            quality=row.priority_quality,
            cost=row.priority_cost,
            lead_time=row.priority_lead_time,
            payment_terms=row.priority_payment_terms,
        ),
        status=row.status.value,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


def _negotiation_state(row: Negotiation, target_unit_price: float | None = None) -> NegotiationState:
    return NegotiationState(
        negotiation_id=row.id,
        quote_id=row.quote_id,
        supplier_id=row.supplier_id,
        status=row.status.value,
        round_count=row.round_count,
        final_offer=Offer.model_validate(row.final_offer) if row.final_offer else None,
        created_at=row.created_at,
        completed_at=row.completed_at,
        target_unit_price=target_unit_price,
    )


def _message_record(row: Message) -> MessageRecord:
    return MessageRecord(
        message_id=row.message_id,
        negotiation_id=row.negotiation_id,
        sender=row.sender,
        content=row.content,
        timestamp=row.timestamp,
        metadata=MessageMetadata.model_validate(row.message_metadata) if row.message_metadata else None,
    )


def _decision(row: DecisionRow) -> Decision:
    return Decision(
        decision_id=row.id,
        quote_id=row.quote_id,
        selected_supplier_id=row.selected_supplier_id,
        reasoning=row.reasoning,
        evaluation_scores={
            key: ScoreBreakdown.model_validate(value)
            for key, value in row.evaluation_scores.items()
        },
        created_at=row.created_at,
    )


class SQLStore:
    """
    Persistence gateway over SQLAlchemy.

    WHAT: CRUD for quotes and negotiations plus the negotiation write paths
    WHY: One place enforces terminal immutability and decision uniqueness
    HOW: Short transactions through get_db(); domain models in and out
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    def _db(self):
        return get_db(self.session_factory)

    # ---------- quotes ----------

    def create_quote(
        self,
        products: list[QuoteProduct],
        decision_priorities: DecisionPriorities,
        *,
        target_unit_price: float | None = None,
        user_notes: str | None = None,
        supplier_ids: list[int] | None = None,
    ) -> tuple[QuoteRecord, list[NegotiationState]]:
        """
        Open a sourcing request with one active negotiation per supplier.

        Args:
            products: Requested products
            decision_priorities: Scoring weights
            target_unit_price: Optional buyer target used by the price-gap check
            user_notes: Free-form notes for the agents
            supplier_ids: Supplier slots to negotiate with (default from settings)

        Returns:
            (quote, negotiations)
        """
        supplier_ids = supplier_ids or settings.get_default_supplier_ids()
        if len(set(supplier_ids)) != len(supplier_ids):
            raise ValidationException(
                "Duplicate supplier ids",
                field_errors=[{"field": "supplierIds", "message": "must be unique"}],
            )
        if any(s not in (1, 2, 3, 4) for s in supplier_ids):
            raise ValidationException(
                "Supplier ids must be between 1 and 4",
                field_errors=[{"field": "supplierIds", "message": "allowed values are 1-4"}],
            )

        with self._db() as db:
            quote = Quote(
                id=str(uuid4()),
                status=QuoteStatus.NEGOTIATING,
                products=[p.model_dump(by_alias=True) for p in products],
                user_notes=user_notes,
                target_unit_price=target_unit_price,
                priority_quality=decision_priorities.quality,
                priority_cost=decision_priorities.cost,
                priority_lead_time=decision_priorities.lead_time,
                priority_payment_terms=decision_priorities.payment_terms,
            )
            db.add(quote)
            db.flush()

            rows = []
            for supplier_id in sorted(supplier_ids):
                row = Negotiation(
                    id=str(uuid4()),
                    quote_id=quote.id,
                    supplier_id=supplier_id,
                    status=NegotiationStatus.ACTIVE,
                    round_count=0,
                )
                db.add(row)
                rows.append(row)
            db.flush()

            logger.info(f"Created quote {quote.id} with suppliers {sorted(supplier_ids)}")
            return (
                _quote_record(quote),
                [_negotiation_state(r, target_unit_price) for r in rows],
            )

    def _get_quote_row(self, db: DBSession, quote_id: str) -> Quote:
        quote = db.get(Quote, quote_id)
        if quote is None:
            raise QuoteNotFoundException(quote_id)
        return quote

    def get_quote(self, quote_id: str) -> QuoteRecord:
        with self._db() as db:
            return _quote_record(self._get_quote_row(db, quote_id))

    def get_decision_priorities(self, quote_id: str) -> DecisionPriorities:
        return self.get_quote(quote_id).decision_priorities

    # ---------- negotiations ----------

    def _get_negotiation_row(self, db: DBSession, negotiation_id: str) -> Negotiation:
        row = db.get(Negotiation, negotiation_id)
        if row is None:
            raise NegotiationNotFoundException(negotiation_id)
        return row

    def get_negotiation(self, negotiation_id: str) -> NegotiationState:
        with self._db() as db:
            row = self._get_negotiation_row(db, negotiation_id)
            return _negotiation_state(row, row.quote.target_unit_price)

    def list_negotiations(self, quote_id: str) -> list[NegotiationState]:
        with self._db() as db:
            quote = self._get_quote_row(db, quote_id)
            rows = db.scalars(
                select(Negotiation)
                .where(Negotiation.quote_id == quote_id)
                .order_by(Negotiation.supplier_id)
            ).all()
            return [_negotiation_state(r, quote.target_unit_price) for r in rows]

    def update_status(
        self,
        negotiation_id: str,
        status: NegotiationStatusValue,
        round_count: int,
        final_offer: Offer | None = None,
        *,
        expected_round_count: int | None = None,
        message: MessageRecord | None = None,
    ) -> MessageRecord | None:
        """
        Compare-and-swap status/round update.

        Only an active negotiation (at expected_round_count, when given) is
        updated; anything else raises a ConflictException subclass. finalOffer
        and completedAt are written with the terminal transition. A message
        passed along is inserted in the same transaction, so a writer that
        loses the swap leaves nothing behind.

        Returns:
            The stored message, when one was given
        """
        values = {"status": NegotiationStatus(status), "round_count": round_count}
        if status != "active":
            values["completed_at"] = utc_now()
            values["final_offer"] = final_offer.model_dump(by_alias=True, exclude_none=True) if final_offer else None

        with self._db() as db:
            stmt = (
                update(Negotiation)
                .where(Negotiation.id == negotiation_id)
                .where(Negotiation.status == NegotiationStatus.ACTIVE)
            )
            if expected_round_count is not None:
                stmt = stmt.where(Negotiation.round_count == expected_round_count)

            result = db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                row = self._get_negotiation_row(db, negotiation_id)
                if row.status != NegotiationStatus.ACTIVE:
                    raise NegotiationTerminalException(negotiation_id, row.status.value)
                raise StaleNegotiationStateException(negotiation_id, expected_round_count)

            logger.debug(f"Negotiation {negotiation_id} -> {status} (round {round_count})")
            if message is None:
                return None
            return self._add_message(db, message)

    # ---------- messages ----------

    def _add_message(self, db: DBSession, message: MessageRecord) -> MessageRecord:
        stored = Message(
            message_id=message.message_id or str(uuid4()),
            negotiation_id=message.negotiation_id,
            sender=message.sender,
            content=message.content,
            timestamp=message.timestamp,
            message_metadata=(
                message.metadata.model_dump(by_alias=True, exclude_none=True)
                if message.metadata else None
            ),
        )
        db.add(stored)
        db.flush()
        return _message_record(stored)

    def append_message(self, message: MessageRecord) -> MessageRecord:
        """Append to the transcript; terminal negotiations accept no messages."""
        with self._db() as db:
            row = self._get_negotiation_row(db, message.negotiation_id)
            if row.status != NegotiationStatus.ACTIVE:
                raise NegotiationTerminalException(row.id, row.status.value)
            return self._add_message(db, message)

    def get_messages(self, negotiation_id: str) -> list[MessageRecord]:
        with self._db() as db:
            self._get_negotiation_row(db, negotiation_id)
            rows = db.scalars(
                select(Message)
                .where(Message.negotiation_id == negotiation_id)
                .order_by(Message.timestamp, Message.id)
            ).all()
            return [_message_record(r) for r in rows]

    def add_user_intervention(self, negotiation_id: str, content: str) -> UserInterventionMessage:
        record = self.append_message(MessageRecord(
            negotiation_id=negotiation_id, sender="user", content=content
        ))
        logger.info(f"User intervention added to negotiation {negotiation_id}")
        return UserInterventionMessage(
            content=record.content, timestamp=record.timestamp, message_id=record.message_id
        )

    def get_user_interventions(
        self, negotiation_id: str, since: datetime | None = None
    ) -> list[UserInterventionMessage]:
        """User messages at or after `since`; callers de-duplicate by message id."""
        with self._db() as db:
            stmt = (
                select(Message)
                .where(Message.negotiation_id == negotiation_id)
                .where(Message.sender == "user")
            )
            if since is not None:
                stmt = stmt.where(Message.timestamp >= since)
            rows = db.scalars(stmt.order_by(Message.timestamp, Message.id)).all()
            return [
                UserInterventionMessage(content=r.content, timestamp=r.timestamp, message_id=r.message_id)
                for r in rows
            ]

    # ---------- offers ----------

    def record_offer(self, negotiation_id: str, offer: OfferReceived) -> None:
        with self._db() as db:
            db.add(OfferLog(
                offer_id=offer.offer_id or str(uuid4()),
                negotiation_id=negotiation_id,
                source=offer.source,
                round_number=offer.round_number,
                unit_price=offer.avg_price,
                lead_time_days=offer.lead_time,
                payment_terms=offer.payment_terms,
            ))

    def get_offer_history(self, negotiation_id: str) -> list[OfferHistoryEntry]:
        """Logged offers as tracker entries (line items are not kept)."""
        with self._db() as db:
            rows = db.scalars(
                select(OfferLog)
                .where(OfferLog.negotiation_id == negotiation_id)
                .order_by(OfferLog.id)
            ).all()
            return [
                OfferHistoryEntry(
                    offer_id=r.offer_id,
                    round_number=r.round_number,
                    source=r.source or "supplier",
                    offer=Offer(
                        unit_price=r.unit_price,
                        lead_time_days=r.lead_time_days,
                        payment_terms=r.payment_terms,
                    ),
                    timestamp=r.timestamp,
                )
                for r in rows
            ]

    # ---------- decisions ----------

    def create_decision(
        self,
        quote_id: str,
        selected_supplier_id: int,
        reasoning: str,
        evaluation_scores: dict[str, ScoreBreakdown],
    ) -> Decision:
        """
        Create the quote's Decision and mark the quote completed.

        Raises:
            QuoteNotFoundException: Unknown quote
            DecisionAlreadyExistsException: A Decision already exists
        """
        try:
            with self._db() as db:
                quote = self._get_quote_row(db, quote_id)
                existing = db.scalars(
                    select(DecisionRow).where(DecisionRow.quote_id == quote_id)
                ).first()
                if existing is not None:
                    raise DecisionAlreadyExistsException(quote_id)

                row = DecisionRow(
                    id=str(uuid4()),
                    quote_id=quote_id,
                    selected_supplier_id=selected_supplier_id,
                    reasoning=reasoning,
                    evaluation_scores={
                        key: score.model_dump(by_alias=True)
                        for key, score in evaluation_scores.items()
                    },
                )
                db.add(row)
                quote.status = QuoteStatus.COMPLETED
                quote.completed_at = utc_now()
                db.flush()
                return _decision(row)
        except IntegrityError as e:
            # Lost a race with a concurrent create
            logger.warning(f"Decision insert for quote {quote_id} hit unique constraint: {e}")
            raise DecisionAlreadyExistsException(quote_id) from e

    def get_decision(self, quote_id: str) -> Decision | None:
        with self._db() as db:
            self._get_quote_row(db, quote_id)
            row = db.scalars(
                select(DecisionRow).where(DecisionRow.quote_id == quote_id)
            ).first()
            return _decision(row) if row else None


class StoreCallbacks:
    """Async NegotiationCallbacks over a SQLStore (blocking calls run in threads)."""

    def __init__(self, store: SQLStore):
        self.store = store

    async def on_message(self, negotiation_id: str, message: MessageRecord) -> MessageRecord | None:
        return await asyncio.to_thread(self.store.append_message, message)

    async def on_status_change(
        self,
        negotiation_id: str,
        status: NegotiationStatusValue,
        round_count: int,
        final_offer: Offer | None = None,
        *,
        expected_round_count: int | None = None,
        message: MessageRecord | None = None,
    ) -> MessageRecord | None:
        return await asyncio.to_thread(
            self.store.update_status,
            negotiation_id, status, round_count, final_offer,
            expected_round_count=expected_round_count,
            message=message,
        )

    async def on_offer_received(self, negotiation_id: str, offer: OfferReceived) -> None:
        await asyncio.to_thread(self.store.record_offer, negotiation_id, offer)

    async def get_user_interventions(
        self, negotiation_id: str, since: datetime | None = None
    ) -> list[UserInterventionMessage]:
        return await asyncio.to_thread(self.store.get_user_interventions, negotiation_id, since)
