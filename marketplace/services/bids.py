"""
Bid lifecycle: submit, withdraw, accept (award) and decline.

State changes use compare-and-swap UPDATEs checked by row count, so two
requests racing on the same RFQ or bid can never both succeed. Each
operation commits its state change and its domain events together.
"""
import math
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.errors import (
    ConflictError, InvalidInputError, NotAuthorizedError, NotEligibleError, NotFoundError,
)
from marketplace.core.logging import get_logger
from marketplace.db.models import (
    RFQ, Bid, MarketplaceEvent, ActorType, BidStatus, RFQStatus,
    OPEN_RFQ_STATUSES, AWARDABLE_RFQ_STATUSES,
)
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.events import add_event
from marketplace.services.matching import MatchingService
from marketplace.services.records import BidRecord, RfqRecord
from marketplace.services.repository import MarketplaceRepository, bid_to_record

logger = get_logger(__name__)

# Statuses a supplier may still withdraw from
WITHDRAWABLE_BID_STATUSES = (BidStatus.SUBMITTED.value, BidStatus.REJECTED.value)


class BidSubmission(BaseModel):
    """Validated bid input."""
    price_total: float
    currency: str = settings.DEFAULT_CURRENCY
    lead_time_days: Optional[int] = None
    notes: Optional[str] = None

    @field_validator('price_total')
    @classmethod
    def validate_price(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("price_total must be a positive amount")
        return v

    @field_validator('currency', mode='before')
    @classmethod
    def validate_currency(cls, v):
        if v is None:
            return settings.DEFAULT_CURRENCY
        if not isinstance(v, str):
            raise ValueError("currency must be a 3-letter code")
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("currency must be a 3-letter code")
        return code

    @field_validator('lead_time_days')
    @classmethod
    def validate_lead_time(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        if v < 0 or v > settings.MAX_LEAD_TIME_DAYS:
            raise ValueError(f"lead_time_days must be between 0 and {settings.MAX_LEAD_TIME_DAYS}")
        return v

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if len(v) > settings.MAX_BID_NOTES_LENGTH:
            raise ValueError(f"notes must be at most {settings.MAX_BID_NOTES_LENGTH} characters")
        return v or None


def parse_submission(**fields) -> BidSubmission:
    try:
        return BidSubmission(**fields)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "bid"
        raise InvalidInputError(f"{field}: {first.get('msg')}", code="invalid_bid")


def _now():
    return datetime.now(timezone.utc)


class BidLifecycleManager:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.repo = MarketplaceRepository(db)
        self.scope = scope if scope is not None else EvaluationScope()

    # ============= SUBMIT =============

    def submit_bid(
        self,
        rfq_id: int,
        supplier_id: int,
        price_total: float,
        currency: Optional[str] = None,
        lead_time_days: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> BidRecord:
        """
        Create or update the supplier's bid on an RFQ.

        The RFQ must be open and the supplier must clear the match
        threshold. A first submission that loses an insert race to a
        concurrent one is retried as an update.
        """
        submission = parse_submission(
            price_total=price_total,
            currency=currency,
            lead_time_days=lead_time_days,
            notes=notes,
        )

        rfq = self.repo.get_rfq(rfq_id)
        self._ensure_open(rfq)

        score = MatchingService(self.db, self.scope).evaluate(rfq, supplier_id)
        if not score.eligible:
            raise NotEligibleError(
                f"Match score {score.total:g} is below the {score.threshold:g} point threshold",
                code="below_match_threshold",
            )

        for attempt in range(2):
            try:
                return self._write_bid(rfq_id, supplier_id, submission)
            except IntegrityError:
                self.db.rollback()
                if attempt:
                    raise ConflictError("Bid could not be saved, please retry", code="bid_write_conflict")
                logger.info(
                    "Concurrent first submission detected, retrying as update",
                    extra={"rfq_id": rfq_id, "supplier_id": supplier_id},
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(
                    f"Bid write failed: {e.__class__.__name__}",
                    extra={"rfq_id": rfq_id, "supplier_id": supplier_id},
                )
                raise ConflictError("Bid could not be saved, please retry", code="bid_write_conflict")

    def _ensure_open(self, rfq: RfqRecord):
        if rfq.status not in OPEN_RFQ_STATUSES:
            raise NotEligibleError(
                f"RFQ is not accepting bids (status: {rfq.status})",
                code="rfq_not_open",
            )

    def _write_bid(self, rfq_id: int, supplier_id: int, submission: BidSubmission) -> BidRecord:
        now = _now()

        # Guarded write on the RFQ row: fails once it left the open family and
        # holds the row until commit so an award cannot interleave
        claimed = self.db.query(RFQ).filter(
            RFQ.id == rfq_id,
            RFQ.status.in_(OPEN_RFQ_STATUSES),
        ).update({RFQ.updated_at: now}, synchronize_session=False)
        if claimed != 1:
            self.db.rollback()
            current = self.repo.get_rfq(rfq_id)
            raise NotEligibleError(f"RFQ is not accepting bids (status: {current.status})", code="rfq_not_open")

        bid = self.db.query(Bid).filter(
            Bid.rfq_id == rfq_id,
            Bid.supplier_id == supplier_id,
        ).populate_existing().with_for_update().first()

        if bid:
            if bid.status == BidStatus.ACCEPTED.value:
                self.db.rollback()
                raise ConflictError("An accepted bid cannot be changed", code="bid_accepted")
            previous_status = bid.status
            bid.price_total = submission.price_total
            bid.currency = submission.currency
            bid.lead_time_days = submission.lead_time_days
            bid.notes = submission.notes
            bid.status = BidStatus.SUBMITTED.value
            bid.updated_at = now
            self.db.flush()
            event_type = "bid_updated"
            extra_payload = {"previous_status": previous_status}
        else:
            bid = Bid(
                rfq_id=rfq_id,
                supplier_id=supplier_id,
                price_total=submission.price_total,
                currency=submission.currency,
                lead_time_days=submission.lead_time_days,
                notes=submission.notes,
                status=BidStatus.SUBMITTED.value,
                created_at=now,
                updated_at=now,
            )
            self.db.add(bid)
            self.db.flush()
            event_type = "bid_submitted"
            extra_payload = {}

        add_event(
            self.db,
            event_type,
            rfq_id=rfq_id,
            actor_type=ActorType.SUPPLIER,
            actor_id=supplier_id,
            supplier_id=supplier_id,
            bid_id=bid.id,
            payload=dict(
                bid_id=bid.id,
                supplier_id=supplier_id,
                price_total=submission.price_total,
                currency=submission.currency,
                lead_time_days=submission.lead_time_days,
                **extra_payload,
            ),
        )
        self.db.commit()
        self.db.refresh(bid)
        return bid_to_record(bid)

    # ============= WITHDRAW =============

    def withdraw_bid(self, rfq_id: int, bid_id: int, supplier_id: int) -> BidRecord:
        bid = self.repo.get_bid(bid_id)
        if bid.rfq_id != rfq_id:
            raise NotFoundError("Bid not found for this RFQ", code="bid_not_found")
        if bid.supplier_id != supplier_id:
            raise NotAuthorizedError("Only the bidding supplier can withdraw this bid")
        if bid.status == BidStatus.WITHDRAWN.value:
            return bid
        if bid.status == BidStatus.ACCEPTED.value:
            raise ConflictError("An accepted bid cannot be withdrawn", code="bid_accepted")

        try:
            updated = self.db.query(Bid).filter(
                Bid.id == bid_id,
                Bid.status.in_(WITHDRAWABLE_BID_STATUSES),
            ).update(
                {Bid.status: BidStatus.WITHDRAWN.value, Bid.updated_at: _now()},
                synchronize_session=False,
            )
            if updated != 1:
                self.db.rollback()
                current = self.repo.get_bid(bid_id)
                if current.status == BidStatus.WITHDRAWN.value:
                    return current
                raise ConflictError(
                    f"Bid changed while withdrawing (status: {current.status})",
                    code="bid_accepted" if current.status == BidStatus.ACCEPTED.value else "conflict",
                )

            add_event(
                self.db,
                "bid_withdrawn",
                rfq_id=rfq_id,
                actor_type=ActorType.SUPPLIER,
                actor_id=supplier_id,
                supplier_id=supplier_id,
                bid_id=bid_id,
                payload={"bid_id": bid_id, "supplier_id": supplier_id, "previous_status": bid.status},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Withdraw failed: {e.__class__.__name__}", extra={"rfq_id": rfq_id, "bid_id": bid_id})
            raise ConflictError("Bid could not be withdrawn, please retry")

        return self.repo.get_bid(bid_id)

    # ============= AWARD =============

    def accept_bid(self, rfq_id: int, bid_id: int, actor_id: int) -> BidRecord:
        """
        Award the RFQ to one bid.

        In a single transaction the RFQ moves to awarded, the bid to
        accepted and every other live bid to rejected. Re-accepting the
        current winner returns it unchanged.
        """
        rfq = self.repo.get_rfq(rfq_id)
        if rfq.customer_id != actor_id:
            raise NotAuthorizedError("Only the RFQ owner can award it")

        bid = self.repo.get_bid(bid_id)
        if bid.rfq_id != rfq_id:
            raise NotFoundError("Bid not found for this RFQ", code="bid_not_found")

        if rfq.status == RFQStatus.AWARDED.value:
            if rfq.awarded_bid_id == bid_id:
                return bid
            raise ConflictError(
                "RFQ is already awarded; decline the current award first",
                code="already_awarded",
            )
        if rfq.status not in AWARDABLE_RFQ_STATUSES:
            raise NotEligibleError(f"RFQ cannot be awarded (status: {rfq.status})", code="rfq_not_awardable")
        if bid.status != BidStatus.SUBMITTED.value:
            raise NotEligibleError(f"Only submitted bids can be accepted (status: {bid.status})", code="bid_not_submitted")

        return self._award(rfq, bid, actor_id)

    def _award(self, rfq: RfqRecord, bid: BidRecord, actor_id: int) -> BidRecord:
        now = _now()
        try:
            # Row lock where the backend supports it; the CAS below is the real guard
            self.db.query(RFQ.id).filter(RFQ.id == rfq.id).with_for_update().first()

            swapped = self.db.query(RFQ).filter(
                RFQ.id == rfq.id,
                RFQ.status.in_(AWARDABLE_RFQ_STATUSES),
            ).update(
                {RFQ.status: RFQStatus.AWARDED.value, RFQ.awarded_bid_id: bid.id, RFQ.updated_at: now},
                synchronize_session=False,
            )
            if swapped != 1:
                self.db.rollback()
                return self._resolve_lost_award(rfq.id, bid.id)

            accepted = self.db.query(Bid).filter(
                Bid.id == bid.id,
                Bid.rfq_id == rfq.id,
                Bid.status == BidStatus.SUBMITTED.value,
            ).update(
                {Bid.status: BidStatus.ACCEPTED.value, Bid.updated_at: now},
                synchronize_session=False,
            )
            if accepted != 1:
                self.db.rollback()
                raise ConflictError("Bid is no longer open for award", code="bid_not_submitted")

            rejected_ids = [
                row_id for (row_id,) in self.db.query(Bid.id).filter(
                    Bid.rfq_id == rfq.id,
                    Bid.id != bid.id,
                    Bid.status != BidStatus.WITHDRAWN.value,
                ).order_by(Bid.id).all()
            ]
            if rejected_ids:
                self.db.query(Bid).filter(Bid.id.in_(rejected_ids)).update(
                    {Bid.status: BidStatus.REJECTED.value, Bid.updated_at: now},
                    synchronize_session=False,
                )

            add_event(
                self.db,
                "rfq_awarded",
                rfq_id=rfq.id,
                actor_type=ActorType.CUSTOMER,
                actor_id=actor_id,
                supplier_id=bid.supplier_id,
                bid_id=bid.id,
                payload={
                    "bid_id": bid.id,
                    "supplier_id": bid.supplier_id,
                    "price_total": bid.price_total,
                    "currency": bid.currency,
                    "rejected_bid_ids": rejected_ids,
                },
            )
            self.db.commit()
        except ConflictError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Award transaction failed: {e.__class__.__name__}", extra={"rfq_id": rfq.id, "bid_id": bid.id})
            raise ConflictError("Award could not be completed and was rolled back", code="award_failed")

        return self.repo.get_bid(bid.id)

    def _resolve_lost_award(self, rfq_id: int, bid_id: int) -> BidRecord:
        current = self.repo.get_rfq(rfq_id)
        if current.status == RFQStatus.AWARDED.value and current.awarded_bid_id == bid_id:
            return self.repo.get_bid(bid_id)
        raise ConflictError(
            f"RFQ was updated by another request (status: {current.status})",
            code="already_awarded" if current.status == RFQStatus.AWARDED.value else "conflict",
        )

    # ============= DECLINE =============

    def decline_award(self, rfq_id: int, actor_id: int) -> RfqRecord:
        """
        Undo the current award.

        The winner becomes rejected, bids rejected by that award go back
        to submitted and the RFQ returns to review.
        """
        rfq = self.repo.get_rfq(rfq_id)
        if rfq.customer_id != actor_id:
            raise NotAuthorizedError("Only the RFQ owner can decline its award")
        if rfq.status != RFQStatus.AWARDED.value or rfq.awarded_bid_id is None:
            raise NotEligibleError("RFQ has no award to decline", code="not_awarded")

        winner_id = rfq.awarded_bid_id
        now = _now()
        try:
            swapped = self.db.query(RFQ).filter(
                RFQ.id == rfq_id,
                RFQ.status == RFQStatus.AWARDED.value,
                RFQ.awarded_bid_id == winner_id,
            ).update(
                {RFQ.status: RFQStatus.IN_REVIEW.value, RFQ.awarded_bid_id: None, RFQ.updated_at: now},
                synchronize_session=False,
            )
            if swapped != 1:
                self.db.rollback()
                raise ConflictError("RFQ award changed while declining", code="conflict")

            self.db.query(Bid).filter(
                Bid.id == winner_id,
                Bid.status == BidStatus.ACCEPTED.value,
            ).update(
                {Bid.status: BidStatus.REJECTED.value, Bid.updated_at: now},
                synchronize_session=False,
            )

            restored_ids = self._rejected_by_award(rfq_id, winner_id)
            if restored_ids:
                self.db.query(Bid).filter(
                    Bid.id.in_(restored_ids),
                    Bid.status == BidStatus.REJECTED.value,
                ).update(
                    {Bid.status: BidStatus.SUBMITTED.value, Bid.updated_at: now},
                    synchronize_session=False,
                )

            add_event(
                self.db,
                "rfq_award_declined",
                rfq_id=rfq_id,
                actor_type=ActorType.CUSTOMER,
                actor_id=actor_id,
                bid_id=winner_id,
                payload={"bid_id": winner_id, "restored_bid_ids": restored_ids},
            )
            self.db.commit()
        except ConflictError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Decline failed: {e.__class__.__name__}", extra={"rfq_id": rfq_id})
            raise ConflictError("Award could not be declined and was rolled back", code="decline_failed")

        return self.repo.get_rfq(rfq_id)

    def _rejected_by_award(self, rfq_id: int, winner_id: int) -> List[int]:
        """Bid ids the most recent award of this winner rejected."""
        events = self.db.query(MarketplaceEvent.payload).filter(
            MarketplaceEvent.rfq_id == rfq_id,
            MarketplaceEvent.event_type == "rfq_awarded",
        ).order_by(MarketplaceEvent.id.desc()).all()
        for (payload,) in events:
            if payload and payload.get("bid_id") == winner_id:
                return [int(i) for i in payload.get("rejected_bid_ids") or [] if i != winner_id]
        return []
