"""
Bounded reads from the relational store.

Required records (the RFQ, supplier or bid a call is about) raise
NotFoundError / UpstreamUnavailableError. Optional context (capabilities,
bid history, market samples) degrades to an empty fallback with a warning.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.errors import NotFoundError, UpstreamUnavailableError
from marketplace.core.logging import get_logger
from marketplace.db.models import (
    RFQ, Bid, Supplier, SupplierCapability, SupplierDocument,
    BidStatus, OPEN_RFQ_STATUSES,
)
from marketplace.services.capability_index import normalize_terms, overlaps
from marketplace.services.records import (
    BidRecord, CapabilityRecord, CustomerHistory, DocumentRecord,
    RfqRecord, SupplierBidStats, SupplierRecord, as_utc,
)

logger = get_logger(__name__)


# ============= ROW MAPPING =============

def rfq_to_record(rfq: RFQ) -> RfqRecord:
    return RfqRecord(
        id=rfq.id,
        customer_id=rfq.customer_id,
        title=rfq.title,
        description=rfq.description,
        status=rfq.status,
        process_requirements=rfq.process_requirements or [],
        material_requirements=rfq.material_requirements or [],
        certification_requirements=rfq.certification_requirements or [],
        quantity=rfq.quantity,
        target_date=rfq.target_date,
        priority=rfq.priority,
        awarded_bid_id=rfq.awarded_bid_id,
        created_at=rfq.created_at or datetime.now(timezone.utc),
        updated_at=rfq.updated_at,
    )


def bid_to_record(bid: Bid) -> BidRecord:
    return BidRecord(
        id=bid.id,
        rfq_id=bid.rfq_id,
        supplier_id=bid.supplier_id,
        price_total=bid.price_total,
        currency=bid.currency,
        lead_time_days=bid.lead_time_days,
        notes=bid.notes,
        status=bid.status,
        created_at=bid.created_at,
        updated_at=bid.updated_at,
    )


def supplier_to_record(supplier: Supplier) -> SupplierRecord:
    return SupplierRecord(
        id=supplier.id,
        display_name=supplier.display_name,
        is_verified=bool(supplier.is_verified),
        country=supplier.country,
        created_at=supplier.created_at,
    )


def capability_to_record(capability: SupplierCapability) -> CapabilityRecord:
    return CapabilityRecord(
        id=capability.id,
        supplier_id=capability.supplier_id,
        process=capability.process,
        materials=capability.materials or [],
        certifications=capability.certifications or [],
        max_length_mm=capability.max_length_mm,
        max_width_mm=capability.max_width_mm,
        max_height_mm=capability.max_height_mm,
    )


def document_to_record(document: SupplierDocument) -> DocumentRecord:
    return DocumentRecord(
        id=document.id,
        supplier_id=document.supplier_id,
        doc_type=document.doc_type,
        file_name=document.file_name,
        uploaded_at=document.uploaded_at,
    )


# ============= REPOSITORY =============

class MarketplaceRepository:
    """Read access used by the matching, pressure and pricing services."""

    def __init__(self, db: Session):
        self.db = db

    def _degrade(self, what: str, error: SQLAlchemyError, **context):
        # A failed statement leaves the session unusable until rolled back
        self.db.rollback()
        logger.warning(f"{what} lookup failed, using fallback: {error}", extra=context)

    # --- required records ---

    def get_rfq(self, rfq_id: int) -> RfqRecord:
        try:
            rfq = self.db.query(RFQ).filter(RFQ.id == rfq_id).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise UpstreamUnavailableError(f"Could not load RFQ {rfq_id}: {e.__class__.__name__}")
        if not rfq:
            raise NotFoundError("RFQ not found", code="rfq_not_found")
        return rfq_to_record(rfq)

    def get_supplier(self, supplier_id: int) -> SupplierRecord:
        try:
            supplier = self.db.query(Supplier).filter(Supplier.id == supplier_id).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise UpstreamUnavailableError(f"Could not load supplier {supplier_id}: {e.__class__.__name__}")
        if not supplier:
            raise NotFoundError("Supplier not found", code="supplier_not_found")
        return supplier_to_record(supplier)

    def get_bid(self, bid_id: int) -> BidRecord:
        try:
            bid = self.db.query(Bid).filter(Bid.id == bid_id).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise UpstreamUnavailableError(f"Could not load bid {bid_id}: {e.__class__.__name__}")
        if not bid:
            raise NotFoundError("Bid not found", code="bid_not_found")
        return bid_to_record(bid)

    # --- supplier context ---

    def list_capabilities(self, supplier_id: int) -> List[CapabilityRecord]:
        try:
            rows = self.db.query(SupplierCapability).filter(
                SupplierCapability.supplier_id == supplier_id
            ).order_by(SupplierCapability.id).all()
        except SQLAlchemyError as e:
            self._degrade("capabilities", e, supplier_id=supplier_id)
            return []
        return [capability_to_record(row) for row in rows]

    def list_documents(self, supplier_id: int) -> List[DocumentRecord]:
        try:
            rows = self.db.query(SupplierDocument).filter(
                SupplierDocument.supplier_id == supplier_id
            ).order_by(SupplierDocument.id).all()
        except SQLAlchemyError as e:
            self._degrade("documents", e, supplier_id=supplier_id)
            return []
        return [document_to_record(row) for row in rows]

    def supplier_bid_stats(self, supplier_id: int) -> SupplierBidStats:
        """Win rate and last activity over the supplier's most recent bids."""
        try:
            rows = self.db.query(Bid.status, Bid.updated_at, Bid.created_at).filter(
                Bid.supplier_id == supplier_id
            ).order_by(Bid.updated_at.desc(), Bid.id.desc()).limit(settings.SUPPLIER_STATS_SAMPLE).all()
        except SQLAlchemyError as e:
            self._degrade("supplier bid stats", e, supplier_id=supplier_id)
            return SupplierBidStats()

        accepted = 0
        last_activity = None
        for status, updated_at, created_at in rows:
            if status == BidStatus.ACCEPTED.value:
                accepted += 1
            stamp = updated_at or created_at
            if stamp is not None:
                stamp = as_utc(stamp)
                if last_activity is None or stamp > last_activity:
                    last_activity = stamp

        return SupplierBidStats(
            total_bids=len(rows),
            accepted_bids=accepted,
            last_activity_at=last_activity,
        )

    # --- bids ---

    def list_rfq_bids(self, rfq_id: int, include_withdrawn: bool = False) -> List[BidRecord]:
        try:
            query = self.db.query(Bid).filter(Bid.rfq_id == rfq_id)
            if not include_withdrawn:
                query = query.filter(Bid.status != BidStatus.WITHDRAWN.value)
            rows = query.order_by(Bid.created_at, Bid.id).all()
        except SQLAlchemyError as e:
            self._degrade("rfq bids", e, rfq_id=rfq_id)
            return []
        return [bid_to_record(row) for row in rows]

    def find_supplier_bid(self, rfq_id: int, supplier_id: int) -> Optional[BidRecord]:
        try:
            bid = self.db.query(Bid).filter(
                Bid.rfq_id == rfq_id,
                Bid.supplier_id == supplier_id,
            ).first()
        except SQLAlchemyError as e:
            self._degrade("supplier bid", e, rfq_id=rfq_id, supplier_id=supplier_id)
            return None
        return bid_to_record(bid) if bid else None

    def supplier_bids_for_rfqs(self, supplier_id: int, rfq_ids: Sequence[int]) -> Dict[int, BidRecord]:
        if not rfq_ids:
            return {}
        try:
            rows = self.db.query(Bid).filter(
                Bid.supplier_id == supplier_id,
                Bid.rfq_id.in_(list(rfq_ids)),
            ).all()
        except SQLAlchemyError as e:
            self._degrade("supplier bids", e, supplier_id=supplier_id)
            return {}
        return {row.rfq_id: bid_to_record(row) for row in rows}

    def live_bid_counts(self, rfq_ids: Sequence[int]) -> Dict[int, int]:
        if not rfq_ids:
            return {}
        try:
            rows = self.db.query(Bid.rfq_id, func.count(Bid.id)).filter(
                Bid.rfq_id.in_(list(rfq_ids)),
                Bid.status != BidStatus.WITHDRAWN.value,
            ).group_by(Bid.rfq_id).all()
        except SQLAlchemyError as e:
            self._degrade("live bid counts", e)
            return {}
        return {rfq_id: count for rfq_id, count in rows}

    # --- market samples ---

    def list_open_rfqs(self, limit: int, exclude_rfq_id: Optional[int] = None) -> List[RfqRecord]:
        """Most recent open-family RFQs, newest first."""
        try:
            query = self.db.query(RFQ).filter(RFQ.status.in_(OPEN_RFQ_STATUSES))
            if exclude_rfq_id is not None:
                query = query.filter(RFQ.id != exclude_rfq_id)
            rows = query.order_by(RFQ.created_at.desc(), RFQ.id.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            self._degrade("open rfqs", e)
            return []
        return [rfq_to_record(row) for row in rows]

    def capability_census(self) -> List[Tuple[int, str]]:
        """(supplier_id, normalized process) pairs, bounded by CAPABILITY_SCAN_LIMIT."""
        try:
            rows = self.db.query(SupplierCapability.supplier_id, SupplierCapability.process).order_by(
                SupplierCapability.id
            ).limit(settings.CAPABILITY_SCAN_LIMIT).all()
        except SQLAlchemyError as e:
            self._degrade("capability census", e)
            return []
        census = []
        for supplier_id, process in rows:
            terms = normalize_terms([process])
            if terms:
                census.append((supplier_id, terms[0]))
        return census

    def count_suppliers(self) -> int:
        try:
            return self.db.query(func.count(Supplier.id)).scalar() or 0
        except SQLAlchemyError as e:
            self._degrade("supplier count", e)
            return 0

    def historical_accepted_prices(self, processes: Iterable[str], exclude_rfq_id: Optional[int] = None) -> List[float]:
        """
        Recent accepted-bid prices from other RFQs whose processes overlap.

        The newest HISTORICAL_PRICE_SAMPLE accepted bids are loaded, then
        filtered by fuzzy process overlap.
        """
        wanted = normalize_terms(processes)
        if not wanted:
            return []
        try:
            query = self.db.query(Bid.price_total, RFQ.process_requirements).join(
                RFQ, RFQ.id == Bid.rfq_id
            ).filter(Bid.status == BidStatus.ACCEPTED.value)
            if exclude_rfq_id is not None:
                query = query.filter(Bid.rfq_id != exclude_rfq_id)
            rows = query.order_by(Bid.updated_at.desc(), Bid.id.desc()).limit(
                settings.HISTORICAL_PRICE_SAMPLE
            ).all()
        except SQLAlchemyError as e:
            self._degrade("historical prices", e, rfq_id=exclude_rfq_id)
            return []

        prices = []
        for price_total, requirements in rows:
            if price_total is None or price_total <= 0:
                continue
            if overlaps(normalize_terms(requirements or []), wanted):
                prices.append(float(price_total))
        return prices

    # --- customer context ---

    def customer_history(self, customer_id: int) -> CustomerHistory:
        try:
            rows = self.db.query(RFQ.id, RFQ.awarded_bid_id).filter(
                RFQ.customer_id == customer_id
            ).order_by(RFQ.created_at.desc(), RFQ.id.desc()).limit(settings.CUSTOMER_HISTORY_SAMPLE).all()
        except SQLAlchemyError as e:
            self._degrade("customer history", e, actor_id=customer_id)
            return CustomerHistory()

        rfq_ids = [rfq_id for rfq_id, _ in rows]
        awarded = sum(1 for _, awarded_bid_id in rows if awarded_bid_id is not None)
        spend = 0.0
        if rfq_ids:
            try:
                spend = self.db.query(func.coalesce(func.sum(Bid.price_total), 0.0)).filter(
                    Bid.rfq_id.in_(rfq_ids),
                    Bid.status == BidStatus.ACCEPTED.value,
                ).scalar() or 0.0
            except SQLAlchemyError as e:
                self._degrade("customer spend", e, actor_id=customer_id)

        return CustomerHistory(
            rfq_count=len(rows),
            awarded_count=awarded,
            awarded_spend=float(spend),
        )
