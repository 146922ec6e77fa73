"""
Supplier matching: eligibility evaluation and the supplier's visible RFQ feed.
"""
from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.logging import get_logger
from marketplace.db.models import ActorType
from marketplace.services.capability_index import CapabilityProfile, build_profile
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.events import log_read_events
from marketplace.services.records import BidRecord, RfqRecord, SupplierBidStats, SupplierRecord
from marketplace.services.repository import MarketplaceRepository
from marketplace.services.scoring import ScoreBreakdown, score_match

logger = get_logger(__name__)


class SupplierContext(BaseModel):
    supplier: SupplierRecord
    profile: CapabilityProfile
    stats: SupplierBidStats


class VisibleRfq(BaseModel):
    rfq: RfqRecord
    score: ScoreBreakdown
    own_bid: Optional[BidRecord] = None
    live_bid_count: int = 0


class MatchingService:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.repo = MarketplaceRepository(db)
        self.scope = scope if scope is not None else EvaluationScope()

    def supplier_context(self, supplier_id: int) -> SupplierContext:
        """Capabilities, documents and bid stats; concurrent loads are shared."""
        return self.scope.run(("supplier_context", supplier_id), lambda: self._load_context(supplier_id))

    def _load_context(self, supplier_id: int) -> SupplierContext:
        supplier = self.repo.get_supplier(supplier_id)
        profile = build_profile(
            supplier_id,
            self.repo.list_capabilities(supplier_id),
            self.repo.list_documents(supplier_id),
        )
        return SupplierContext(
            supplier=supplier,
            profile=profile,
            stats=self.repo.supplier_bid_stats(supplier_id),
        )

    def evaluate(
        self, rfq: RfqRecord, supplier_id: int, context: Optional[SupplierContext] = None
    ) -> ScoreBreakdown:
        def compute():
            ctx = context if context is not None else self.supplier_context(supplier_id)
            return score_match(rfq, ctx.profile, ctx.stats, settings.MIN_MATCH_SCORE)

        return self.scope.run(("match", rfq.id, supplier_id), compute)

    def evaluate_match(self, rfq_id: int, supplier_id: int) -> ScoreBreakdown:
        rfq = self.repo.get_rfq(rfq_id)
        return self.evaluate(rfq, supplier_id)

    def list_visible_rfqs(self, supplier_id: int) -> List[VisibleRfq]:
        """
        Open RFQs this supplier clears the match threshold for.

        Sorted by score (highest first), then newest RFQ first.
        """
        context = self.supplier_context(supplier_id)
        rfqs = self.repo.list_open_rfqs(settings.VISIBLE_RFQ_LIMIT)

        visible = []
        filtered_events = []
        for rfq in rfqs:
            breakdown = self.evaluate(rfq, supplier_id, context)
            if breakdown.eligible:
                visible.append((rfq, breakdown))
                continue
            filtered_events.append({
                "event_type": "visibility_filtered",
                "rfq_id": rfq.id,
                "actor_type": ActorType.SUPPLIER,
                "actor_id": supplier_id,
                "supplier_id": supplier_id,
                "payload": {
                    "supplier_id": supplier_id,
                    "score": breakdown.total,
                    "threshold": breakdown.threshold,
                },
            })

        log_read_events(self.db, filtered_events)

        rfq_ids = [rfq.id for rfq, _ in visible]
        counts = self.repo.live_bid_counts(rfq_ids)
        own_bids = self.repo.supplier_bids_for_rfqs(supplier_id, rfq_ids)

        visible.sort(key=lambda item: (-item[1].total, -item[0].created_at.timestamp(), -item[0].id))
        logger.info(
            f"Supplier {supplier_id} sees {len(visible)} of {len(rfqs)} open RFQs",
            extra={"supplier_id": supplier_id},
        )
        return [
            VisibleRfq(
                rfq=rfq,
                score=breakdown,
                own_bid=own_bids.get(rfq.id),
                live_bid_count=counts.get(rfq.id, 0),
            )
            for rfq, breakdown in visible
        ]
