"""
Bid comparison scorecards for the owning customer.
"""
from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.core.errors import NotAuthorizedError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.db.models import BidStatus
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.matching import MatchingService
from marketplace.services.records import BidRecord
from marketplace.services.repository import MarketplaceRepository

logger = get_logger(__name__)

PRICE_WEIGHT = 0.45
LEAD_TIME_WEIGHT = 0.25
MATCH_WEIGHT = 0.30


class BidScorecard(BaseModel):
    bid: BidRecord
    supplier_name: Optional[str] = None
    price_score: float
    lead_time_score: float
    match_score: float
    overall_score: float
    recommended: bool = False


class BidComparison(BaseModel):
    rfq_id: int
    scorecards: List[BidScorecard]


class BidComparisonService:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.repo = MarketplaceRepository(db)
        self.matching = MatchingService(db, scope)

    def compare_bids(self, rfq_id: int, actor_id: int) -> BidComparison:
        """Score every live bid on price, lead time and supplier fit."""
        rfq = self.repo.get_rfq(rfq_id)
        if rfq.customer_id != actor_id:
            raise NotAuthorizedError("Only the RFQ owner can compare its bids")

        bids = [b for b in self.repo.list_rfq_bids(rfq_id) if b.status != BidStatus.WITHDRAWN.value]
        if not bids:
            return BidComparison(rfq_id=rfq_id, scorecards=[])

        min_price = min((b.price_total for b in bids if b.price_total), default=1) or 1
        min_lead_time = min((b.lead_time_days for b in bids if b.lead_time_days), default=1) or 1

        scorecards = []
        for bid in bids:
            # Price score (lower is better, 100 is best)
            price_score = (min_price / bid.price_total * 100) if bid.price_total else 50

            # Lead time score (lower is better)
            lead_time_score = (min_lead_time / bid.lead_time_days * 100) if bid.lead_time_days else 50

            try:
                context = self.matching.supplier_context(bid.supplier_id)
                match_score = self.matching.evaluate(rfq, bid.supplier_id).total
                supplier_name = context.supplier.display_name
            except NotFoundError:
                logger.warning(
                    "Bid references a missing supplier",
                    extra={"rfq_id": rfq_id, "bid_id": bid.id, "supplier_id": bid.supplier_id},
                )
                match_score, supplier_name = 0.0, None

            overall_score = (
                price_score * PRICE_WEIGHT +
                lead_time_score * LEAD_TIME_WEIGHT +
                match_score * MATCH_WEIGHT
            )

            scorecards.append(BidScorecard(
                bid=bid,
                supplier_name=supplier_name,
                price_score=round(price_score, 1),
                lead_time_score=round(lead_time_score, 1),
                match_score=round(match_score, 1),
                overall_score=round(overall_score, 1),
            ))

        scorecards.sort(key=lambda card: (-card.overall_score, card.bid.price_total, card.bid.id))
        scorecards[0].recommended = True

        return BidComparison(rfq_id=rfq_id, scorecards=scorecards)
