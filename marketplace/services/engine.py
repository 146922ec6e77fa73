"""
MarketplaceEngine: the service-level entry point for matching, pricing
and award operations.

One engine wraps one database session and one EvaluationScope, so
duplicate evaluations running at the same time are computed once.
Use it as a context manager to tear the scope down when done.
"""
from typing import List, Optional
from sqlalchemy.orm import Session

from marketplace.services.bids import BidLifecycleManager
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.comparison import BidComparison, BidComparisonService
from marketplace.services.market_pressure import MarketPressureReading, MarketPressureService
from marketplace.services.matching import MatchingService, VisibleRfq
from marketplace.services.pricing import PriceBand, PricingRecommendation, PricingService
from marketplace.services.records import BidRecord, RfqRecord
from marketplace.services.scoring import ScoreBreakdown
from marketplace.services.strategy import (
    CustomerPriorityProfile, StrategyService, SupplierLeverageProfile,
)


class MarketplaceEngine:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.scope = scope if scope is not None else EvaluationScope()
        self.matching = MatchingService(db, self.scope)
        self.pressure = MarketPressureService(db, self.scope)
        self.pricing = PricingService(db, self.scope)
        self.bids = BidLifecycleManager(db, self.scope)
        self.comparison = BidComparisonService(db, self.scope)
        self.strategy = StrategyService(db, self.scope)

    def close(self):
        self.scope.close()

    def __enter__(self) -> "MarketplaceEngine":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # Matching
    def evaluate_match(self, rfq_id: int, supplier_id: int) -> ScoreBreakdown:
        return self.matching.evaluate_match(rfq_id, supplier_id)

    def list_visible_rfqs(self, supplier_id: int) -> List[VisibleRfq]:
        return self.matching.list_visible_rfqs(supplier_id)

    # Market pressure and pricing
    def estimate_market_pressure(self, rfq_id: int) -> MarketPressureReading:
        return self.pressure.estimate_market_pressure(rfq_id)

    def recommend_price_floor(self, rfq_id: int) -> PricingRecommendation:
        return self.pricing.recommend_price_floor(rfq_id)

    def recommend_price_ceiling(self, rfq_id: int) -> PricingRecommendation:
        return self.pricing.recommend_price_ceiling(rfq_id)

    def recommend_price_band(self, rfq_id: int) -> PriceBand:
        return self.pricing.recommend_price_band(rfq_id)

    # Bid lifecycle
    def submit_bid(
        self,
        rfq_id: int,
        supplier_id: int,
        price_total: float,
        currency: Optional[str] = None,
        lead_time_days: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> BidRecord:
        return self.bids.submit_bid(rfq_id, supplier_id, price_total, currency, lead_time_days, notes)

    def withdraw_bid(self, rfq_id: int, bid_id: int, supplier_id: int) -> BidRecord:
        return self.bids.withdraw_bid(rfq_id, bid_id, supplier_id)

    def accept_bid(self, rfq_id: int, bid_id: int, actor_id: int) -> BidRecord:
        return self.bids.accept_bid(rfq_id, bid_id, actor_id)

    def decline_award(self, rfq_id: int, actor_id: int) -> RfqRecord:
        return self.bids.decline_award(rfq_id, actor_id)

    # Customer views and strategy
    def compare_bids(self, rfq_id: int, actor_id: int) -> BidComparison:
        return self.comparison.compare_bids(rfq_id, actor_id)

    def customer_priority(self, rfq_id: int) -> CustomerPriorityProfile:
        return self.strategy.customer_priority(rfq_id)

    def supplier_leverage(self, rfq_id: int, supplier_id: int) -> SupplierLeverageProfile:
        return self.strategy.supplier_leverage(rfq_id, supplier_id)
