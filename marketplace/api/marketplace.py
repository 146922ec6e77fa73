"""
Marketplace API routes - matching, market pressure, pricing and bids.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from marketplace.api.deps import get_engine
from marketplace.core.rbac import require_customer, require_supplier, require_any_actor
from marketplace.services.comparison import BidComparison
from marketplace.services.engine import MarketplaceEngine
from marketplace.services.market_pressure import MarketPressureReading
from marketplace.services.matching import VisibleRfq
from marketplace.services.pricing import PriceBand, PricingRecommendation
from marketplace.services.records import BidRecord, RfqRecord
from marketplace.services.scoring import ScoreBreakdown
from marketplace.services.strategy import CustomerPriorityProfile, SupplierLeverageProfile

router = APIRouter(prefix="/api/marketplace", tags=["Marketplace"])


# ============= SCHEMAS =============

class BidCreate(BaseModel):
    price_total: float
    currency: Optional[str] = None
    lead_time_days: Optional[int] = None
    notes: Optional[str] = None


# ============= MATCHING =============

@router.get("/rfqs/visible", response_model=List[VisibleRfq])
async def list_visible_rfqs(
    actor: dict = Depends(require_supplier),
    engine: MarketplaceEngine = Depends(get_engine),
):
    """Open RFQs the calling supplier qualifies for, best match first."""
    return engine.list_visible_rfqs(actor["actor_id"])


@router.get("/rfqs/{rfq_id}/match", response_model=ScoreBreakdown)
async def evaluate_match(
    rfq_id: int,
    actor: dict = Depends(require_supplier),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.evaluate_match(rfq_id, actor["actor_id"])


# ============= PRESSURE & PRICING =============

@router.get("/rfqs/{rfq_id}/pressure", response_model=MarketPressureReading)
async def estimate_market_pressure(
    rfq_id: int,
    actor: dict = Depends(require_any_actor),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.estimate_market_pressure(rfq_id)


@router.get("/rfqs/{rfq_id}/pricing/floor", response_model=PricingRecommendation)
async def recommend_price_floor(
    rfq_id: int,
    actor: dict = Depends(require_any_actor),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.recommend_price_floor(rfq_id)


@router.get("/rfqs/{rfq_id}/pricing/ceiling", response_model=PricingRecommendation)
async def recommend_price_ceiling(
    rfq_id: int,
    actor: dict = Depends(require_any_actor),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.recommend_price_ceiling(rfq_id)


@router.get("/rfqs/{rfq_id}/pricing/band", response_model=PriceBand)
async def recommend_price_band(
    rfq_id: int,
    actor: dict = Depends(require_any_actor),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.recommend_price_band(rfq_id)


# ============= BIDS =============

@router.post("/rfqs/{rfq_id}/bids", response_model=BidRecord)
async def submit_bid(
    rfq_id: int,
    bid_data: BidCreate,
    actor: dict = Depends(require_supplier),
    engine: MarketplaceEngine = Depends(get_engine),
):
    """Create or update the calling supplier's bid."""
    return engine.submit_bid(
        rfq_id,
        actor["actor_id"],
        bid_data.price_total,
        currency=bid_data.currency,
        lead_time_days=bid_data.lead_time_days,
        notes=bid_data.notes,
    )


@router.post("/rfqs/{rfq_id}/bids/{bid_id}/withdraw", response_model=BidRecord)
async def withdraw_bid(
    rfq_id: int,
    bid_id: int,
    actor: dict = Depends(require_supplier),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.withdraw_bid(rfq_id, bid_id, actor["actor_id"])


@router.post("/rfqs/{rfq_id}/bids/{bid_id}/accept", response_model=BidRecord)
async def accept_bid(
    rfq_id: int,
    bid_id: int,
    actor: dict = Depends(require_customer),
    engine: MarketplaceEngine = Depends(get_engine),
):
    """Award the RFQ to this bid."""
    return engine.accept_bid(rfq_id, bid_id, actor["actor_id"])


@router.post("/rfqs/{rfq_id}/award/decline", response_model=RfqRecord)
async def decline_award(
    rfq_id: int,
    actor: dict = Depends(require_customer),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.decline_award(rfq_id, actor["actor_id"])


@router.get("/rfqs/{rfq_id}/bids/compare", response_model=BidComparison)
async def compare_bids(
    rfq_id: int,
    actor: dict = Depends(require_customer),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.compare_bids(rfq_id, actor["actor_id"])


# ============= STRATEGY =============

@router.get("/rfqs/{rfq_id}/priority", response_model=CustomerPriorityProfile)
async def customer_priority(
    rfq_id: int,
    actor: dict = Depends(require_any_actor),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.customer_priority(rfq_id)


@router.get("/rfqs/{rfq_id}/leverage", response_model=SupplierLeverageProfile)
async def supplier_leverage(
    rfq_id: int,
    actor: dict = Depends(require_supplier),
    engine: MarketplaceEngine = Depends(get_engine),
):
    return engine.supplier_leverage(rfq_id, actor["actor_id"])
