"""
Strategy signals derived from the market reading.

customer_priority: how much weight a customer's RFQ deserves.
supplier_leverage: how much pricing power a supplier has on an RFQ.
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.core.logging import get_logger
from marketplace.db.models import ActorType, BidStatus
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.events import log_read_event
from marketplace.services.market_pressure import MarketPressureService
from marketplace.services.records import RfqRecord
from marketplace.services.repository import MarketplaceRepository
from marketplace.services.scoring import clamp

logger = get_logger(__name__)

DEFAULT_PRIORITY = 0.3
DEFAULT_DATE_URGENCY = 0.3


class CustomerPriorityDrivers(BaseModel):
    declared_priority: float
    urgency: float
    loyalty: float
    value_density: float
    award_momentum: float


class CustomerPriorityProfile(BaseModel):
    rfq_id: int
    customer_id: int
    tier: str
    score: float
    drivers: CustomerPriorityDrivers


class LeverageReasoning(BaseModel):
    scarcity_impact: float
    market_coverage_gap: float
    win_rate: float
    total_bids: int
    has_active_bid: bool


class SupplierLeverageProfile(BaseModel):
    rfq_id: int
    supplier_id: int
    leverage_score: float
    posture: str
    pressure_label: str
    reasoning: LeverageReasoning


def normalize_priority(value: Optional[float]) -> float:
    """Accepts 0..1 or 0..100."""
    if value is None:
        return DEFAULT_PRIORITY
    if 1 < value <= 100:
        return clamp(value / 100.0, 0.0, 1.0)
    return clamp(value, 0.0, 1.0)


def date_urgency(target_date: Optional[datetime], now: datetime) -> float:
    if target_date is None:
        return DEFAULT_DATE_URGENCY
    days = (target_date - now).total_seconds() / 86400.0
    if days <= 0:
        return 1.0
    if days <= 7:
        return 0.85
    if days <= 14:
        return 0.6
    if days <= 30:
        return 0.4
    return 0.2


def priority_tier(score: float) -> str:
    if score >= 0.85:
        return "critical"
    if score >= 0.65:
        return "expedited"
    if score >= 0.35:
        return "standard"
    return "deferred"


def leverage_posture(score: float) -> str:
    if score >= 0.7:
        return "price_setter"
    if score <= 0.35:
        return "price_taker"
    return "balanced"


class StrategyService:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.repo = MarketplaceRepository(db)
        self.scope = scope if scope is not None else EvaluationScope()

    def customer_priority_for(self, rfq: RfqRecord, now: Optional[datetime] = None) -> CustomerPriorityProfile:
        now = now or datetime.now(timezone.utc)
        history = self.repo.customer_history(rfq.customer_id)

        declared = normalize_priority(rfq.priority)
        urgency = date_urgency(rfq.target_date, now)
        loyalty = clamp(history.rfq_count / 10.0, 0.0, 1.0)
        value_density = clamp(history.awarded_spend / 50000.0, 0.0, 1.0)
        momentum = clamp(history.awarded_count / history.rfq_count, 0.0, 1.0) if history.rfq_count else 0.0

        score = clamp(
            declared * 0.4 + urgency * 0.2 + loyalty * 0.15 + value_density * 0.2 + momentum * 0.05,
            0.0,
            1.0,
        )
        return CustomerPriorityProfile(
            rfq_id=rfq.id,
            customer_id=rfq.customer_id,
            tier=priority_tier(score),
            score=round(score, 4),
            drivers=CustomerPriorityDrivers(
                declared_priority=round(declared, 4),
                urgency=urgency,
                loyalty=round(loyalty, 4),
                value_density=round(value_density, 4),
                award_momentum=round(momentum, 4),
            ),
        )

    def customer_priority(self, rfq_id: int) -> CustomerPriorityProfile:
        return self.customer_priority_for(self.repo.get_rfq(rfq_id))

    def supplier_leverage(self, rfq_id: int, supplier_id: int, log_event: bool = True) -> SupplierLeverageProfile:
        rfq = self.repo.get_rfq(rfq_id)
        self.repo.get_supplier(supplier_id)

        bids = self.repo.list_rfq_bids(rfq_id)
        reading = MarketPressureService(self.db, self.scope).estimate(rfq, bids, log_event=False)
        stats = self.repo.supplier_bid_stats(supplier_id)

        has_active_bid = any(
            b.supplier_id == supplier_id and b.status != BidStatus.WITHDRAWN.value for b in bids
        )
        scarcity_impact = clamp(
            max((s.demand / max(s.supply, 1) for s in reading.signals), default=0.0) / 2.0,
            0.0,
            1.0,
        )
        participation = 0.10 if has_active_bid else 0.25

        score = clamp(
            scarcity_impact * 0.45 + reading.coverage_gap * 0.30 + stats.win_rate * 0.20 + participation,
            0.0,
            1.0,
        )
        profile = SupplierLeverageProfile(
            rfq_id=rfq_id,
            supplier_id=supplier_id,
            leverage_score=round(score, 4),
            posture=leverage_posture(score),
            pressure_label=reading.label,
            reasoning=LeverageReasoning(
                scarcity_impact=round(scarcity_impact, 4),
                market_coverage_gap=reading.coverage_gap,
                win_rate=round(stats.win_rate, 4),
                total_bids=stats.total_bids,
                has_active_bid=has_active_bid,
            ),
        )

        if log_event:
            log_read_event(
                self.db,
                "supplier_advantage_shifted",
                rfq_id=rfq_id,
                actor_type=ActorType.SUPPLIER,
                actor_id=supplier_id,
                supplier_id=supplier_id,
                payload={
                    "leverage_score": profile.leverage_score,
                    "posture": profile.posture,
                    **profile.reasoning.model_dump(),
                },
            )
        return profile
