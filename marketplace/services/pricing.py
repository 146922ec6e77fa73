"""
Price band recommendations (floor / ceiling) for an RFQ.

Bases come from recent accepted prices on similar RFQs, then from live
bids on this RFQ, then from a fixed seed. Market pressure lifts or drags
the base.
"""
import math
from collections import Counter
from typing import Dict, List, Optional, Sequence
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.logging import get_logger
from marketplace.db.models import BidStatus
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.events import log_read_event
from marketplace.services.market_pressure import MarketPressureReading, MarketPressureService
from marketplace.services.records import BidRecord, RfqRecord
from marketplace.services.repository import MarketplaceRepository
from marketplace.services.scoring import clamp

logger = get_logger(__name__)

HISTORICAL_FULL_SAMPLE = 25
BID_FULL_SAMPLE = 5
SEEDED_CONFIDENCE_CAP = 0.6


# ============= STATISTICS =============

def percentile(sorted_values: Sequence[float], q: float) -> Optional[float]:
    """Linear interpolation between closest ranks; input must be sorted."""
    if not sorted_values:
        return None
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    position = (len(sorted_values) - 1) * q
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(sorted_values[lower])
    fraction = position - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * fraction


def sanitize_amount(value: float) -> int:
    if value is None or not math.isfinite(value):
        return 1
    return max(1, int(round(value)))


class HistoricalStats(BaseModel):
    sample_size: int = 0
    p25: Optional[float] = None
    p50: Optional[float] = None
    p75: Optional[float] = None

    @classmethod
    def from_prices(cls, prices: Sequence[float]) -> "HistoricalStats":
        ordered = sorted(p for p in prices if p is not None and math.isfinite(p) and p > 0)
        return cls(
            sample_size=len(ordered),
            p25=percentile(ordered, 0.25),
            p50=percentile(ordered, 0.5),
            p75=percentile(ordered, 0.75),
        )


class BidStats(BaseModel):
    count: int = 0
    median: Optional[float] = None
    maximum: Optional[float] = None

    @classmethod
    def from_bids(cls, bids: Sequence[BidRecord]) -> "BidStats":
        prices = sorted(b.price_total for b in bids if b.price_total and b.price_total > 0)
        return cls(
            count=len(prices),
            median=percentile(prices, 0.5),
            maximum=prices[-1] if prices else None,
        )


def dominant_currency(bids: Sequence[BidRecord], default: str) -> str:
    """Most frequent currency among live bids; ties resolve alphabetically."""
    counts = Counter(b.currency.upper() for b in bids if b.currency)
    if not counts:
        return default
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0][0]


# ============= RECOMMENDATIONS =============

class PricingContext(BaseModel):
    rfq: RfqRecord
    bids: List[BidRecord]
    historical: HistoricalStats
    bid_stats: BidStats
    pressure: MarketPressureReading
    currency: str


class PricingRecommendation(BaseModel):
    rfq_id: int
    kind: str  # "floor" or "ceiling"
    amount: int
    currency: str
    confidence: float
    base: float
    base_source: str  # "historical", "live_bids" or "seed"
    adjustments: Dict[str, float] = Field(default_factory=dict)
    pressure_score: float
    pressure_label: str
    historical_sample: int
    bid_sample: int


class PriceBand(BaseModel):
    rfq_id: int
    currency: str
    floor: PricingRecommendation
    ceiling: PricingRecommendation
    confidence: float


def compute_confidence(context: PricingContext, seeded: bool) -> float:
    historical_weight = min(context.historical.sample_size / HISTORICAL_FULL_SAMPLE, 1.0)
    bid_weight = min(context.bid_stats.count / BID_FULL_SAMPLE, 1.0)
    stability_weight = 1.0 - context.pressure.score

    confidence = clamp(
        0.4 * historical_weight + 0.3 * bid_weight + 0.3 * stability_weight,
        0.2,
        0.95,
    )
    if seeded:
        confidence = min(confidence, SEEDED_CONFIDENCE_CAP)
    return round(confidence, 4)


def compute_floor(context: PricingContext) -> PricingRecommendation:
    if context.historical.p25 is not None:
        base, source = context.historical.p25, "historical"
    elif context.bid_stats.median is not None:
        base, source = context.bid_stats.median * 0.95, "live_bids"
    else:
        base, source = settings.PRICE_SEED, "seed"

    scarcity_lift = base * context.pressure.scarcity * 0.15
    urgency_lift = base * context.pressure.urgency * 0.10

    return PricingRecommendation(
        rfq_id=context.rfq.id,
        kind="floor",
        amount=sanitize_amount(base + scarcity_lift + urgency_lift),
        currency=context.currency,
        confidence=compute_confidence(context, seeded=source == "seed"),
        base=round(base, 2),
        base_source=source,
        adjustments={
            "scarcity_lift": round(scarcity_lift, 2),
            "urgency_lift": round(urgency_lift, 2),
        },
        pressure_score=context.pressure.score,
        pressure_label=context.pressure.label,
        historical_sample=context.historical.sample_size,
        bid_sample=context.bid_stats.count,
    )


def compute_ceiling(context: PricingContext, floor_amount: int) -> PricingRecommendation:
    if context.historical.p75 is not None:
        base, source = context.historical.p75, "historical"
    elif context.bid_stats.maximum is not None:
        base, source = context.bid_stats.maximum, "live_bids"
    else:
        base, source = settings.PRICE_SEED * 1.2, "seed"

    scarcity_lift = base * context.pressure.scarcity * 0.10
    urgency_drag = base * context.pressure.urgency * 0.15
    pressure_drag = context.pressure.score * 0.05 * base

    amount = sanitize_amount(base + scarcity_lift - urgency_drag - pressure_drag)
    raised_to_floor = amount < floor_amount
    if raised_to_floor:
        amount = sanitize_amount(floor_amount * 1.05)

    return PricingRecommendation(
        rfq_id=context.rfq.id,
        kind="ceiling",
        amount=amount,
        currency=context.currency,
        confidence=compute_confidence(context, seeded=source == "seed"),
        base=round(base, 2),
        base_source=source,
        adjustments={
            "scarcity_lift": round(scarcity_lift, 2),
            "urgency_drag": round(urgency_drag, 2),
            "pressure_drag": round(pressure_drag, 2),
            "raised_to_floor": 1.0 if raised_to_floor else 0.0,
        },
        pressure_score=context.pressure.score,
        pressure_label=context.pressure.label,
        historical_sample=context.historical.sample_size,
        bid_sample=context.bid_stats.count,
    )


class PricingService:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.repo = MarketplaceRepository(db)
        self.scope = scope if scope is not None else EvaluationScope()

    def build_context(self, rfq: RfqRecord) -> PricingContext:
        bids = [b for b in self.repo.list_rfq_bids(rfq.id) if b.status != BidStatus.WITHDRAWN.value]
        pressure = MarketPressureService(self.db, self.scope).estimate(rfq, bids, log_event=False)
        prices = self.repo.historical_accepted_prices(rfq.process_requirements, exclude_rfq_id=rfq.id)
        return PricingContext(
            rfq=rfq,
            bids=bids,
            historical=HistoricalStats.from_prices(prices),
            bid_stats=BidStats.from_bids(bids),
            pressure=pressure,
            currency=dominant_currency(bids, settings.DEFAULT_CURRENCY),
        )

    def _log(self, rfq: RfqRecord, payload: dict):
        log_read_event(self.db, "pricing_band_recommended", rfq_id=rfq.id, payload=payload)

    def recommend_price_floor(self, rfq_id: int, log_event: bool = True) -> PricingRecommendation:
        rfq = self.repo.get_rfq(rfq_id)
        floor = compute_floor(self.build_context(rfq))
        if log_event:
            self._log(rfq, {
                "kind": "floor",
                "amount": floor.amount,
                "currency": floor.currency,
                "confidence": floor.confidence,
                "base_source": floor.base_source,
            })
        return floor

    def recommend_price_ceiling(self, rfq_id: int, log_event: bool = True) -> PricingRecommendation:
        rfq = self.repo.get_rfq(rfq_id)
        context = self.build_context(rfq)
        floor = compute_floor(context)
        ceiling = compute_ceiling(context, floor.amount)
        if log_event:
            self._log(rfq, {
                "kind": "ceiling",
                "amount": ceiling.amount,
                "currency": ceiling.currency,
                "confidence": ceiling.confidence,
                "base_source": ceiling.base_source,
            })
        return ceiling

    def recommend_price_band(self, rfq_id: int, log_event: bool = True) -> PriceBand:
        """Floor and ceiling from one shared context."""
        rfq = self.repo.get_rfq(rfq_id)
        context = self.build_context(rfq)
        floor = compute_floor(context)
        ceiling = compute_ceiling(context, floor.amount)
        band = PriceBand(
            rfq_id=rfq.id,
            currency=context.currency,
            floor=floor,
            ceiling=ceiling,
            confidence=min(floor.confidence, ceiling.confidence),
        )
        if log_event:
            self._log(rfq, {
                "kind": "band",
                "floor": floor.amount,
                "ceiling": ceiling.amount,
                "currency": band.currency,
                "confidence": band.confidence,
                "pressure_label": context.pressure.label,
            })
        return band
