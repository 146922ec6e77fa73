"""
Market pressure estimation for an RFQ.

Combines supply/demand scarcity per required process, deadline urgency,
how much of the qualified supplier pool has bid, and how long the RFQ
has been open into one 0..1 score.
"""
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.logging import get_logger
from marketplace.db.models import BidStatus
from marketplace.services.capability_index import fuzzy_match, normalize_terms, overlaps
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.events import log_read_event
from marketplace.services.records import BidRecord, RfqRecord
from marketplace.services.repository import MarketplaceRepository
from marketplace.services.scoring import clamp

logger = get_logger(__name__)

GENERAL_PROCESS = "general"
SECONDS_PER_DAY = 86400.0

URGENCY_WEIGHT = 0.45
SCARCITY_WEIGHT = 0.35
COVERAGE_GAP_WEIGHT = 0.20
MAX_STALENESS = 0.25

CRITICAL_THRESHOLD = 0.75
ELEVATED_THRESHOLD = 0.45


class ProcessSignal(BaseModel):
    process: str
    supply: int
    demand: int
    imbalance: int
    tension: str


class PressureDiagnostics(BaseModel):
    bid_count: int
    unique_bidders: int
    estimated_qualified_suppliers: int
    qualified_source: str  # "capability_census" or "bidders"
    scarcity_index: float
    days_open: float
    days_until_target: Optional[float] = None


class MarketPressureReading(BaseModel):
    rfq_id: int
    scarcity: float
    urgency: float
    coverage_gap: float
    staleness: float
    score: float
    label: str
    drivers: List[str] = Field(default_factory=list)
    signals: List[ProcessSignal] = Field(default_factory=list)
    diagnostics: PressureDiagnostics


class MarketSnapshot(BaseModel):
    """Market-wide samples a reading is computed from."""
    census: List[Tuple[int, str]] = Field(default_factory=list)
    supplier_count: int = 0
    open_rfqs: List[RfqRecord] = Field(default_factory=list)


def tension_for(imbalance: int) -> str:
    if imbalance >= 2:
        return "shortage"
    if imbalance <= -2:
        return "surplus"
    return "balanced"


def label_for(score: float) -> str:
    if score >= CRITICAL_THRESHOLD:
        return "critical"
    if score >= ELEVATED_THRESHOLD:
        return "elevated"
    return "stable"


def compute_urgency(rfq: RfqRecord, now: datetime) -> Tuple[float, float, Optional[float]]:
    """Returns (urgency, days_open, days_until_target)."""
    days_open = max((now - rfq.created_at).total_seconds() / SECONDS_PER_DAY, 0.0)
    if rfq.target_date is not None:
        days_until = (rfq.target_date - now).total_seconds() / SECONDS_PER_DAY
        return clamp(1.0 - days_until / 14.0, 0.0, 1.0), days_open, days_until
    return clamp(days_open / 30.0, 0.0, 1.0), days_open, None


def process_signals(rfq: RfqRecord, snapshot: MarketSnapshot) -> Tuple[List[ProcessSignal], set]:
    """
    Supply/demand per required process, plus the union of capable suppliers.

    An RFQ without process requirements is measured as one "general"
    process against the whole supplier base.
    """
    processes = normalize_terms(rfq.process_requirements)
    others = [other for other in snapshot.open_rfqs if other.id != rfq.id]

    if not processes:
        demand = sum(1 for other in others if not normalize_terms(other.process_requirements))
        supply = snapshot.supplier_count
        imbalance = demand - supply
        signal = ProcessSignal(
            process=GENERAL_PROCESS,
            supply=supply,
            demand=demand,
            imbalance=imbalance,
            tension=tension_for(imbalance),
        )
        return [signal], set()

    signals = []
    capable = set()
    for process in processes:
        suppliers = set(
            supplier_id for supplier_id, declared in snapshot.census
            if fuzzy_match(process, declared)
        )
        capable |= suppliers
        demand = sum(
            1 for other in others
            if overlaps([process], normalize_terms(other.process_requirements))
        )
        imbalance = demand - len(suppliers)
        signals.append(ProcessSignal(
            process=process,
            supply=len(suppliers),
            demand=demand,
            imbalance=imbalance,
            tension=tension_for(imbalance),
        ))
    return signals, capable


def assess_pressure(
    rfq: RfqRecord,
    bids: Sequence[BidRecord],
    snapshot: MarketSnapshot,
    now: Optional[datetime] = None,
) -> MarketPressureReading:
    now = now or datetime.now(timezone.utc)
    live_bids = [bid for bid in bids if bid.status != BidStatus.WITHDRAWN.value]

    signals, capable = process_signals(rfq, snapshot)

    # Scarcity
    scarcity_index = sum(s.demand / max(s.supply, 1) for s in signals) / len(signals)
    scarcity = clamp(scarcity_index / 2.0, 0.0, 1.0)

    # Urgency and staleness
    urgency, days_open, days_until = compute_urgency(rfq, now)
    staleness = clamp(days_open / 60.0, 0.0, MAX_STALENESS)

    # Bid coverage
    unique_bidders = len(set(bid.supplier_id for bid in live_bids))
    census_size = snapshot.supplier_count if not normalize_terms(rfq.process_requirements) else len(capable)
    if census_size > 0:
        estimated_qualified, source = census_size, "capability_census"
    else:
        estimated_qualified, source = max(unique_bidders, 1), "bidders"
    coverage_gap = clamp(1.0 - unique_bidders / estimated_qualified, 0.0, 1.0)

    score = clamp(
        URGENCY_WEIGHT * urgency
        + SCARCITY_WEIGHT * scarcity
        + COVERAGE_GAP_WEIGHT * coverage_gap
        + staleness,
        0.0,
        1.0,
    )

    drivers = []
    if urgency > 0.6:
        drivers.append("target_window_closing")
    if scarcity > 0.5:
        drivers.append("supply_shortage")
    if coverage_gap > 0.5:
        drivers.append("limited_bids")
    if not drivers:
        drivers.append("stable")

    return MarketPressureReading(
        rfq_id=rfq.id,
        scarcity=round(scarcity, 4),
        urgency=round(urgency, 4),
        coverage_gap=round(coverage_gap, 4),
        staleness=round(staleness, 4),
        score=round(score, 4),
        label=label_for(score),
        drivers=drivers,
        signals=signals,
        diagnostics=PressureDiagnostics(
            bid_count=len(live_bids),
            unique_bidders=unique_bidders,
            estimated_qualified_suppliers=estimated_qualified,
            qualified_source=source,
            scarcity_index=round(scarcity_index, 4),
            days_open=round(days_open, 2),
            days_until_target=round(days_until, 2) if days_until is not None else None,
        ),
    )


class MarketPressureService:
    def __init__(self, db: Session, scope: Optional[EvaluationScope] = None):
        self.db = db
        self.repo = MarketplaceRepository(db)
        self.scope = scope if scope is not None else EvaluationScope()

    def snapshot(self) -> MarketSnapshot:
        return self.scope.run(("market_snapshot",), lambda: MarketSnapshot(
            census=self.repo.capability_census(),
            supplier_count=self.repo.count_suppliers(),
            open_rfqs=self.repo.list_open_rfqs(settings.DEMAND_RFQ_SAMPLE),
        ))

    def estimate(
        self,
        rfq: RfqRecord,
        bids: Optional[Sequence[BidRecord]] = None,
        log_event: bool = True,
    ) -> MarketPressureReading:
        if bids is None:
            bids = self.repo.list_rfq_bids(rfq.id)
        reading = assess_pressure(rfq, bids, self.snapshot())

        if log_event:
            log_read_event(
                self.db,
                "market_pressure_calculated",
                rfq_id=rfq.id,
                payload={
                    "score": reading.score,
                    "label": reading.label,
                    "scarcity": reading.scarcity,
                    "urgency": reading.urgency,
                    "coverage_gap": reading.coverage_gap,
                    "staleness": reading.staleness,
                    "drivers": reading.drivers,
                    "diagnostics": reading.diagnostics.model_dump(),
                },
            )
        return reading

    def estimate_market_pressure(self, rfq_id: int) -> MarketPressureReading:
        return self.estimate(self.repo.get_rfq(rfq_id))
