"""
Eligibility scoring between one RFQ and one supplier.

Weighted factors, 100 points in total:
    process match      40
    material match     25
    certifications     15
    win rate           10
    recency            10
"""
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from pydantic import BaseModel, Field

from marketplace.services.capability_index import CapabilityProfile, match_terms, normalize_terms
from marketplace.services.records import RfqRecord, SupplierBidStats

PROCESS_WEIGHT = 40.0
MATERIAL_WEIGHT = 25.0
CERTIFICATION_WEIGHT = 15.0
WIN_RATE_WEIGHT = 10.0
RECENCY_WEIGHT = 10.0

# Recency decays linearly between these bounds (days since last bid activity)
RECENCY_FULL_DAYS = 1.0
RECENCY_ZERO_DAYS = 90.0


class FactorScore(BaseModel):
    key: str
    weight: float
    points: float
    ratio: float
    reason: str
    evidence: List[str] = Field(default_factory=list)


class ScoreBreakdown(BaseModel):
    rfq_id: int
    supplier_id: int
    total: float
    threshold: float
    eligible: bool
    factors: List[FactorScore]

    def factor(self, key: str) -> Optional[FactorScore]:
        for item in self.factors:
            if item.key == key:
                return item
        return None


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _factor(key: str, weight: float, ratio: float, reason: str, evidence: Sequence[str] = ()) -> FactorScore:
    ratio = clamp(ratio, 0.0, 1.0)
    return FactorScore(
        key=key,
        weight=weight,
        points=round(weight * ratio, 2),
        ratio=round(ratio, 4),
        reason=reason,
        evidence=list(evidence),
    )


def _coverage_factor(key: str, label: str, weight: float, required: Sequence[str], available: Sequence[str]) -> FactorScore:
    if not required:
        return _factor(key, weight, 1.0, f"RFQ declares no {label} requirements")
    matched, missing = match_terms(required, available)
    ratio = len(matched) / len(required)
    if missing:
        reason = f"{len(matched)}/{len(required)} {label} requirements covered; missing: {', '.join(missing)}"
    else:
        reason = f"All {len(required)} {label} requirements covered"
    return _factor(key, weight, ratio, reason, matched)


def process_factor(rfq: RfqRecord, profile: CapabilityProfile) -> FactorScore:
    required = normalize_terms(rfq.process_requirements)
    return _coverage_factor("process", "process", PROCESS_WEIGHT, required, profile.processes)


def material_factor(rfq: RfqRecord, profile: CapabilityProfile) -> FactorScore:
    required = normalize_terms(rfq.material_requirements)
    return _coverage_factor("material", "material", MATERIAL_WEIGHT, required, profile.materials)


def certification_factor(rfq: RfqRecord, profile: CapabilityProfile) -> FactorScore:
    required = normalize_terms(rfq.certification_requirements)
    if not required:
        return _factor("certifications", CERTIFICATION_WEIGHT, 0.0, "RFQ requests no certification evidence")
    matched, missing = match_terms(required, profile.certification_evidence)
    ratio = len(matched) / len(required)
    reason = f"{len(matched)}/{len(required)} certifications evidenced"
    if missing:
        reason += f"; missing: {', '.join(missing)}"
    return _factor("certifications", CERTIFICATION_WEIGHT, ratio, reason, matched)


def win_rate_factor(stats: SupplierBidStats) -> FactorScore:
    if stats.total_bids <= 0:
        return _factor("win_rate", WIN_RATE_WEIGHT, 0.0, "No bid history")
    return _factor(
        "win_rate",
        WIN_RATE_WEIGHT,
        stats.win_rate,
        f"{stats.accepted_bids} of last {stats.total_bids} bids accepted",
    )


def recency_factor(stats: SupplierBidStats, now: datetime) -> FactorScore:
    if stats.last_activity_at is None:
        return _factor("recency", RECENCY_WEIGHT, 0.0, "No bid activity on record")
    days = max((now - stats.last_activity_at).total_seconds() / 86400.0, 0.0)
    if days <= RECENCY_FULL_DAYS:
        ratio = 1.0
    elif days >= RECENCY_ZERO_DAYS:
        ratio = 0.0
    else:
        ratio = 1.0 - (days - RECENCY_FULL_DAYS) / (RECENCY_ZERO_DAYS - RECENCY_FULL_DAYS)
    return _factor("recency", RECENCY_WEIGHT, ratio, f"Last bid activity {days:.1f} days ago")


def score_match(
    rfq: RfqRecord,
    profile: CapabilityProfile,
    stats: SupplierBidStats,
    threshold: float,
    now: Optional[datetime] = None,
) -> ScoreBreakdown:
    """Score how well a supplier fits an RFQ."""
    now = now or datetime.now(timezone.utc)

    factors = [
        process_factor(rfq, profile),
        material_factor(rfq, profile),
        certification_factor(rfq, profile),
        win_rate_factor(stats),
        recency_factor(stats, now),
    ]
    total = round(clamp(sum(f.points for f in factors), 0.0, 100.0), 2)

    return ScoreBreakdown(
        rfq_id=rfq.id,
        supplier_id=profile.supplier_id,
        total=total,
        threshold=threshold,
        eligible=total >= threshold,
        factors=factors,
    )
