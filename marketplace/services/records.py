"""
Strict entities the engine works with.

Rows are mapped into these at the repository boundary so the scoring,
pressure and pricing code never has to guess about missing columns.
"""
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (SQLite) are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def string_list(value) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


class CapabilityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    supplier_id: int
    process: str
    materials: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    max_length_mm: Optional[float] = None
    max_width_mm: Optional[float] = None
    max_height_mm: Optional[float] = None

    @field_validator("materials", "certifications", mode="before")
    @classmethod
    def coerce_lists(cls, v):
        return string_list(v)


class DocumentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    supplier_id: int
    doc_type: str
    file_name: Optional[str] = None
    uploaded_at: Optional[datetime] = None

    @field_validator("uploaded_at")
    @classmethod
    def normalize_time(cls, v):
        return as_utc(v)


class SupplierRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str
    is_verified: bool = False
    country: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def normalize_time(cls, v):
        return as_utc(v)


class RfqRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    customer_id: int
    title: str
    description: Optional[str] = None
    status: str
    process_requirements: List[str] = Field(default_factory=list)
    material_requirements: List[str] = Field(default_factory=list)
    certification_requirements: List[str] = Field(default_factory=list)
    quantity: Optional[int] = None
    target_date: Optional[datetime] = None
    priority: Optional[float] = None
    awarded_bid_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator(
        "process_requirements", "material_requirements", "certification_requirements",
        mode="before",
    )
    @classmethod
    def coerce_lists(cls, v):
        return string_list(v)

    @field_validator("target_date", "created_at", "updated_at")
    @classmethod
    def normalize_time(cls, v):
        return as_utc(v)


class BidRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    rfq_id: int
    supplier_id: int
    price_total: float
    currency: str
    lead_time_days: Optional[int] = None
    notes: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_time(cls, v):
        return as_utc(v)


class SupplierBidStats(BaseModel):
    """Aggregates over a supplier's most recent bids."""
    model_config = ConfigDict(frozen=True)

    total_bids: int = 0
    accepted_bids: int = 0
    last_activity_at: Optional[datetime] = None

    @field_validator("last_activity_at")
    @classmethod
    def normalize_time(cls, v):
        return as_utc(v)

    @property
    def win_rate(self) -> float:
        if self.total_bids <= 0:
            return 0.0
        return self.accepted_bids / self.total_bids


class CustomerHistory(BaseModel):
    """Aggregates over a customer's most recent RFQs."""
    model_config = ConfigDict(frozen=True)

    rfq_count: int = 0
    awarded_count: int = 0
    awarded_spend: float = 0.0
