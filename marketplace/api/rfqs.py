"""
RFQ API routes - creation, status transitions and the event log.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from marketplace.core.rbac import require_customer, require_any_actor
from marketplace.db.session import get_db
from marketplace.services.records import RfqRecord
from marketplace.services.repository import MarketplaceRepository
from marketplace.services.rfqs import RfqService

router = APIRouter(prefix="/api/rfqs", tags=["RFQs"])


# ============= SCHEMAS =============

class RFQCreate(BaseModel):
    title: str
    description: Optional[str] = None
    process_requirements: List[str] = Field(default_factory=list)
    material_requirements: List[str] = Field(default_factory=list)
    certification_requirements: List[str] = Field(default_factory=list)
    quantity: Optional[int] = None
    target_date: Optional[datetime] = None
    priority: Optional[float] = None  # 0..1 or 0..100
    status: str = "open"


class StatusUpdate(BaseModel):
    status: str


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rfq_id: Optional[int]
    event_type: str
    actor_type: str
    actor_id: Optional[int]
    payload: Optional[Dict[str, Any]]
    created_at: Optional[datetime]


# ============= ROUTES =============

@router.post("", response_model=RfqRecord, status_code=201)
async def create_rfq(
    rfq_data: RFQCreate,
    actor: dict = Depends(require_customer),
    db: Session = Depends(get_db)
):
    """Publish a new RFQ for the calling customer."""
    return RfqService(db).create_rfq(actor["actor_id"], **rfq_data.model_dump())


@router.get("/{rfq_id}", response_model=RfqRecord)
async def get_rfq(
    rfq_id: int,
    actor: dict = Depends(require_any_actor),
    db: Session = Depends(get_db)
):
    return MarketplaceRepository(db).get_rfq(rfq_id)


@router.post("/{rfq_id}/status", response_model=RfqRecord)
async def transition_rfq(
    rfq_id: int,
    update: StatusUpdate,
    actor: dict = Depends(require_customer),
    db: Session = Depends(get_db)
):
    return RfqService(db).transition_rfq(rfq_id, actor["actor_id"], update.status)


@router.get("/{rfq_id}/events", response_model=List[EventResponse])
async def list_rfq_events(
    rfq_id: int,
    limit: int = Query(100, ge=1, le=500),
    actor: dict = Depends(require_customer),
    db: Session = Depends(get_db)
):
    return RfqService(db).rfq_events(rfq_id, actor["actor_id"], limit=limit)
