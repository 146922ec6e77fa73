"""
RFQ management for customers: registration, creation and status changes.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.errors import (
    ConflictError, InvalidInputError, NotAuthorizedError, NotEligibleError, NotFoundError,
)
from marketplace.core.logging import get_logger
from marketplace.db.models import RFQ, Customer, ActorType, RFQStatus
from marketplace.services.capability_index import normalize_terms
from marketplace.services.events import add_event, list_events
from marketplace.services.records import RfqRecord, as_utc
from marketplace.services.repository import MarketplaceRepository, rfq_to_record

logger = get_logger(__name__)

# Allowed manual transitions; "awarded" is only reached through the award transaction
RFQ_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    RFQStatus.DRAFT.value: (RFQStatus.OPEN.value, RFQStatus.CANCELLED.value),
    RFQStatus.OPEN.value: (
        RFQStatus.IN_REVIEW.value, RFQStatus.PENDING_AWARD.value,
        RFQStatus.CLOSED.value, RFQStatus.CANCELLED.value,
    ),
    RFQStatus.IN_REVIEW.value: (
        RFQStatus.OPEN.value, RFQStatus.PENDING_AWARD.value,
        RFQStatus.CLOSED.value, RFQStatus.CANCELLED.value,
    ),
    RFQStatus.PENDING_AWARD.value: (
        RFQStatus.IN_REVIEW.value, RFQStatus.CLOSED.value, RFQStatus.CANCELLED.value,
    ),
    RFQStatus.AWARDED.value: (RFQStatus.CLOSED.value,),
    RFQStatus.CLOSED.value: (),
    RFQStatus.CANCELLED.value: (),
}

INITIAL_STATUSES = (RFQStatus.DRAFT.value, RFQStatus.OPEN.value)


class CustomerInput(BaseModel):
    display_name: str
    contact_email: EmailStr

    @field_validator('display_name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("display_name is required")
        return v


class RfqInput(BaseModel):
    title: str
    description: Optional[str] = None
    process_requirements: List[str] = Field(default_factory=list)
    material_requirements: List[str] = Field(default_factory=list)
    certification_requirements: List[str] = Field(default_factory=list)
    quantity: Optional[int] = None
    target_date: Optional[datetime] = None
    priority: Optional[float] = None
    status: str = RFQStatus.OPEN.value

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is required")
        return v

    @field_validator('process_requirements', 'material_requirements', 'certification_requirements')
    @classmethod
    def normalize_requirements(cls, v: List[str]) -> List[str]:
        return normalize_terms(v)

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("quantity must be positive")
        return v

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and (v < 0 or v > 100):
            raise ValueError("priority must be between 0 and 100")
        return v

    @field_validator('target_date')
    @classmethod
    def normalize_target_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in INITIAL_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(INITIAL_STATUSES)}")
        return v


def _invalid(e: ValidationError, code: str) -> InvalidInputError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "input"
    return InvalidInputError(f"{field}: {first.get('msg')}", code=code)


class RfqService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = MarketplaceRepository(db)

    def create_customer(self, display_name: str, contact_email: str) -> Customer:
        try:
            data = CustomerInput(display_name=display_name, contact_email=contact_email)
        except ValidationError as e:
            raise _invalid(e, "invalid_customer")

        customer = Customer(display_name=data.display_name, contact_email=str(data.contact_email).lower())
        self.db.add(customer)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("A customer with this contact email already exists", code="duplicate_customer")
        self.db.refresh(customer)
        return customer

    def create_rfq(self, customer_id: int, **fields) -> RfqRecord:
        try:
            data = RfqInput(**fields)
        except ValidationError as e:
            raise _invalid(e, "invalid_rfq")

        if not self.db.query(Customer.id).filter(Customer.id == customer_id).first():
            raise NotFoundError("Customer not found", code="customer_not_found")

        now = datetime.now(timezone.utc)
        rfq = RFQ(customer_id=customer_id, created_at=now, updated_at=now, **data.model_dump())
        self.db.add(rfq)
        try:
            self.db.flush()
            add_event(
                self.db,
                "rfq_created",
                rfq_id=rfq.id,
                actor_type=ActorType.CUSTOMER,
                actor_id=customer_id,
                payload={
                    "status": rfq.status,
                    "process_requirements": data.process_requirements,
                    "material_requirements": data.material_requirements,
                    "certification_requirements": data.certification_requirements,
                },
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"RFQ create failed: {e.__class__.__name__}", extra={"actor_id": customer_id})
            raise ConflictError("RFQ could not be created, please retry")

        self.db.refresh(rfq)
        return rfq_to_record(rfq)

    def transition_rfq(self, rfq_id: int, actor_id: int, status: str) -> RfqRecord:
        """Move an RFQ along an allowed edge of its status graph."""
        if status not in RFQ_TRANSITIONS:
            raise InvalidInputError(f"Unknown RFQ status: {status}", code="invalid_status")

        rfq = self.repo.get_rfq(rfq_id)
        if rfq.customer_id != actor_id:
            raise NotAuthorizedError("Only the RFQ owner can change its status")
        if status == rfq.status:
            return rfq
        if status not in RFQ_TRANSITIONS[rfq.status]:
            raise NotEligibleError(
                f"Cannot move RFQ from {rfq.status} to {status}",
                code="invalid_transition",
            )

        try:
            updated = self.db.query(RFQ).filter(
                RFQ.id == rfq_id,
                RFQ.status == rfq.status,
            ).update(
                {RFQ.status: status, RFQ.updated_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
            if updated != 1:
                self.db.rollback()
                raise ConflictError("RFQ status changed by another request", code="conflict")

            add_event(
                self.db,
                "rfq_status_changed",
                rfq_id=rfq_id,
                actor_type=ActorType.CUSTOMER,
                actor_id=actor_id,
                payload={"from": rfq.status, "to": status},
            )
            self.db.commit()
        except ConflictError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"RFQ transition failed: {e.__class__.__name__}", extra={"rfq_id": rfq_id})
            raise ConflictError("RFQ status could not be changed, please retry")

        return self.repo.get_rfq(rfq_id)

    def rfq_events(self, rfq_id: int, actor_id: int, limit: int = 100):
        rfq = self.repo.get_rfq(rfq_id)
        if rfq.customer_id != actor_id:
            raise NotAuthorizedError("Only the RFQ owner can read its event log")
        return list_events(self.db, rfq_id, limit=limit)
