"""
SQLAlchemy ORM models for the sourcing marketplace.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from marketplace.db.session import Base


# ============= ENUMS =============

class RFQStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    IN_REVIEW = "in_review"
    PENDING_AWARD = "pending_award"
    AWARDED = "awarded"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class BidStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    WITHDRAWN = "withdrawn"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ActorType(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    SYSTEM = "system"


# Statuses that accept new or updated bids
OPEN_RFQ_STATUSES = (RFQStatus.OPEN.value, RFQStatus.IN_REVIEW.value)

# Statuses from which a customer may award a bid
AWARDABLE_RFQ_STATUSES = OPEN_RFQ_STATUSES + (RFQStatus.PENDING_AWARD.value,)


# Stored as plain strings (native_enum=False) so the same schema runs on
# Postgres and on the SQLite test database.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]

RFQStatusType = Enum(
    *enum_values(RFQStatus),
    name='rfqstatus',
    native_enum=False,
    length=32,
)
BidStatusType = Enum(
    *enum_values(BidStatus),
    name='bidstatus',
    native_enum=False,
    length=32,
)
ActorTypeType = Enum(
    *enum_values(ActorType),
    name='actortype',
    native_enum=False,
    length=32,
)


# ============= PARTICIPANTS =============

class Customer(Base):
    """Buyer publishing RFQs."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    display_name = Column(String(255), nullable=False)
    contact_email = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    rfqs = relationship("RFQ", back_populates="customer")


class Supplier(Base):
    """Supplier master data."""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    display_name = Column(String(255), nullable=False)
    contact_email = Column(String(255), unique=True, nullable=False, index=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    country = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    capabilities = relationship(
        "SupplierCapability", back_populates="supplier", cascade="all, delete-orphan"
    )
    documents = relationship(
        "SupplierDocument", back_populates="supplier", cascade="all, delete-orphan"
    )
    bids = relationship("Bid", back_populates="supplier")


class SupplierCapability(Base):
    """One declared process with the materials/certifications it covers."""
    __tablename__ = "supplier_capabilities"

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False, index=True)
    process = Column(String(255), nullable=False)
    materials = Column(JSON, default=list)  # list of material names
    certifications = Column(JSON, default=list)  # list of certification names
    max_length_mm = Column(Float)
    max_width_mm = Column(Float)
    max_height_mm = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    supplier = relationship("Supplier", back_populates="capabilities")


class SupplierDocument(Base):
    """Uploaded evidence, e.g. an ISO 9001 certificate."""
    __tablename__ = "supplier_documents"

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False, index=True)
    doc_type = Column(String(100), nullable=False)
    file_name = Column(String(255))
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    supplier = relationship("Supplier", back_populates="documents")


# ============= RFQ & BIDS =============

class RFQ(Base):
    """Request for Quote."""
    __tablename__ = "rfqs"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(RFQStatusType, default=RFQStatus.OPEN.value, nullable=False, index=True)
    process_requirements = Column(JSON, default=list)
    material_requirements = Column(JSON, default=list)
    certification_requirements = Column(JSON, default=list)
    quantity = Column(Integer)
    target_date = Column(DateTime(timezone=True))
    priority = Column(Float)  # 0..1 or 0..100
    awarded_bid_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship("Customer", back_populates="rfqs")
    bids = relationship("Bid", back_populates="rfq")

    __table_args__ = (
        Index('ix_rfqs_status_created', 'status', 'created_at'),
    )


class Bid(Base):
    """A supplier's offer against an RFQ; one row per (rfq, supplier)."""
    __tablename__ = "rfq_bids"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    price_total = Column(Float, nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    lead_time_days = Column(Integer)
    notes = Column(Text)
    status = Column(BidStatusType, default=BidStatus.SUBMITTED.value, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    rfq = relationship("RFQ", back_populates="bids")
    supplier = relationship("Supplier", back_populates="bids")

    __table_args__ = (
        UniqueConstraint('rfq_id', 'supplier_id', name='uq_rfq_bid_supplier'),
        Index('ix_rfq_bids_supplier_updated', 'supplier_id', 'updated_at'),
    )


# ============= EVENT LOG =============

class MarketplaceEvent(Base):
    """Append-only record of matching, pricing and lifecycle decisions."""
    __tablename__ = "marketplace_events"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    actor_type = Column(ActorTypeType, default=ActorType.SYSTEM.value, nullable=False)
    actor_id = Column(Integer, nullable=True)
    payload = Column(JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index('ix_marketplace_events_rfq_created', 'rfq_id', 'created_at'),
    )
