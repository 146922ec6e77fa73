"""
Shared fixtures: a file-backed SQLite database per test and row factories.
"""
import os
import tempfile

# Settings are read at import time; configure them before any app import
_TEST_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'app.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-marketplace-suite-0123456789")

from datetime import datetime, timezone
from itertools import count

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from marketplace.db.session import Base, build_engine
from marketplace.db import models  # noqa - register tables
from marketplace.db.models import (
    RFQ, Bid, Customer, Supplier, SupplierCapability, SupplierDocument,
    BidStatus, RFQStatus,
)


# ============= DATABASE =============

@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}", poolclass=NullPool)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ============= FACTORIES =============

class Factory:
    """Inserts rows directly, bypassing eligibility checks."""

    def __init__(self, db):
        self.db = db
        self._seq = count(1)

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def customer(self, name=None):
        n = next(self._seq)
        return self._save(Customer(
            display_name=name or f"Customer {n}",
            contact_email=f"buyer{n}@acmeparts.io",
        ))

    def supplier(self, capabilities=None, documents=None, name=None):
        n = next(self._seq)
        supplier = self._save(Supplier(
            display_name=name or f"Supplier {n}",
            contact_email=f"sales{n}@shopfloor.io",
            is_verified=True,
        ))
        for capability in capabilities or []:
            self.db.add(SupplierCapability(
                supplier_id=supplier.id,
                process=capability["process"],
                materials=capability.get("materials", []),
                certifications=capability.get("certifications", []),
            ))
        for doc_type in documents or []:
            self.db.add(SupplierDocument(supplier_id=supplier.id, doc_type=doc_type))
        self.db.commit()
        return supplier

    def cnc_supplier(self, **kwargs):
        return self.supplier(
            capabilities=[{"process": "CNC Machining", "materials": ["Aluminum 6061"]}],
            **kwargs,
        )

    def rfq(self, customer, status=RFQStatus.OPEN.value, processes=("cnc",), materials=("aluminum",),
            certifications=(), created_at=None, target_date=None, priority=None, title=None):
        created_at = created_at or datetime.now(timezone.utc)
        return self._save(RFQ(
            customer_id=customer.id,
            title=title or f"RFQ {next(self._seq)}",
            status=status,
            process_requirements=list(processes),
            material_requirements=list(materials),
            certification_requirements=list(certifications),
            quantity=100,
            target_date=target_date,
            priority=priority,
            created_at=created_at,
            updated_at=created_at,
        ))

    def bid(self, rfq, supplier, price=1000.0, status=BidStatus.SUBMITTED.value,
            currency="USD", lead_time_days=14, updated_at=None):
        stamp = updated_at or datetime.now(timezone.utc)
        return self._save(Bid(
            rfq_id=rfq.id,
            supplier_id=supplier.id,
            price_total=price,
            currency=currency,
            lead_time_days=lead_time_days,
            status=status,
            created_at=stamp,
            updated_at=stamp,
        ))


@pytest.fixture
def factory(db):
    return Factory(db)

