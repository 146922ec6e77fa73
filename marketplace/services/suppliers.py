"""
Supplier profile management: registration, capabilities and documents.
"""
from typing import List, Optional, Sequence
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.errors import ConflictError, InvalidInputError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.db.models import Supplier, SupplierCapability, SupplierDocument
from marketplace.services.records import CapabilityRecord, DocumentRecord, SupplierRecord
from marketplace.services.repository import (
    capability_to_record, document_to_record, supplier_to_record,
)

logger = get_logger(__name__)


def _clean_terms(values) -> List[str]:
    cleaned = []
    for value in values or []:
        if isinstance(value, str) and value.strip() and value.strip() not in cleaned:
            cleaned.append(value.strip())
    return cleaned


class CapabilityInput(BaseModel):
    process: str
    materials: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    max_length_mm: Optional[float] = None
    max_width_mm: Optional[float] = None
    max_height_mm: Optional[float] = None

    @field_validator('process')
    @classmethod
    def validate_process(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("process is required")
        return v

    @field_validator('materials', 'certifications')
    @classmethod
    def clean_lists(cls, v: List[str]) -> List[str]:
        return _clean_terms(v)

    @field_validator('max_length_mm', 'max_width_mm', 'max_height_mm')
    @classmethod
    def validate_dimension(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("size limits must be positive")
        return v


class SupplierInput(BaseModel):
    display_name: str
    contact_email: EmailStr
    country: Optional[str] = None
    is_verified: bool = False

    @field_validator('display_name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("display_name is required")
        return v


def _invalid(e: ValidationError, code: str) -> InvalidInputError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "input"
    return InvalidInputError(f"{field}: {first.get('msg')}", code=code)


class SupplierProfileService:
    def __init__(self, db: Session):
        self.db = db

    def _get_supplier_row(self, supplier_id: int) -> Supplier:
        supplier = self.db.query(Supplier).filter(Supplier.id == supplier_id).first()
        if not supplier:
            raise NotFoundError("Supplier not found", code="supplier_not_found")
        return supplier

    def create_supplier(self, **fields) -> SupplierRecord:
        try:
            data = SupplierInput(**fields)
        except ValidationError as e:
            raise _invalid(e, "invalid_supplier")

        supplier = Supplier(
            display_name=data.display_name,
            contact_email=str(data.contact_email).lower(),
            country=data.country,
            is_verified=data.is_verified,
        )
        self.db.add(supplier)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("A supplier with this contact email already exists", code="duplicate_supplier")
        self.db.refresh(supplier)
        logger.info(f"Registered supplier {supplier.id}", extra={"supplier_id": supplier.id})
        return supplier_to_record(supplier)

    def replace_capabilities(self, supplier_id: int, capabilities: Sequence) -> List[CapabilityRecord]:
        """
        Replace the supplier's capability set wholesale.

        Existing rows are deleted and the new set inserted in one
        transaction; there is no partial patching.
        """
        try:
            items = [
                c if isinstance(c, CapabilityInput) else CapabilityInput(**c)
                for c in capabilities
            ]
        except ValidationError as e:
            raise _invalid(e, "invalid_capability")

        self._get_supplier_row(supplier_id)
        try:
            self.db.query(SupplierCapability).filter(
                SupplierCapability.supplier_id == supplier_id
            ).delete(synchronize_session=False)

            rows = [
                SupplierCapability(supplier_id=supplier_id, **item.model_dump())
                for item in items
            ]
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Capability replace failed: {e.__class__.__name__}", extra={"supplier_id": supplier_id})
            raise ConflictError("Capabilities could not be saved, please retry")

        logger.info(
            f"Replaced capabilities for supplier {supplier_id}: {len(rows)} rows",
            extra={"supplier_id": supplier_id},
        )
        return [capability_to_record(row) for row in rows]

    def add_document(self, supplier_id: int, doc_type: str, file_name: Optional[str] = None) -> DocumentRecord:
        """Register certification evidence (e.g. an ISO 9001 certificate)."""
        if not isinstance(doc_type, str) or not doc_type.strip():
            raise InvalidInputError("doc_type is required", code="invalid_document")

        self._get_supplier_row(supplier_id)
        document = SupplierDocument(
            supplier_id=supplier_id,
            doc_type=doc_type.strip(),
            file_name=file_name.strip() if file_name else None,
        )
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        return document_to_record(document)

    def get_capabilities(self, supplier_id: int) -> List[CapabilityRecord]:
        supplier = self._get_supplier_row(supplier_id)
        return [capability_to_record(row) for row in supplier.capabilities]

    def get_documents(self, supplier_id: int) -> List[DocumentRecord]:
        supplier = self._get_supplier_row(supplier_id)
        return [document_to_record(row) for row in supplier.documents]
