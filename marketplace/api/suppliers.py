"""
Supplier profile API routes - capabilities and certification documents.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.core.rbac import require_supplier, require_any_actor
from marketplace.db.session import get_db
from marketplace.services.records import CapabilityRecord, DocumentRecord
from marketplace.services.suppliers import CapabilityInput, SupplierProfileService

router = APIRouter(prefix="/api/suppliers", tags=["Suppliers"])


# ============= SCHEMAS =============

class CapabilitiesReplace(BaseModel):
    capabilities: List[CapabilityInput]


class DocumentCreate(BaseModel):
    doc_type: str
    file_name: Optional[str] = None


# ============= ROUTES =============

@router.put("/me/capabilities", response_model=List[CapabilityRecord])
async def replace_capabilities(
    payload: CapabilitiesReplace,
    actor: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Replace the calling supplier's capability set."""
    return SupplierProfileService(db).replace_capabilities(actor["actor_id"], payload.capabilities)


@router.post("/me/documents", response_model=DocumentRecord, status_code=201)
async def add_document(
    payload: DocumentCreate,
    actor: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return SupplierProfileService(db).add_document(actor["actor_id"], payload.doc_type, payload.file_name)


@router.get("/{supplier_id}/capabilities", response_model=List[CapabilityRecord])
async def get_capabilities(
    supplier_id: int,
    actor: dict = Depends(require_any_actor),
    db: Session = Depends(get_db)
):
    return SupplierProfileService(db).get_capabilities(supplier_id)


@router.get("/{supplier_id}/documents", response_model=List[DocumentRecord])
async def get_documents(
    supplier_id: int,
    actor: dict = Depends(require_any_actor),
    db: Session = Depends(get_db)
):
    return SupplierProfileService(db).get_documents(supplier_id)
