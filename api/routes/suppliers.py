"""API routes for supplier resolution and maintenance"""

from dataclasses import asdict
from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from typing import Optional
import logging

from invoicebook.models.database import get_db
from invoicebook.models.invoice import ValidationStatus
from invoicebook.suppliers.supplier_service import SupplierService
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_organization_id, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


class ResolveSupplierRequest(BaseModel):
    """Supplier name as extracted from an invoice"""
    display_name: str = Field(min_length=1)


@router.post("/suppliers/resolve")
async def resolve_supplier(
    request: ResolveSupplierRequest,
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Map a supplier name to the organization's canonical supplier (creating it if needed)"""
    try:
        resolution = await SupplierService(db).resolve_supplier(organization_id, request.display_name)
        if resolution is None:
            raise HTTPException(
                status_code=422,
                detail=f"Supplier name {request.display_name!r} has no identifying words",
            )
        return {
            "supplier": resolution.supplier.model_dump(mode="json"),
            "match_type": resolution.match_type.value,
            "similarity": resolution.similarity,
            "created": resolution.created,
        }
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)


@router.get("/suppliers")
async def list_suppliers(
    validation_status: Optional[ValidationStatus] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """List the organization's suppliers"""
    try:
        suppliers = await SupplierService(db).list_suppliers(
            organization_id, validation_status=validation_status, skip=skip, limit=limit
        )
        return {"suppliers": [s.model_dump(mode="json") for s in suppliers]}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/suppliers/{supplier_id}/validate")
async def validate_supplier(
    supplier_id: str,
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Validate and activate a pending supplier"""
    try:
        supplier = await SupplierService(db).validate_supplier(organization_id, supplier_id)
        return {"success": True, "supplier": supplier.model_dump(mode="json")}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/suppliers/merge")
async def merge_suppliers(
    dry_run: bool = Query(default=True),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Merge suppliers whose names normalize identically"""
    try:
        report = await SupplierService(db).merge_duplicate_suppliers(organization_id, dry_run=dry_run)
        return asdict(report)
    except Exception as e:
        raise to_http_exception(e)
