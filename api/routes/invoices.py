"""API routes for invoice deduplication and ledger allocations"""

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal
import logging

from invoicebook.models.database import get_db
from invoicebook.models.invoice import Allocation
from invoicebook.services.db_service import DatabaseService
from invoicebook.services.reconciliation_service import ReconciliationService
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_organization_id, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


class AllocationInput(BaseModel):
    """One allocation line entered by a user"""
    account_code: str = Field(min_length=1)
    label: Optional[str] = None
    amount: Decimal
    vat_code: Optional[str] = None
    vat_rate: Optional[Decimal] = None


class ReplaceAllocationsRequest(BaseModel):
    """Full replacement of an invoice's allocations"""
    user_id: Optional[str] = None
    allocations: List[AllocationInput] = Field(default_factory=list)


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Invoice with its extracted data and allocations"""
    try:
        invoice = await DatabaseService.get_invoice(invoice_id, organization_id, db=db)
        if not invoice:
            raise HTTPException(status_code=404, detail=f"Invoice {invoice_id} not found")

        allocations = await DatabaseService.get_allocations(invoice_id, db=db)
        return {
            "invoice": invoice.model_dump(mode="json"),
            "allocations": [a.model_dump(mode="json") for a in allocations],
        }
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)


@router.put("/invoices/{invoice_id}/allocations")
async def replace_allocations(
    invoice_id: str,
    request: ReplaceAllocationsRequest,
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Replace allocations and assign the invoice's items to them"""
    try:
        service = ReconciliationService(db)
        report = await service.replace_allocations(
            invoice_id=invoice_id,
            organization_id=organization_id,
            allocations=[Allocation(**a.model_dump()) for a in request.allocations],
            user_id=request.user_id,
        )
        return {"success": True, **report.to_dict()}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/invoices/{invoice_id}/deduplicate")
async def deduplicate_invoice(
    invoice_id: str,
    dry_run: bool = Query(default=False),
    reallocate: bool = Query(default=True),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Remove duplicate line items and recompute allocation indices"""
    try:
        service = ReconciliationService(db)
        report = await service.deduplicate_invoice(
            invoice_id=invoice_id,
            organization_id=organization_id,
            dry_run=dry_run,
            reallocate=reallocate,
        )
        return {"success": True, **report.to_dict()}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/invoices/{invoice_id}/allocations/reconcile")
async def reconcile_allocations(
    invoice_id: str,
    dry_run: bool = Query(default=False),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Recompute item indices of the invoice's allocations"""
    try:
        service = ReconciliationService(db)
        report = await service.reconcile_invoice_allocations(
            invoice_id=invoice_id,
            organization_id=organization_id,
            dry_run=dry_run,
        )
        return {"success": True, **report.to_dict()}
    except Exception as e:
        raise to_http_exception(e)


@router.get("/invoices/{invoice_id}/allocations/check")
async def check_allocations(
    invoice_id: str,
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    """Coverage and consistency of the stored allocations"""
    try:
        service = ReconciliationService(db)
        return await service.check_invoice_allocations(invoice_id, organization_id)
    except Exception as e:
        raise to_http_exception(e)
