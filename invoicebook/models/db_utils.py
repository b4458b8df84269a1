"""Utilities for converting between Pydantic and SQLAlchemy models"""

from typing import Optional
import json

from .invoice import (
    Invoice as InvoicePydantic,
    ExtractedInvoiceData,
    Allocation as AllocationPydantic,
    Supplier as SupplierPydantic,
    ValidationStatus,
)
from .db_models import Invoice as InvoiceDB, InvoiceAllocation as AllocationDB, Supplier as SupplierDB


def json_to_extracted_data(data) -> ExtractedInvoiceData:
    """Parse the extracted_data JSON column (tolerates None and JSON strings)"""
    if not data:
        return ExtractedInvoiceData()
    if isinstance(data, str):
        data = json.loads(data)
    return ExtractedInvoiceData.model_validate(data)


def pydantic_to_db_invoice(invoice_pydantic: InvoicePydantic) -> InvoiceDB:
    """Convert Pydantic Invoice to SQLAlchemy Invoice"""
    invoice_db = InvoiceDB(
        organization_id=invoice_pydantic.organization_id,
        file_name=invoice_pydantic.file_name,
        supplier_id=invoice_pydantic.supplier_id,
        extracted_data=invoice_pydantic.extracted_data.to_wire(),
    )
    if invoice_pydantic.id:
        invoice_db.id = invoice_pydantic.id
    return invoice_db


def db_to_pydantic_invoice(invoice_db: InvoiceDB) -> InvoicePydantic:
    """Convert SQLAlchemy Invoice to Pydantic Invoice"""
    return InvoicePydantic(
        id=invoice_db.id,
        organization_id=invoice_db.organization_id,
        file_name=invoice_db.file_name,
        supplier_id=invoice_db.supplier_id,
        extracted_data=json_to_extracted_data(invoice_db.extracted_data),
        created_at=invoice_db.created_at,
        updated_at=invoice_db.updated_at,
    )


def db_to_pydantic_allocation(allocation_db: AllocationDB) -> AllocationPydantic:
    """Convert SQLAlchemy allocation row to Pydantic Allocation"""
    indices = allocation_db.item_indices or []
    if isinstance(indices, str):
        indices = json.loads(indices)
    return AllocationPydantic(
        id=allocation_db.id,
        invoice_id=allocation_db.invoice_id,
        user_id=allocation_db.user_id,
        account_code=allocation_db.account_code,
        label=allocation_db.label,
        amount=allocation_db.amount,
        vat_code=allocation_db.vat_code,
        vat_rate=allocation_db.vat_rate,
        item_indices=[int(i) for i in indices],
        created_at=allocation_db.created_at,
    )


def pydantic_to_db_allocation(
    allocation: AllocationPydantic,
    invoice_id: str,
    user_id: Optional[str] = None,
) -> AllocationDB:
    """Convert Pydantic Allocation to a new SQLAlchemy row for an invoice"""
    allocation_db = AllocationDB(
        invoice_id=invoice_id,
        user_id=allocation.user_id or user_id,
        account_code=allocation.account_code,
        label=allocation.label,
        amount=allocation.amount,
        vat_code=allocation.vat_code,
        vat_rate=allocation.vat_rate,
        item_indices=sorted(set(allocation.item_indices)),
    )
    if allocation.id:
        allocation_db.id = allocation.id
    if allocation.created_at:
        allocation_db.created_at = allocation.created_at
    return allocation_db


def db_to_pydantic_supplier(supplier_db: SupplierDB) -> SupplierPydantic:
    """Convert SQLAlchemy Supplier to Pydantic Supplier"""
    return SupplierPydantic(
        id=supplier_db.id,
        organization_id=supplier_db.organization_id,
        code=supplier_db.code,
        display_name=supplier_db.display_name,
        normalized_key=supplier_db.normalized_key,
        validation_status=ValidationStatus(supplier_db.validation_status),
        is_active=bool(supplier_db.is_active),
        created_at=supplier_db.created_at,
    )
