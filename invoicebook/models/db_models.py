"""SQLAlchemy ORM models"""

from sqlalchemy import (
    Column, String, Boolean, DateTime, Numeric, JSON, ForeignKey, Index, UniqueConstraint,
)
from datetime import datetime
import uuid

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Invoice(Base):
    """Invoice with its extracted data (items stored as JSON)"""
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(36), nullable=False)
    file_name = Column(String, nullable=True)
    supplier_id = Column(String(36), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)

    # Raw extraction output, items included
    extracted_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_invoices_organization_id', 'organization_id'),
        Index('ix_invoices_supplier_id', 'supplier_id'),
    )


class InvoiceAllocation(Base):
    """Ledger allocation of part of an invoice's HT subtotal"""
    __tablename__ = "invoice_allocations"

    id = Column(String(36), primary_key=True, default=_uuid)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), nullable=True)
    account_code = Column(String(50), nullable=False)
    label = Column(String, nullable=True)
    amount = Column(Numeric(18, 2), nullable=True)
    vat_code = Column(String(50), nullable=True)
    vat_rate = Column(Numeric(5, 2), nullable=True)
    item_indices = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_invoice_allocations_invoice_id', 'invoice_id', 'created_at'),
    )


class Supplier(Base):
    """Canonical supplier scoped to an organization"""
    __tablename__ = "suppliers"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(36), nullable=False)
    code = Column(String(20), nullable=False)
    display_name = Column(String, nullable=False)
    normalized_key = Column(String, nullable=False)
    validation_status = Column(String(20), nullable=False, default="pending")
    is_active = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('organization_id', 'normalized_key', name='uq_suppliers_org_normalized_key'),
        UniqueConstraint('organization_id', 'code', name='uq_suppliers_org_code'),
        Index('ix_suppliers_org_status', 'organization_id', 'validation_status'),
    )


class SupplierAlias(Base):
    """Alternative normalized name resolving to a supplier"""
    __tablename__ = "supplier_aliases"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(36), nullable=False)
    supplier_id = Column(String(36), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    alias_key = Column(String, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('organization_id', 'alias_key', name='uq_supplier_aliases_org_alias_key'),
        Index('ix_supplier_aliases_supplier_id', 'supplier_id'),
    )
