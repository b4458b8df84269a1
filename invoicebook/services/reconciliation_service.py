"""Invoice-level deduplication and allocation reconciliation

Loads an invoice and its allocations, runs the pure reconciliation
functions, and writes the outcome back in a single transaction.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from invoicebook.exceptions import InvoiceNotFoundError, require_organization
from invoicebook.models.decimal_wire import quantize_money
from invoicebook.models.invoice import Allocation, Invoice
from invoicebook.reconciliation.allocator import (
    AllocationAssignment,
    check_allocation_coverage,
    reconcile_allocations,
    validate_allocation_amounts,
)
from invoicebook.reconciliation.deduplicator import deduplicate_items, find_similar_descriptions
from invoicebook.reconciliation.totals import total_ht
from invoicebook.services.db_service import DatabaseService
from invoicebook.validation.allocation_validator import AllocationValidator

logger = logging.getLogger(__name__)


@dataclass
class AllocationReconciliationReport:
    """Outcome of recomputing an invoice's allocation indices"""
    invoice_id: str
    dry_run: bool
    item_count: int
    total_items_ht: Decimal
    total_allocated: Decimal
    assignments: List[AllocationAssignment] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "dry_run": self.dry_run,
            "item_count": self.item_count,
            "total_items_ht": str(quantize_money(self.total_items_ht)),
            "total_allocated": str(quantize_money(self.total_allocated)),
            "assignments": [a.to_dict() for a in self.assignments],
        }


@dataclass
class InvoiceDeduplicationReport:
    """Outcome of removing duplicate line items from an invoice"""
    invoice_id: str
    dry_run: bool
    items_before: int
    items_after: int
    duplicates: List[dict] = field(default_factory=list)
    similar_descriptions: dict = field(default_factory=dict)
    total_ht_before: Decimal = Decimal("0")
    total_ht_after: Decimal = Decimal("0")
    expected_subtotal: Optional[Decimal] = None
    reallocation: Optional[AllocationReconciliationReport] = None

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "dry_run": self.dry_run,
            "items_before": self.items_before,
            "items_after": self.items_after,
            "removed": self.items_before - self.items_after,
            "duplicates": self.duplicates,
            "similar_descriptions": self.similar_descriptions,
            "total_ht_before": str(quantize_money(self.total_ht_before)),
            "total_ht_after": str(quantize_money(self.total_ht_after)),
            "expected_subtotal": (
                str(quantize_money(self.expected_subtotal))
                if self.expected_subtotal is not None else None
            ),
            "reallocation": self.reallocation.to_dict() if self.reallocation else None,
        }


class ReconciliationService:
    """Request-scoped invoice reconciliation"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load(self, invoice_id: str, organization_id: str) -> Invoice:
        invoice = await DatabaseService.get_invoice(invoice_id, organization_id, db=self.db)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def _reconcile(
        self,
        invoice: Invoice,
        items,
        allocations: List[Allocation],
        dry_run: bool,
    ) -> AllocationReconciliationReport:
        assignments = reconcile_allocations(items, allocations)
        return AllocationReconciliationReport(
            invoice_id=invoice.id,
            dry_run=dry_run,
            item_count=len(items),
            total_items_ht=total_ht(items),
            total_allocated=sum((a.amount for a in allocations), Decimal("0")),
            assignments=assignments,
        )

    async def reconcile_invoice_allocations(
        self,
        invoice_id: str,
        organization_id: str,
        dry_run: bool = False,
    ) -> AllocationReconciliationReport:
        """
        Recompute item_indices of every allocation of an invoice.

        Nothing is written when the allocations are malformed or on a dry run.

        Raises:
            InvoiceNotFoundError: invoice missing or in another organization
            MalformedAllocationError: an allocation amount is not numeric
        """
        organization_id = require_organization(organization_id)
        invoice = await self._load(invoice_id, organization_id)
        allocations = await DatabaseService.get_allocations(invoice.id, db=self.db)

        report = self._reconcile(invoice, invoice.items, allocations, dry_run)
        if not allocations:
            logger.info(f"Invoice {invoice_id} has no allocation, nothing to reconcile")
            return report

        if not dry_run:
            await DatabaseService.update_allocation_indices(invoice.id, report.assignments, db=self.db)
            logger.info(f"Reconciled {len(report.assignments)} allocation(s) of invoice {invoice_id}")
        return report

    async def deduplicate_invoice(
        self,
        invoice_id: str,
        organization_id: str,
        dry_run: bool = False,
        reallocate: bool = True,
    ) -> InvoiceDeduplicationReport:
        """
        Remove duplicate line items from an invoice.

        The unique items replace the stored array. Existing allocations point
        at the old indices, so with ``reallocate`` they are recomputed in the
        same transaction.

        Raises:
            InvoiceNotFoundError: invoice missing or in another organization
            MalformedAllocationError: reallocation requested on malformed allocations
        """
        organization_id = require_organization(organization_id)
        invoice = await self._load(invoice_id, organization_id)
        result = deduplicate_items(invoice.items)

        report = InvoiceDeduplicationReport(
            invoice_id=invoice.id,
            dry_run=dry_run,
            items_before=len(invoice.items),
            items_after=len(result.unique_items),
            duplicates=[
                {
                    "index": d.index,
                    "duplicate_of": d.duplicate_of,
                    "description": d.item.description,
                    "reference": d.item.reference,
                    "fingerprint": d.fingerprint,
                }
                for d in result.duplicates
            ],
            total_ht_before=result.total_ht_before,
            total_ht_after=result.total_ht_after,
            expected_subtotal=invoice.extracted_data.subtotal,
        )

        if not result.has_duplicates:
            report.similar_descriptions = find_similar_descriptions(invoice.items)
            logger.info(f"No duplicate line item in invoice {invoice_id}")
            return report

        allocations = await DatabaseService.get_allocations(invoice.id, db=self.db)
        if reallocate and allocations:
            # Computed before any write so a malformed allocation aborts cleanly
            report.reallocation = self._reconcile(invoice, result.unique_items, allocations, dry_run)

        if dry_run:
            return report

        await DatabaseService.replace_items(
            invoice.id, organization_id, result.unique_items, db=self.db, commit=False
        )
        if report.reallocation is not None:
            await DatabaseService.update_allocation_indices(
                invoice.id, report.reallocation.assignments, db=self.db, commit=False
            )
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error committing deduplication of invoice {invoice_id}: {e}", exc_info=True)
            raise

        logger.info(
            f"Invoice {invoice_id}: removed {result.removed_count} duplicate item(s), "
            f"HT {quantize_money(result.total_ht_before)} -> {quantize_money(result.total_ht_after)}"
        )
        if allocations and not reallocate:
            logger.warning(f"Invoice {invoice_id}: allocation indices are stale after deduplication")
        return report

    async def replace_allocations(
        self,
        invoice_id: str,
        organization_id: str,
        allocations: List[Allocation],
        user_id: Optional[str] = None,
    ) -> AllocationReconciliationReport:
        """
        Replace an invoice's allocations and assign items to them.

        The amounts are checked before anything is written.
        """
        organization_id = require_organization(organization_id)
        invoice = await self._load(invoice_id, organization_id)
        validate_allocation_amounts(allocations)

        saved = await DatabaseService.replace_allocations(
            invoice.id, allocations, db=self.db, user_id=user_id, commit=False
        )
        report = self._reconcile(invoice, invoice.items, saved, dry_run=False)
        await DatabaseService.update_allocation_indices(invoice.id, report.assignments, db=self.db)
        return report

    async def check_invoice_allocations(self, invoice_id: str, organization_id: str) -> dict:
        """Read-only coverage and consistency report for an invoice's allocations"""
        organization_id = require_organization(organization_id)
        invoice = await self._load(invoice_id, organization_id)
        allocations = await DatabaseService.get_allocations(invoice.id, db=self.db)

        coverage = check_allocation_coverage(len(invoice.items), allocations)
        validation = AllocationValidator.get_validation_summary(invoice, allocations)
        return {
            "invoice_id": invoice.id,
            "allocation_count": len(allocations),
            "coverage": coverage.to_dict(),
            "validation": validation,
            "allocations": [a.model_dump(mode="json") for a in allocations],
        }
