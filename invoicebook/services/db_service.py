"""Async database service for invoices and their allocations"""

from typing import Optional, List, Sequence
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.orm.attributes import flag_modified
import logging

from invoicebook.exceptions import require_organization
from invoicebook.models.database import AsyncSessionLocal
from invoicebook.models.invoice import Invoice as InvoicePydantic, Allocation, LineItem
from invoicebook.models.db_models import Invoice as InvoiceDB, InvoiceAllocation as AllocationDB
from invoicebook.models.db_utils import (
    pydantic_to_db_invoice,
    db_to_pydantic_invoice,
    db_to_pydantic_allocation,
    pydantic_to_db_allocation,
    json_to_extracted_data,
)
from invoicebook.reconciliation.allocator import AllocationAssignment

logger = logging.getLogger(__name__)


class DatabaseService:
    """Async service for invoice and allocation persistence"""

    @staticmethod
    async def save_invoice(
        invoice: InvoicePydantic,
        db: Optional[AsyncSession] = None
    ) -> InvoiceDB:
        """
        Save invoice to database

        Args:
            invoice: Pydantic Invoice model
            db: Async database session (optional, creates new if not provided)

        Returns:
            SQLAlchemy Invoice model
        """
        require_organization(invoice.organization_id)
        if db:
            session = db
            should_close = False
        else:
            session = AsyncSessionLocal()
            should_close = True

        try:
            existing_invoice = None
            if invoice.id:
                result = await session.execute(
                    select(InvoiceDB).where(InvoiceDB.id == invoice.id)
                )
                existing_invoice = result.scalar_one_or_none()

            if existing_invoice:
                logger.info(f"Updating existing invoice: {invoice.id}")
                existing_invoice.organization_id = invoice.organization_id
                existing_invoice.file_name = invoice.file_name
                existing_invoice.supplier_id = invoice.supplier_id
                existing_invoice.extracted_data = invoice.extracted_data.to_wire()
                existing_invoice.updated_at = datetime.utcnow()
                db_invoice = existing_invoice
            else:
                logger.info(f"Creating new invoice: {invoice.id}")
                db_invoice = pydantic_to_db_invoice(invoice)
                session.add(db_invoice)

            await session.commit()
            await session.refresh(db_invoice)

            logger.info(f"Invoice saved to database: {db_invoice.id}")
            return db_invoice

        except Exception as e:
            await session.rollback()
            logger.error(f"Error saving invoice {invoice.id}: {e}", exc_info=True)
            raise
        finally:
            if should_close:
                await session.close()

    @staticmethod
    async def _get_invoice_row(
        session: AsyncSession,
        invoice_id: str,
        organization_id: str,
    ) -> Optional[InvoiceDB]:
        result = await session.execute(
            select(InvoiceDB).where(
                InvoiceDB.id == invoice_id,
                InvoiceDB.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_invoice(
        invoice_id: str,
        organization_id: str,
        db: Optional[AsyncSession] = None
    ) -> Optional[InvoicePydantic]:
        """
        Get invoice from database, scoped to an organization

        Args:
            invoice_id: Invoice ID
            organization_id: Organization the invoice must belong to
            db: Async database session (optional)

        Returns:
            Pydantic Invoice model or None if not found
        """
        organization_id = require_organization(organization_id)
        if db:
            session = db
            should_close = False
        else:
            session = AsyncSessionLocal()
            should_close = True

        try:
            db_invoice = await DatabaseService._get_invoice_row(session, invoice_id, organization_id)
            if db_invoice:
                return db_to_pydantic_invoice(db_invoice)
            return None

        except Exception as e:
            logger.error(f"Error getting invoice {invoice_id}: {e}", exc_info=True)
            raise
        finally:
            if should_close:
                await session.close()

    @staticmethod
    async def list_invoices(
        organization_id: str,
        skip: int = 0,
        limit: int = 100,
        supplier_id: Optional[str] = None,
        db: Optional[AsyncSession] = None
    ) -> List[InvoicePydantic]:
        """
        List an organization's invoices, newest first

        Args:
            organization_id: Organization scope
            skip: Number of records to skip
            limit: Maximum number of records to return
            supplier_id: Optional supplier filter
            db: Async database session (optional)
        """
        organization_id = require_organization(organization_id)
        if db:
            session = db
            should_close = False
        else:
            session = AsyncSessionLocal()
            should_close = True

        try:
            query = select(InvoiceDB).where(InvoiceDB.organization_id == organization_id)

            if supplier_id:
                query = query.where(InvoiceDB.supplier_id == supplier_id)

            query = query.order_by(InvoiceDB.created_at.desc())
            query = query.offset(skip).limit(limit)

            result = await session.execute(query)
            return [db_to_pydantic_invoice(inv) for inv in result.scalars().all()]

        except Exception as e:
            logger.error(f"Error listing invoices: {e}", exc_info=True)
            raise
        finally:
            if should_close:
                await session.close()

    @staticmethod
    async def replace_items(
        invoice_id: str,
        organization_id: str,
        items: Sequence[LineItem],
        db: AsyncSession,
        commit: bool = True,
    ) -> bool:
        """
        Replace the invoice's extracted items with a new array

        Other keys of extracted_data are kept as they are.

        Returns:
            True if updated, False if the invoice was not found
        """
        organization_id = require_organization(organization_id)
        try:
            db_invoice = await DatabaseService._get_invoice_row(db, invoice_id, organization_id)
            if not db_invoice:
                return False

            extracted = json_to_extracted_data(db_invoice.extracted_data)
            extracted.items = list(items)
            db_invoice.extracted_data = extracted.to_wire()
            flag_modified(db_invoice, "extracted_data")
            db_invoice.updated_at = datetime.utcnow()

            if commit:
                await db.commit()
            else:
                await db.flush()
            return True

        except Exception as e:
            await db.rollback()
            logger.error(f"Error replacing items of invoice {invoice_id}: {e}", exc_info=True)
            raise

    @staticmethod
    async def get_allocations(
        invoice_id: str,
        db: AsyncSession,
    ) -> List[Allocation]:
        """Allocations of an invoice in creation order"""
        result = await db.execute(
            select(AllocationDB)
            .where(AllocationDB.invoice_id == invoice_id)
            .order_by(AllocationDB.created_at, AllocationDB.id)
        )
        return [db_to_pydantic_allocation(a) for a in result.scalars().all()]

    @staticmethod
    async def replace_allocations(
        invoice_id: str,
        allocations: Sequence[Allocation],
        db: AsyncSession,
        user_id: Optional[str] = None,
        commit: bool = True,
    ) -> List[Allocation]:
        """
        Replace all allocations of an invoice, keeping the given order

        Creation timestamps are derived from list position, spaced by a
        microsecond, so that a reload returns the allocations in the order
        they were reconciled. Incoming ``created_at`` values are ignored.
        """
        try:
            await db.execute(
                delete(AllocationDB).where(AllocationDB.invoice_id == invoice_id)
            )

            base = datetime.utcnow().replace(microsecond=0)
            rows = []
            for position, allocation in enumerate(allocations):
                row = pydantic_to_db_allocation(allocation, invoice_id, user_id=user_id)
                row.created_at = base + timedelta(microseconds=position)
                db.add(row)
                rows.append(row)

            if commit:
                await db.commit()
            else:
                await db.flush()

            logger.info(f"Saved {len(rows)} allocation(s) for invoice {invoice_id}")
            return [db_to_pydantic_allocation(row) for row in rows]

        except Exception as e:
            await db.rollback()
            logger.error(f"Error saving allocations of invoice {invoice_id}: {e}", exc_info=True)
            raise

    @staticmethod
    async def update_allocation_indices(
        invoice_id: str,
        assignments: Sequence[AllocationAssignment],
        db: AsyncSession,
        commit: bool = True,
    ) -> int:
        """
        Persist recomputed item_indices, all or nothing

        Returns:
            Number of allocation rows updated
        """
        try:
            result = await db.execute(
                select(AllocationDB).where(AllocationDB.invoice_id == invoice_id)
            )
            rows = {row.id: row for row in result.scalars().all()}

            updated = 0
            for assignment in assignments:
                row = rows.get(assignment.allocation_id)
                if row is None:
                    raise LookupError(
                        f"Allocation {assignment.allocation_id} does not belong to invoice {invoice_id}"
                    )
                row.item_indices = list(assignment.item_indices)
                flag_modified(row, "item_indices")
                updated += 1

            if commit:
                await db.commit()
            else:
                await db.flush()
            return updated

        except Exception as e:
            await db.rollback()
            logger.error(f"Error updating allocation indices of invoice {invoice_id}: {e}", exc_info=True)
            raise
