"""Allocation validation utilities

Validates that an invoice's allocations and line items agree with its
extracted HT subtotal. Nothing here is enforced on write; results are
reported to the caller.
"""

from decimal import Decimal
from typing import Optional, Sequence
from invoicebook.config import settings
from invoicebook.models.invoice import Invoice, Allocation
from invoicebook.models.decimal_wire import quantize_money
from invoicebook.reconciliation.totals import total_ht
import logging

logger = logging.getLogger(__name__)


class AllocationValidator:
    """Validates consistency between invoice subtotal, items and allocations"""

    TOLERANCE = Decimal(settings.AMOUNT_TOLERANCE)  # 1 cent rounding by default

    @staticmethod
    def validate_allocated_amount(
        invoice: Invoice,
        allocations: Sequence[Allocation],
    ) -> tuple[bool, Optional[str]]:
        """
        Validate: sum(allocation.amount) == invoice.subtotal

        Returns:
            (is_valid, error_message)
        """
        subtotal = invoice.extracted_data.subtotal
        if subtotal is None:
            return True, None  # No subtotal to validate

        if not allocations:
            return True, None  # Nothing allocated yet

        allocated = sum((a.amount or Decimal("0") for a in allocations), Decimal("0"))
        difference = abs(quantize_money(subtotal) - quantize_money(allocated))

        if difference > AllocationValidator.TOLERANCE:
            return False, (
                f"Allocation mismatch: invoice.subtotal={subtotal} != "
                f"sum(allocation.amount)={allocated}, difference={difference}"
            )

        return True, None

    @staticmethod
    def validate_items_ht(invoice: Invoice) -> tuple[bool, Optional[str]]:
        """
        Validate: invoice.subtotal == sum(item_ht(item))

        Returns:
            (is_valid, error_message)
        """
        subtotal = invoice.extracted_data.subtotal
        if subtotal is None:
            return True, None  # No subtotal to validate

        if not invoice.items:
            return True, None  # No line items to sum

        items_ht = quantize_money(total_ht(invoice.items))
        difference = abs(quantize_money(subtotal) - items_ht)

        if difference > AllocationValidator.TOLERANCE:
            return False, (
                f"Subtotal mismatch: invoice.subtotal={subtotal} != "
                f"sum(item HT)={items_ht}, difference={difference}"
            )

        return True, None

    @staticmethod
    def validate_all(
        invoice: Invoice,
        allocations: Sequence[Allocation],
    ) -> dict[str, tuple[bool, Optional[str]]]:
        """Run all validations keyed by name"""
        return {
            "allocated_amount": AllocationValidator.validate_allocated_amount(invoice, allocations),
            "items_ht": AllocationValidator.validate_items_ht(invoice),
        }

    @staticmethod
    def get_validation_summary(
        invoice: Invoice,
        allocations: Sequence[Allocation],
    ) -> dict:
        """
        Get a summary of validation results.

        Returns:
            Dictionary with all_valid, validations, errors and counters
        """
        results = AllocationValidator.validate_all(invoice, allocations)

        all_valid = all(is_valid for is_valid, _ in results.values())
        errors = [error for is_valid, error in results.values() if not is_valid and error]
        if errors:
            logger.info(f"Invoice {invoice.id}: {len(errors)} validation issue(s)")

        return {
            "all_valid": all_valid,
            "validations": results,
            "errors": errors,
            "total_validations": len(results),
            "passed_validations": sum(1 for is_valid, _ in results.values() if is_valid),
            "failed_validations": len(errors)
        }
