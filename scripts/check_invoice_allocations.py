"""
Report how stored allocations cover invoice line items (read only).

Flags items no allocation claims, items claimed twice, indices past the
end of the item list, and subtotal mismatches.

Usage:
    python scripts/check_invoice_allocations.py --organization-id ORG --invoice-id ID
    python scripts/check_invoice_allocations.py --organization-id ORG --all
"""

import sys
import asyncio
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from invoicebook.exceptions import InvoiceBookError
from invoicebook.logging_config import setup_logging
from invoicebook.models.database import AsyncSessionLocal, engine
from invoicebook.services.db_service import DatabaseService
from invoicebook.services.reconciliation_service import ReconciliationService


def print_check(check: dict) -> None:
    coverage = check["coverage"]
    status = "OK" if coverage["is_complete"] else "INCOMPLETE"
    print(f"\nInvoice {check['invoice_id']}: {status}")
    print(f"  Items: {coverage['item_count']}, allocations: {check['allocation_count']}")
    if coverage["unallocated_indices"]:
        print(f"  Unallocated items: {coverage['unallocated_indices']}")
    if coverage["duplicated_indices"]:
        print(f"  Items in several allocations: {coverage['duplicated_indices']}")
    if coverage["out_of_range_indices"]:
        print(f"  Indices past the last item: {coverage['out_of_range_indices']}")
    if coverage["allocations_without_items"]:
        print(f"  Allocations without items: {coverage['allocations_without_items']}")
    for error in check["validation"]["errors"]:
        print(f"  ! {error}")


async def main():
    """Main function"""
    import argparse

    parser = argparse.ArgumentParser(description="Check allocation coverage of invoices")
    parser.add_argument("--organization-id", required=True, help="Organization scope")
    parser.add_argument("--invoice-id", nargs="+", help="Invoice IDs to check")
    parser.add_argument("--all", action="store_true", help="Check every invoice of the organization")
    parser.add_argument(
        "--only-problems",
        action="store_true",
        help="Print only invoices with incomplete coverage or validation errors",
    )
    args = parser.parse_args()

    if not args.invoice_id and not args.all:
        print("No invoice specified. Use --invoice-id ID [ID ...] or --all.")
        return 1

    setup_logging()

    problems = 0
    try:
        async with AsyncSessionLocal() as session:
            invoice_ids = args.invoice_id
            if args.all:
                invoices = await DatabaseService.list_invoices(
                    args.organization_id, limit=100000, db=session
                )
                invoice_ids = [invoice.id for invoice in invoices]

            service = ReconciliationService(session)
            for invoice_id in invoice_ids:
                try:
                    check = await service.check_invoice_allocations(invoice_id, args.organization_id)
                except InvoiceBookError as e:
                    problems += 1
                    print(f"\nInvoice {invoice_id}: ERROR {e}")
                    continue

                has_problem = (
                    not check["coverage"]["is_complete"]
                    or not check["validation"]["all_valid"]
                )
                if has_problem:
                    problems += 1
                if has_problem or not args.only_problems:
                    print_check(check)

        print(f"\nInvoices checked: {len(invoice_ids)}, with problems: {problems}")
        return 1 if problems else 0

    except Exception as e:
        print(f"\nERROR: {e}")
        import traceback
        traceback.print_exc()
        return 1

    finally:
        await engine.dispose()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
