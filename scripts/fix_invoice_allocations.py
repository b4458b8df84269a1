"""
Recompute the item indices of invoice allocations.

Each allocation gets the line items matching its share of the HT total.
Run it after items were edited or deduplicated outside the API.

Usage:
    python scripts/fix_invoice_allocations.py --organization-id ORG --invoice-id ID
    python scripts/fix_invoice_allocations.py --organization-id ORG --all --dry-run
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


async def main():
    """Main function"""
    import argparse

    parser = argparse.ArgumentParser(description="Recompute allocation item indices")
    parser.add_argument("--organization-id", required=True, help="Organization scope")
    parser.add_argument("--invoice-id", nargs="+", help="Invoice IDs to fix")
    parser.add_argument("--all", action="store_true", help="Fix every invoice of the organization")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the new assignments without writing",
    )
    args = parser.parse_args()

    if not args.invoice_id and not args.all:
        print("No invoice specified. Use --invoice-id ID [ID ...] or --all.")
        return 1

    setup_logging()

    if args.dry_run:
        print("=" * 80)
        print("DRY RUN MODE - No changes will be made")
        print("=" * 80)

    failures = 0
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
                    report = await service.reconcile_invoice_allocations(
                        invoice_id, args.organization_id, dry_run=args.dry_run
                    )
                except InvoiceBookError as e:
                    failures += 1
                    print(f"\nInvoice {invoice_id}: ERROR {e}")
                    continue

                if not report.assignments:
                    continue
                print(
                    f"\nInvoice {invoice_id}: {report.item_count} item(s), "
                    f"HT {report.to_dict()['total_items_ht']}"
                )
                for assignment in report.assignments:
                    data = assignment.to_dict()
                    print(
                        f"  {data['account_code']}: items {data['item_indices']} "
                        f"(target {data['target_ht']}, assigned {data['assigned_ht']})"
                    )

        print(f"\nDone, errors: {failures}")
        return 1 if failures else 0

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
