"""
Remove duplicate line items from invoices.

OCR sometimes registers the same line twice. This script fingerprints the
items of each invoice, drops the repeats and, unless --no-reallocate is
given, recomputes the item indices of the invoice's allocations.

Usage:
    python scripts/remove_duplicate_items.py --organization-id ORG --invoice-id ID
    python scripts/remove_duplicate_items.py --organization-id ORG --all --dry-run
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


def print_report(report) -> None:
    data = report.to_dict()
    print(f"\nInvoice {data['invoice_id']}")
    print(f"  Items: {data['items_before']} -> {data['items_after']} ({data['removed']} removed)")
    print(f"  HT total: {data['total_ht_before']} -> {data['total_ht_after']}")
    if data["expected_subtotal"] is not None:
        print(f"  Extracted subtotal: {data['expected_subtotal']}")
    for duplicate in data["duplicates"]:
        print(
            f"  - #{duplicate['index']} duplicates #{duplicate['duplicate_of']}: "
            f"{duplicate['description']!r}"
        )
    for description, indices in data["similar_descriptions"].items():
        print(f"  ~ similar lines {indices}: {description!r} (kept, amounts differ)")
    if data["reallocation"]:
        for assignment in data["reallocation"]["assignments"]:
            print(
                f"  > {assignment['account_code']}: items {assignment['item_indices']} "
                f"(target {assignment['target_ht']}, assigned {assignment['assigned_ht']})"
            )


async def main():
    """Main function"""
    import argparse

    parser = argparse.ArgumentParser(description="Remove duplicate line items from invoices")
    parser.add_argument("--organization-id", required=True, help="Organization scope")
    parser.add_argument("--invoice-id", nargs="+", help="Invoice IDs to clean")
    parser.add_argument("--all", action="store_true", help="Clean every invoice of the organization")
    parser.add_argument(
        "--no-reallocate",
        action="store_true",
        help="Leave allocation item indices untouched",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without writing",
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
    cleaned = 0
    try:
        async with AsyncSessionLocal() as session:
            invoice_ids = args.invoice_id
            if args.all:
                invoices = await DatabaseService.list_invoices(
                    args.organization_id, limit=100000, db=session
                )
                invoice_ids = [invoice.id for invoice in invoices]
            print(f"Invoices to check: {len(invoice_ids)}")

            service = ReconciliationService(session)
            for invoice_id in invoice_ids:
                try:
                    report = await service.deduplicate_invoice(
                        invoice_id,
                        args.organization_id,
                        dry_run=args.dry_run,
                        reallocate=not args.no_reallocate,
                    )
                except InvoiceBookError as e:
                    failures += 1
                    print(f"\nInvoice {invoice_id}: ERROR {e}")
                    continue
                if report.items_before != report.items_after:
                    cleaned += 1
                    print_report(report)

        print(f"\nInvoices with duplicates: {cleaned}, errors: {failures}")
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
