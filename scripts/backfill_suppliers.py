"""
Link invoices to canonical suppliers.

Resolves the supplier name of every invoice in an organization (exact key,
alias, fuzzy match on validated suppliers, else a new pending supplier) and
stores the supplier on the invoice.

Usage:
    python scripts/backfill_suppliers.py --organization-id ORG --dry-run
    python scripts/backfill_suppliers.py --organization-id ORG
"""

import sys
import asyncio
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from invoicebook.logging_config import setup_logging
from invoicebook.models.database import AsyncSessionLocal, engine
from invoicebook.suppliers.supplier_service import SupplierService


async def main():
    """Main function"""
    import argparse

    parser = argparse.ArgumentParser(description="Link invoices to canonical suppliers")
    parser.add_argument("--organization-id", required=True, help="Organization scope")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count what would change without writing",
    )
    args = parser.parse_args()

    setup_logging()

    if args.dry_run:
        print("=" * 80)
        print("DRY RUN MODE - No changes will be made")
        print("=" * 80)

    try:
        async with AsyncSessionLocal() as session:
            service = SupplierService(session)
            before = await service.count_suppliers(args.organization_id)
            report = await service.backfill_invoice_suppliers(args.organization_id, dry_run=args.dry_run)
            after = await service.count_suppliers(args.organization_id)

        print(f"Invoices scanned:   {report.scanned}")
        print(f"Invoices linked:    {report.linked}")
        print(f"Already linked:     {report.unchanged}")
        print(f"Without supplier:   {report.skipped}")
        print(f"Suppliers created:  {report.created}")
        print(f"Suppliers in organization: {before} -> {after}")
        return 0

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
