"""
Merge duplicate suppliers and remove orphans.

Suppliers whose display names normalize to the same key are merged into one
(validated first, else oldest); their invoices and aliases move to it.
With --delete-orphans, pending suppliers no invoice points to are removed.

Usage:
    python scripts/merge_suppliers.py --organization-id ORG --dry-run
    python scripts/merge_suppliers.py --organization-id ORG --delete-orphans
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

    parser = argparse.ArgumentParser(description="Merge duplicate suppliers")
    parser.add_argument("--organization-id", required=True, help="Organization scope")
    parser.add_argument(
        "--delete-orphans",
        action="store_true",
        help="Also delete pending suppliers without invoices",
    )
    parser.add_argument(
        "--include-validated",
        action="store_true",
        help="With --delete-orphans, delete validated orphans too",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing",
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
            report = await service.merge_duplicate_suppliers(args.organization_id, dry_run=args.dry_run)

            print(f"Duplicate groups: {len(report.groups)}")
            for group in report.groups:
                print(f"  {group.normalized_key!r}: keep {group.keeper_id}, merge {group.merged_ids}")
            if not args.dry_run:
                print(f"Invoices relinked:  {report.invoices_relinked}")
                print(f"Aliases moved:      {report.aliases_moved}")
                print(f"Suppliers deleted:  {report.suppliers_deleted}")

            if args.delete_orphans:
                orphans = await service.delete_orphan_suppliers(
                    args.organization_id,
                    dry_run=args.dry_run,
                    include_validated=args.include_validated,
                )
                verb = "Would delete" if args.dry_run else "Deleted"
                print(f"{verb} {len(orphans)} orphan supplier(s)")

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
