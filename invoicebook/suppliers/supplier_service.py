"""Supplier resolution, creation and maintenance

Free-text supplier names coming out of extraction are mapped to one
canonical supplier per organization: exact normalized key, then alias, then
a fuzzy match against validated suppliers, and finally a new pending
supplier. Writes never check-then-insert; they insert and ignore conflicts
on the unique keys, then re-read.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicebook.config import settings
from invoicebook.exceptions import (
    CodeGenerationExhausted,
    SupplierNotFoundError,
    require_organization,
)
from invoicebook.models.db_models import (
    Invoice as InvoiceDB,
    Supplier as SupplierDB,
    SupplierAlias as SupplierAliasDB,
)
from invoicebook.models.db_utils import db_to_pydantic_supplier, json_to_extracted_data
from invoicebook.models.invoice import Supplier, ValidationStatus
from .normalizer import (
    format_supplier_code,
    normalize_supplier_name,
    supplier_code_base,
    token_similarity,
)

logger = logging.getLogger(__name__)


class MatchType(str, Enum):
    """How a supplier name was resolved"""
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    CREATED = "created"


@dataclass
class SupplierResolution:
    """Result of resolving a supplier name"""
    supplier: Supplier
    match_type: MatchType
    similarity: Optional[float] = None

    @property
    def created(self) -> bool:
        return self.match_type == MatchType.CREATED


@dataclass
class MergeGroup:
    normalized_key: str
    keeper_id: str
    merged_ids: List[str]


@dataclass
class MergeReport:
    dry_run: bool
    groups: List[MergeGroup] = field(default_factory=list)
    invoices_relinked: int = 0
    aliases_moved: int = 0
    suppliers_deleted: int = 0


@dataclass
class BackfillReport:
    dry_run: bool
    scanned: int = 0
    linked: int = 0
    unchanged: int = 0
    skipped: int = 0
    created: int = 0


class SupplierService:
    """Supplier operations bound to a database session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # -- inserts -----------------------------------------------------------

    def _insert_ignoring_conflicts(self, model, values: dict):
        """INSERT ... ON CONFLICT DO NOTHING for the session's dialect"""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            return None
        return insert(model).values(**values).on_conflict_do_nothing()

    async def _try_insert(self, model, values: dict) -> bool:
        """Insert a row; return False if a unique key already holds it"""
        stmt = self._insert_ignoring_conflicts(model, values)
        if stmt is not None:
            result = await self.db.execute(stmt)
            return result.rowcount == 1

        # Other dialects: savepoint and catch the unique violation
        try:
            async with self.db.begin_nested():
                self.db.add(model(**values))
            return True
        except IntegrityError:
            return False

    async def add_alias(self, organization_id: str, supplier_id: str, alias_key: str) -> bool:
        """Record an alias; idempotent, returns True if a new row was written"""
        inserted = await self._try_insert(SupplierAliasDB, {
            "organization_id": organization_id,
            "supplier_id": supplier_id,
            "alias_key": alias_key,
        })
        if inserted:
            logger.debug(f"Alias {alias_key!r} -> supplier {supplier_id}")
        return inserted

    # -- lookups -----------------------------------------------------------

    async def _get_by_key(self, organization_id: str, key: str) -> Optional[SupplierDB]:
        result = await self.db.execute(
            select(SupplierDB).where(
                SupplierDB.organization_id == organization_id,
                SupplierDB.normalized_key == key,
            )
        )
        return result.scalar_one_or_none()

    async def _get_by_alias(self, organization_id: str, key: str) -> Optional[SupplierDB]:
        result = await self.db.execute(
            select(SupplierDB)
            .join(SupplierAliasDB, SupplierAliasDB.supplier_id == SupplierDB.id)
            .where(
                SupplierAliasDB.organization_id == organization_id,
                SupplierAliasDB.alias_key == key,
                SupplierDB.organization_id == organization_id,
            )
        )
        return result.scalars().first()

    async def _best_fuzzy_match(
        self,
        organization_id: str,
        key: str,
    ) -> Tuple[Optional[SupplierDB], float]:
        """Most similar validated supplier at or above the fuzzy threshold"""
        result = await self.db.execute(
            select(SupplierDB)
            .where(
                SupplierDB.organization_id == organization_id,
                SupplierDB.validation_status == ValidationStatus.VALIDATED.value,
            )
            .order_by(SupplierDB.code)
            .limit(settings.SUPPLIER_FUZZY_SCAN_LIMIT)
        )
        best: Optional[SupplierDB] = None
        best_score = 0.0
        for candidate in result.scalars().all():
            score = token_similarity(key, candidate.normalized_key or "")
            if score > best_score:
                best, best_score = candidate, score

        if best is not None and best_score >= settings.SUPPLIER_FUZZY_THRESHOLD:
            return best, best_score
        return None, best_score

    async def find_supplier(
        self,
        organization_id: str,
        display_name: str,
    ) -> Optional[Tuple[SupplierDB, MatchType, Optional[float]]]:
        """Match a name against existing suppliers without writing anything"""
        organization_id = require_organization(organization_id)
        key = normalize_supplier_name(display_name)
        if not key:
            return None

        supplier = await self._get_by_key(organization_id, key)
        if supplier is not None:
            return supplier, MatchType.EXACT, None

        supplier = await self._get_by_alias(organization_id, key)
        if supplier is not None:
            return supplier, MatchType.ALIAS, None

        supplier, score = await self._best_fuzzy_match(organization_id, key)
        if supplier is not None:
            return supplier, MatchType.FUZZY, score
        return None

    # -- resolution --------------------------------------------------------

    async def _create_pending(self, organization_id: str, display_name: str, key: str) -> Tuple[SupplierDB, bool]:
        """
        Create a pending supplier, or return the one a concurrent writer created.

        Returns:
            (supplier, created)

        Raises:
            CodeGenerationExhausted: no free code within the attempt budget
        """
        base = supplier_code_base(key)
        result = await self.db.execute(
            select(SupplierDB.code).where(
                SupplierDB.organization_id == organization_id,
                SupplierDB.code.like(f"{base}-%"),
            )
        )
        taken = set(result.scalars().all())
        max_attempts = settings.SUPPLIER_CODE_MAX_ATTEMPTS

        for sequence in range(1, max_attempts + 1):
            code = format_supplier_code(base, sequence)
            if code in taken:
                continue

            inserted = await self._try_insert(SupplierDB, {
                "organization_id": organization_id,
                "code": code,
                "display_name": display_name,
                "normalized_key": key,
                "validation_status": ValidationStatus.PENDING.value,
                "is_active": False,
            })
            supplier = await self._get_by_key(organization_id, key)
            if supplier is not None:
                return supplier, inserted
            # Conflict was on the code, someone else took it
            taken.add(code)

        raise CodeGenerationExhausted(base, max_attempts)

    async def resolve_supplier(
        self,
        organization_id: str,
        display_name: str,
        commit: bool = True,
    ) -> Optional[SupplierResolution]:
        """
        Map a free-text supplier name to the organization's canonical supplier.

        Resolution order: exact normalized key, alias, fuzzy match against
        validated suppliers (the alias is then recorded), otherwise a new
        pending, inactive supplier with its first alias.

        Args:
            organization_id: Organization scope (required)
            display_name: Supplier name as extracted
            commit: Commit the session when done

        Returns:
            SupplierResolution, or None if the name normalizes to nothing

        Raises:
            MissingOrganizationError: organization_id is missing
            CodeGenerationExhausted: no free supplier code
        """
        organization_id = require_organization(organization_id)
        key = normalize_supplier_name(display_name)
        if not key:
            logger.debug(f"Supplier name {display_name!r} normalizes to nothing")
            return None

        try:
            match = await self.find_supplier(organization_id, display_name)
            if match is not None:
                supplier_db, match_type, score = match
                if match_type == MatchType.FUZZY:
                    logger.info(
                        f"Fuzzy supplier match {display_name!r} -> {supplier_db.display_name!r} "
                        f"({score:.0%})"
                    )
                    await self.add_alias(organization_id, supplier_db.id, key)
                resolution = SupplierResolution(
                    supplier=db_to_pydantic_supplier(supplier_db),
                    match_type=match_type,
                    similarity=score,
                )
            else:
                supplier_db, created = await self._create_pending(organization_id, display_name, key)
                await self.add_alias(organization_id, supplier_db.id, key)
                if created:
                    logger.info(
                        f"Created pending supplier {supplier_db.code} for {display_name!r} "
                        f"(organization {organization_id})"
                    )
                resolution = SupplierResolution(
                    supplier=db_to_pydantic_supplier(supplier_db),
                    match_type=MatchType.CREATED if created else MatchType.EXACT,
                )

            if commit:
                await self.db.commit()
            return resolution

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error resolving supplier {display_name!r}: {e}", exc_info=True)
            raise

    # -- administration ----------------------------------------------------

    async def get_supplier(self, organization_id: str, supplier_id: str) -> Supplier:
        organization_id = require_organization(organization_id)
        supplier_db = await self._get_owned(organization_id, supplier_id)
        return db_to_pydantic_supplier(supplier_db)

    async def _get_owned(self, organization_id: str, supplier_id: str) -> SupplierDB:
        result = await self.db.execute(
            select(SupplierDB).where(
                SupplierDB.id == supplier_id,
                SupplierDB.organization_id == organization_id,
            )
        )
        supplier_db = result.scalar_one_or_none()
        if supplier_db is None:
            raise SupplierNotFoundError(supplier_id)
        return supplier_db

    async def list_suppliers(
        self,
        organization_id: str,
        validation_status: Optional[ValidationStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Supplier]:
        organization_id = require_organization(organization_id)
        query = select(SupplierDB).where(SupplierDB.organization_id == organization_id)
        if validation_status is not None:
            query = query.where(SupplierDB.validation_status == validation_status.value)
        query = query.order_by(SupplierDB.code).offset(skip).limit(limit)

        result = await self.db.execute(query)
        return [db_to_pydantic_supplier(s) for s in result.scalars().all()]

    async def validate_supplier(self, organization_id: str, supplier_id: str) -> Supplier:
        """Mark a pending supplier as validated and active"""
        organization_id = require_organization(organization_id)
        try:
            supplier_db = await self._get_owned(organization_id, supplier_id)
            supplier_db.validation_status = ValidationStatus.VALIDATED.value
            supplier_db.is_active = True
            await self.db.commit()
            await self.db.refresh(supplier_db)
            logger.info(f"Supplier {supplier_db.code} validated")
            return db_to_pydantic_supplier(supplier_db)
        except SupplierNotFoundError:
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error validating supplier {supplier_id}: {e}", exc_info=True)
            raise

    async def merge_duplicate_suppliers(self, organization_id: str, dry_run: bool = False) -> MergeReport:
        """
        Merge suppliers whose names normalize to the same key.

        The keeper of each group is the first validated supplier, else the
        oldest. Invoices and aliases of the others are moved to the keeper
        and the others deleted. A dry run only reports the groups.
        """
        organization_id = require_organization(organization_id)
        report = MergeReport(dry_run=dry_run)

        result = await self.db.execute(
            select(SupplierDB)
            .where(SupplierDB.organization_id == organization_id)
            .order_by(SupplierDB.created_at, SupplierDB.code)
        )
        groups: Dict[str, List[SupplierDB]] = {}
        for supplier_db in result.scalars().all():
            key = normalize_supplier_name(supplier_db.display_name) or supplier_db.normalized_key
            groups.setdefault(key, []).append(supplier_db)

        try:
            for key, members in groups.items():
                if len(members) < 2:
                    continue
                members.sort(key=lambda s: s.validation_status != ValidationStatus.VALIDATED.value)
                keeper, merged = members[0], members[1:]
                merged_ids = [s.id for s in merged]
                report.groups.append(MergeGroup(key, keeper.id, merged_ids))
                logger.info(f"Merging suppliers {merged_ids} into {keeper.id} ({key!r})")
                if dry_run:
                    continue

                relinked = await self.db.execute(
                    update(InvoiceDB)
                    .where(
                        InvoiceDB.organization_id == organization_id,
                        InvoiceDB.supplier_id.in_(merged_ids),
                    )
                    .values(supplier_id=keeper.id)
                )
                report.invoices_relinked += relinked.rowcount or 0

                moved = await self.db.execute(
                    update(SupplierAliasDB)
                    .where(SupplierAliasDB.supplier_id.in_(merged_ids))
                    .values(supplier_id=keeper.id)
                )
                report.aliases_moved += moved.rowcount or 0

                for merged_supplier in merged:
                    await self.add_alias(organization_id, keeper.id, merged_supplier.normalized_key)
                await self.add_alias(organization_id, keeper.id, key)

                deleted = await self.db.execute(
                    delete(SupplierDB).where(SupplierDB.id.in_(merged_ids))
                )
                report.suppliers_deleted += deleted.rowcount or 0

            if not dry_run:
                await self.db.commit()
            return report

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error merging suppliers for {organization_id}: {e}", exc_info=True)
            raise

    async def delete_orphan_suppliers(
        self,
        organization_id: str,
        dry_run: bool = False,
        include_validated: bool = False,
    ) -> List[str]:
        """Delete suppliers no invoice points to; pending ones only unless asked"""
        organization_id = require_organization(organization_id)
        linked = select(InvoiceDB.supplier_id).where(InvoiceDB.supplier_id.is_not(None))
        query = select(SupplierDB.id).where(
            SupplierDB.organization_id == organization_id,
            SupplierDB.id.not_in(linked),
        )
        if not include_validated:
            query = query.where(SupplierDB.validation_status == ValidationStatus.PENDING.value)

        result = await self.db.execute(query)
        orphan_ids = list(result.scalars().all())
        logger.info(f"{len(orphan_ids)} orphan supplier(s) in {organization_id}")
        if dry_run or not orphan_ids:
            return orphan_ids

        try:
            await self.db.execute(delete(SupplierDB).where(SupplierDB.id.in_(orphan_ids)))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error deleting orphan suppliers: {e}", exc_info=True)
            raise
        return orphan_ids

    async def backfill_invoice_suppliers(self, organization_id: str, dry_run: bool = False) -> BackfillReport:
        """Link every invoice of the organization to the supplier named in its extracted data"""
        organization_id = require_organization(organization_id)
        report = BackfillReport(dry_run=dry_run)

        result = await self.db.execute(
            select(InvoiceDB)
            .where(InvoiceDB.organization_id == organization_id)
            .order_by(InvoiceDB.created_at)
        )
        invoices = result.scalars().all()
        planned_keys = set()

        for invoice_db in invoices:
            report.scanned += 1
            name = json_to_extracted_data(invoice_db.extracted_data).supplier_name
            if not name or not normalize_supplier_name(name):
                report.skipped += 1
                continue

            if dry_run:
                match = await self.find_supplier(organization_id, name)
                if match is None:
                    key = normalize_supplier_name(name)
                    if key not in planned_keys:
                        planned_keys.add(key)
                        report.created += 1
                    report.linked += 1
                elif invoice_db.supplier_id == match[0].id:
                    report.unchanged += 1
                else:
                    report.linked += 1
                continue

            resolution = await self.resolve_supplier(organization_id, name, commit=False)
            if resolution.created:
                report.created += 1
            if invoice_db.supplier_id == resolution.supplier.id:
                report.unchanged += 1
                continue
            invoice_db.supplier_id = resolution.supplier.id
            report.linked += 1

        if not dry_run:
            try:
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Error backfilling suppliers: {e}", exc_info=True)
                raise

        logger.info(
            f"Supplier backfill for {organization_id}: scanned={report.scanned} "
            f"linked={report.linked} created={report.created} skipped={report.skipped}"
        )
        return report

    async def count_suppliers(self, organization_id: str) -> int:
        organization_id = require_organization(organization_id)
        result = await self.db.execute(
            select(func.count()).select_from(SupplierDB).where(SupplierDB.organization_id == organization_id)
        )
        return result.scalar_one()
