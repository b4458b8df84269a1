"""Unit tests for supplier resolution and maintenance"""

import pytest
from datetime import datetime
from sqlalchemy import select

from invoicebook.config import settings
from invoicebook.exceptions import (
    CodeGenerationExhausted,
    MissingOrganizationError,
    SupplierNotFoundError,
)
from invoicebook.models.db_models import (
    Invoice as InvoiceDB,
    Supplier as SupplierDB,
    SupplierAlias as SupplierAliasDB,
)
from invoicebook.models.invoice import ValidationStatus
from invoicebook.suppliers.supplier_service import MatchType, SupplierService


async def _validated_supplier(db, name, org="org-1"):
    service = SupplierService(db)
    resolution = await service.resolve_supplier(org, name)
    return await service.validate_supplier(org, resolution.supplier.id)


async def _alias_keys(db, supplier_id):
    result = await db.execute(
        select(SupplierAliasDB.alias_key)
        .where(SupplierAliasDB.supplier_id == supplier_id)
        .order_by(SupplierAliasDB.alias_key)
    )
    return list(result.scalars().all())


@pytest.mark.unit
@pytest.mark.requires_db
class TestResolveSupplier:
    """Test SupplierService.resolve_supplier"""

    @pytest.mark.asyncio
    async def test_unknown_name_creates_pending_supplier(self, db_session):
        resolution = await SupplierService(db_session).resolve_supplier("org-1", "Boulangerie Martin SARL")

        supplier = resolution.supplier
        assert resolution.created
        assert resolution.match_type == MatchType.CREATED
        assert supplier.code == "BOULAN-001"
        assert supplier.normalized_key == "boulangerie martin"
        assert supplier.display_name == "Boulangerie Martin SARL"
        assert supplier.validation_status == ValidationStatus.PENDING
        assert supplier.is_active is False
        assert await _alias_keys(db_session, supplier.id) == ["boulangerie martin"]

    @pytest.mark.asyncio
    async def test_same_key_resolves_exactly(self, db_session):
        service = SupplierService(db_session)
        first = await service.resolve_supplier("org-1", "Boulangerie Martin SARL")

        second = await service.resolve_supplier("org-1", "BOULANGERIE  MARTIN")

        assert second.match_type == MatchType.EXACT
        assert second.supplier.id == first.supplier.id
        assert await service.count_suppliers("org-1") == 1

    @pytest.mark.asyncio
    async def test_codes_are_sequenced_per_base(self, db_session):
        service = SupplierService(db_session)

        martin = await service.resolve_supplier("org-1", "Boulangerie Martin")
        dupont = await service.resolve_supplier("org-1", "Boulangerie Dupont")
        short = await service.resolve_supplier("org-1", "Axa")

        assert martin.supplier.code == "BOULAN-001"
        assert dupont.supplier.code == "BOULAN-002"
        assert short.supplier.code == "AXAX-001"

    @pytest.mark.asyncio
    async def test_organizations_are_isolated(self, db_session):
        service = SupplierService(db_session)

        one = await service.resolve_supplier("org-1", "Boulangerie Martin")
        two = await service.resolve_supplier("org-2", "Boulangerie Martin")

        assert two.created
        assert one.supplier.id != two.supplier.id
        assert two.supplier.code == "BOULAN-001"

    @pytest.mark.asyncio
    async def test_fuzzy_match_on_validated_supplier_records_alias(self, db_session):
        validated = await _validated_supplier(db_session, "Fromagerie Lactalis Dupont")
        service = SupplierService(db_session)

        fuzzy = await service.resolve_supplier("org-1", "Fromagerie Lactalis Dupont Nord")
        again = await service.resolve_supplier("org-1", "Fromagerie Lactalis Dupont Nord")

        assert fuzzy.match_type == MatchType.FUZZY
        assert fuzzy.supplier.id == validated.id
        assert fuzzy.similarity == pytest.approx(6 / 7)
        assert again.match_type == MatchType.ALIAS
        assert again.supplier.id == validated.id
        assert "fromagerie lactalis dupont nord" in await _alias_keys(db_session, validated.id)

    @pytest.mark.asyncio
    async def test_fuzzy_match_ignores_pending_suppliers(self, db_session):
        service = SupplierService(db_session)
        pending = await service.resolve_supplier("org-1", "Fromagerie Lactalis Dupont")

        resolution = await service.resolve_supplier("org-1", "Fromagerie Lactalis Dupont Nord")

        assert resolution.created
        assert resolution.supplier.id != pending.supplier.id

    @pytest.mark.asyncio
    async def test_fuzzy_threshold_is_inclusive(self, db_session):
        validated = await _validated_supplier(db_session, "Alpha Bravo Charlie Delta Echo")
        service = SupplierService(db_session)

        at_threshold = await service.resolve_supplier("org-1", "Alpha Bravo Charlie Delta Foxtrot")
        below = await service.resolve_supplier("org-1", "Alpha Bravo Charlie Golf Hotel")

        assert at_threshold.match_type == MatchType.FUZZY
        assert at_threshold.supplier.id == validated.id
        assert below.created

    @pytest.mark.asyncio
    async def test_fuzzy_match_picks_best_score(self, db_session):
        # Scanned in code order, the first candidate also clears the threshold
        db_session.add_all([
            SupplierDB(id="sup-a", organization_id="org-1", code="ALPHAB-001",
                       display_name="Alpha Bravo Charlie Delta Echo",
                       normalized_key="alpha bravo charlie delta echo",
                       validation_status="validated", is_active=True),
            SupplierDB(id="sup-b", organization_id="org-1", code="ALPHAB-002",
                       display_name="Alpha Bravo Charlie Delta Echo Foxtrot",
                       normalized_key="alpha bravo charlie delta echo foxtrot",
                       validation_status="validated", is_active=True),
        ])
        await db_session.commit()

        resolution = await SupplierService(db_session).resolve_supplier(
            "org-1", "Alpha Bravo Charlie Delta Echo Foxtrot Golf"
        )

        assert resolution.match_type == MatchType.FUZZY
        assert resolution.supplier.id == "sup-b"
        assert resolution.similarity == pytest.approx(12 / 13)

    @pytest.mark.asyncio
    async def test_name_without_identity(self, db_session):
        assert await SupplierService(db_session).resolve_supplier("org-1", "SARL") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("organization_id", [None, "", "   "])
    async def test_requires_organization(self, db_session, organization_id):
        with pytest.raises(MissingOrganizationError):
            await SupplierService(db_session).resolve_supplier(organization_id, "Boulangerie Martin")

    @pytest.mark.asyncio
    async def test_code_generation_exhausted(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "SUPPLIER_CODE_MAX_ATTEMPTS", 2)
        service = SupplierService(db_session)
        await service.resolve_supplier("org-1", "Boulangerie Martin")
        await service.resolve_supplier("org-1", "Boulangerie Dupont")

        with pytest.raises(CodeGenerationExhausted) as exc_info:
            await service.resolve_supplier("org-1", "Boulangerie Durand")

        assert exc_info.value.base == "BOULAN"
        assert await service.count_suppliers("org-1") == 2

    @pytest.mark.asyncio
    async def test_add_alias_is_idempotent(self, db_session):
        service = SupplierService(db_session)
        resolution = await service.resolve_supplier("org-1", "Boulangerie Martin")

        assert await service.add_alias("org-1", resolution.supplier.id, "martin boulanger") is True
        assert await service.add_alias("org-1", resolution.supplier.id, "martin boulanger") is False


@pytest.mark.unit
@pytest.mark.requires_db
class TestSupplierMaintenance:
    """Test validation, merge, orphan cleanup and backfill"""

    @pytest.mark.asyncio
    async def test_validate_supplier(self, db_session):
        service = SupplierService(db_session)
        resolution = await service.resolve_supplier("org-1", "Boulangerie Martin")

        supplier = await service.validate_supplier("org-1", resolution.supplier.id)

        assert supplier.validation_status == ValidationStatus.VALIDATED
        assert supplier.is_active is True
        validated = await service.list_suppliers("org-1", validation_status=ValidationStatus.VALIDATED)
        assert [s.id for s in validated] == [supplier.id]

    @pytest.mark.asyncio
    async def test_validate_supplier_of_other_organization(self, db_session):
        service = SupplierService(db_session)
        resolution = await service.resolve_supplier("org-1", "Boulangerie Martin")

        with pytest.raises(SupplierNotFoundError):
            await service.validate_supplier("org-2", resolution.supplier.id)

    async def _legacy_duplicates(self, db_session):
        """Two suppliers stored under keys computed by an older normalization"""
        legacy = SupplierDB(
            id="sup-legacy", organization_id="org-1", code="DUPONT-001",
            display_name="Dupont SARL", normalized_key="dupont sarl",
            validation_status="pending", is_active=False,
            created_at=datetime(2024, 1, 1),
        )
        current = SupplierDB(
            id="sup-current", organization_id="org-1", code="DUPONT-002",
            display_name="DUPONT", normalized_key="dupont",
            validation_status="validated", is_active=True,
            created_at=datetime(2024, 2, 1),
        )
        invoice = InvoiceDB(
            id="inv-1", organization_id="org-1", supplier_id="sup-legacy",
            extracted_data={"supplier_name": "Dupont SARL", "items": []},
        )
        alias = SupplierAliasDB(organization_id="org-1", supplier_id="sup-legacy", alias_key="dupont sarl")
        db_session.add_all([legacy, current, invoice, alias])
        await db_session.commit()

    @pytest.mark.asyncio
    async def test_merge_dry_run_only_reports(self, db_session):
        await self._legacy_duplicates(db_session)

        report = await SupplierService(db_session).merge_duplicate_suppliers("org-1", dry_run=True)

        assert len(report.groups) == 1
        assert report.groups[0].keeper_id == "sup-current"
        assert report.groups[0].merged_ids == ["sup-legacy"]
        assert report.suppliers_deleted == 0
        assert await SupplierService(db_session).count_suppliers("org-1") == 2

    @pytest.mark.asyncio
    async def test_merge_keeps_validated_supplier(self, db_session):
        await self._legacy_duplicates(db_session)

        report = await SupplierService(db_session).merge_duplicate_suppliers("org-1")

        assert report.invoices_relinked == 1
        assert report.aliases_moved == 1
        assert report.suppliers_deleted == 1
        result = await db_session.execute(select(InvoiceDB.supplier_id).where(InvoiceDB.id == "inv-1"))
        assert result.scalar_one() == "sup-current"
        assert await _alias_keys(db_session, "sup-current") == ["dupont", "dupont sarl"]

    @pytest.mark.asyncio
    async def test_delete_orphan_suppliers(self, db_session):
        await self._legacy_duplicates(db_session)
        service = SupplierService(db_session)
        orphan = await service.resolve_supplier("org-1", "Boulangerie Martin")

        would_delete = await service.delete_orphan_suppliers("org-1", dry_run=True)
        deleted = await service.delete_orphan_suppliers("org-1")

        # sup-legacy has an invoice, sup-current is validated
        assert would_delete == [orphan.supplier.id]
        assert deleted == [orphan.supplier.id]
        assert await service.count_suppliers("org-1") == 2

    @pytest.mark.asyncio
    async def test_backfill_links_invoices(self, db_session):
        db_session.add_all([
            InvoiceDB(id="inv-a", organization_id="org-1",
                      extracted_data={"supplier_name": "Boulangerie Martin SARL"},
                      created_at=datetime(2024, 1, 1)),
            InvoiceDB(id="inv-b", organization_id="org-1",
                      extracted_data={"supplier_name": "BOULANGERIE MARTIN"},
                      created_at=datetime(2024, 1, 2)),
            InvoiceDB(id="inv-c", organization_id="org-1",
                      extracted_data={"supplier_name": None},
                      created_at=datetime(2024, 1, 3)),
        ])
        await db_session.commit()
        service = SupplierService(db_session)

        preview = await service.backfill_invoice_suppliers("org-1", dry_run=True)
        report = await service.backfill_invoice_suppliers("org-1")
        rerun = await service.backfill_invoice_suppliers("org-1")

        assert (preview.created, preview.linked) == (1, 2)
        assert (report.scanned, report.linked, report.created, report.skipped) == (3, 2, 1, 1)
        assert (rerun.linked, rerun.unchanged, rerun.created) == (0, 2, 0)
        result = await db_session.execute(
            select(InvoiceDB.supplier_id).where(InvoiceDB.id.in_(["inv-a", "inv-b"]))
        )
        supplier_ids = set(result.scalars().all())
        assert len(supplier_ids) == 1
        assert None not in supplier_ids
