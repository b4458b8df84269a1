"""Integration tests for API routes"""

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock

from api.main import app
from invoicebook.exceptions import (
    CodeGenerationExhausted,
    InvoiceNotFoundError,
    MalformedAllocationError,
    SupplierNotFoundError,
)
from invoicebook.models.invoice import Allocation, Invoice, Supplier, ValidationStatus
from invoicebook.reconciliation.allocator import AllocationAssignment
from invoicebook.services.reconciliation_service import (
    AllocationReconciliationReport,
    InvoiceDeduplicationReport,
)
from invoicebook.suppliers.supplier_service import MatchType, MergeGroup, MergeReport, SupplierResolution

HEADERS = {"X-Organization-Id": "org-1"}


def _reconciliation_report(dry_run=False):
    return AllocationReconciliationReport(
        invoice_id="inv-1",
        dry_run=dry_run,
        item_count=2,
        total_items_ht=Decimal("25"),
        total_allocated=Decimal("25"),
        assignments=[
            AllocationAssignment(0, "a-1", "601100", [0], Decimal("0.8"), Decimal("20"), Decimal("20")),
            AllocationAssignment(1, "a-2", "601200", [1], Decimal("0.2"), Decimal("5"), Decimal("5")),
        ],
    )


def _supplier(**overrides):
    data = dict(
        id="sup-1",
        organization_id="org-1",
        code="BOULAN-001",
        display_name="Boulangerie Martin SARL",
        normalized_key="boulangerie martin",
    )
    data.update(overrides)
    return Supplier(**data)


@pytest.mark.integration
@pytest.mark.api
class TestAPIRoutes:
    """Test API routes"""

    @pytest.fixture
    def client(self):
        """Create test client"""
        return TestClient(app)

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_organization_header_is_required(self, client):
        response = client.post("/api/invoices/inv-1/deduplicate")
        assert response.status_code == 400

        response = client.get("/api/suppliers", headers={"X-Organization-Id": "  "})
        assert response.status_code == 400

    @patch("api.routes.invoices.DatabaseService.get_allocations", new_callable=AsyncMock)
    @patch("api.routes.invoices.DatabaseService.get_invoice", new_callable=AsyncMock)
    def test_get_invoice(self, mock_get_invoice, mock_get_allocations, client):
        mock_get_invoice.return_value = Invoice(id="inv-1", organization_id="org-1")
        mock_get_allocations.return_value = [
            Allocation(id="a-1", account_code="601100", amount=Decimal("20.00"), item_indices=[0])
        ]

        response = client.get("/api/invoices/inv-1", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["invoice"]["id"] == "inv-1"
        assert data["allocations"][0]["item_indices"] == [0]
        mock_get_invoice.assert_awaited_once()
        assert mock_get_invoice.await_args.args[:2] == ("inv-1", "org-1")

    @patch("api.routes.invoices.DatabaseService.get_invoice", new_callable=AsyncMock)
    def test_get_invoice_not_found(self, mock_get_invoice, client):
        mock_get_invoice.return_value = None

        response = client.get("/api/invoices/missing", headers=HEADERS)

        assert response.status_code == 404

    @patch("api.routes.invoices.ReconciliationService")
    def test_deduplicate_invoice(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.deduplicate_invoice.return_value = InvoiceDeduplicationReport(
            invoice_id="inv-1",
            dry_run=True,
            items_before=3,
            items_after=2,
            total_ht_before=Decimal("45"),
            total_ht_after=Decimal("25"),
            reallocation=_reconciliation_report(dry_run=True),
        )
        mock_service.return_value = mock_instance

        response = client.post(
            "/api/invoices/inv-1/deduplicate",
            params={"dry_run": "true", "reallocate": "false"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["removed"] == 1
        assert data["total_ht_after"] == "25.00"
        assert data["reallocation"]["assignments"][1]["item_indices"] == [1]
        kwargs = mock_instance.deduplicate_invoice.await_args.kwargs
        assert kwargs["dry_run"] is True
        assert kwargs["reallocate"] is False
        assert kwargs["organization_id"] == "org-1"

    @patch("api.routes.invoices.ReconciliationService")
    def test_deduplicate_unknown_invoice(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.deduplicate_invoice.side_effect = InvoiceNotFoundError("inv-9")
        mock_service.return_value = mock_instance

        response = client.post("/api/invoices/inv-9/deduplicate", headers=HEADERS)

        assert response.status_code == 404
        assert "inv-9" in response.json()["detail"]

    @patch("api.routes.invoices.ReconciliationService")
    def test_reconcile_malformed_allocations(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.reconcile_invoice_allocations.side_effect = MalformedAllocationError(
            "Allocation #2 (601200) has a non-numeric amount: None", allocation_id="a-2"
        )
        mock_service.return_value = mock_instance

        response = client.post("/api/invoices/inv-1/allocations/reconcile", headers=HEADERS)

        assert response.status_code == 422

    @patch("api.routes.invoices.ReconciliationService")
    def test_replace_allocations(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.replace_allocations.return_value = _reconciliation_report()
        mock_service.return_value = mock_instance

        response = client.put(
            "/api/invoices/inv-1/allocations",
            json={
                "user_id": "user-1",
                "allocations": [
                    {"account_code": "601100", "amount": "20.00", "label": "Légumes"},
                    {"account_code": "601200", "amount": 5},
                ],
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["total_allocated"] == "25.00"
        kwargs = mock_instance.replace_allocations.await_args.kwargs
        assert [a.amount for a in kwargs["allocations"]] == [Decimal("20.00"), Decimal("5")]
        assert kwargs["user_id"] == "user-1"

    def test_replace_allocations_rejects_non_numeric_amount(self, client):
        response = client.put(
            "/api/invoices/inv-1/allocations",
            json={"allocations": [{"account_code": "601100", "amount": "vingt"}]},
            headers=HEADERS,
        )

        assert response.status_code == 422

    @patch("api.routes.invoices.ReconciliationService")
    def test_unexpected_error_is_500(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.check_invoice_allocations.side_effect = RuntimeError("database is locked")
        mock_service.return_value = mock_instance

        response = client.get("/api/invoices/inv-1/allocations/check", headers=HEADERS)

        assert response.status_code == 500

    @patch("api.routes.invoices.ReconciliationService")
    def test_check_allocations(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.check_invoice_allocations.return_value = {
            "invoice_id": "inv-1",
            "allocation_count": 0,
            "coverage": {"item_count": 0, "is_complete": True},
            "validation": {"all_valid": True, "errors": []},
            "allocations": [],
        }
        mock_service.return_value = mock_instance

        response = client.get("/api/invoices/inv-1/allocations/check", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["coverage"]["is_complete"] is True


@pytest.mark.integration
@pytest.mark.api
class TestSupplierRoutes:
    """Test supplier API routes"""

    @pytest.fixture
    def client(self):
        """Create test client"""
        return TestClient(app)

    @patch("api.routes.suppliers.SupplierService")
    def test_resolve_supplier(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.resolve_supplier.return_value = SupplierResolution(
            supplier=_supplier(), match_type=MatchType.CREATED
        )
        mock_service.return_value = mock_instance

        response = client.post(
            "/api/suppliers/resolve",
            json={"display_name": "Boulangerie Martin SARL"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["created"] is True
        assert data["match_type"] == "created"
        assert data["supplier"]["code"] == "BOULAN-001"
        assert data["supplier"]["validation_status"] == "pending"

    @patch("api.routes.suppliers.SupplierService")
    def test_resolve_name_without_identity(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.resolve_supplier.return_value = None
        mock_service.return_value = mock_instance

        response = client.post("/api/suppliers/resolve", json={"display_name": "SARL"}, headers=HEADERS)

        assert response.status_code == 422

    @patch("api.routes.suppliers.SupplierService")
    def test_resolve_code_exhausted(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.resolve_supplier.side_effect = CodeGenerationExhausted("BOULAN", 1000)
        mock_service.return_value = mock_instance

        response = client.post(
            "/api/suppliers/resolve",
            json={"display_name": "Boulangerie Durand"},
            headers=HEADERS,
        )

        assert response.status_code == 409

    @patch("api.routes.suppliers.SupplierService")
    def test_list_suppliers_filters_by_status(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.list_suppliers.return_value = [_supplier()]
        mock_service.return_value = mock_instance

        response = client.get("/api/suppliers", params={"validation_status": "pending"}, headers=HEADERS)

        assert response.status_code == 200
        assert len(response.json()["suppliers"]) == 1
        kwargs = mock_instance.list_suppliers.await_args.kwargs
        assert kwargs["validation_status"] == ValidationStatus.PENDING

    @patch("api.routes.suppliers.SupplierService")
    def test_validate_unknown_supplier(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.validate_supplier.side_effect = SupplierNotFoundError("sup-9")
        mock_service.return_value = mock_instance

        response = client.post("/api/suppliers/sup-9/validate", headers=HEADERS)

        assert response.status_code == 404

    @patch("api.routes.suppliers.SupplierService")
    def test_merge_defaults_to_dry_run(self, mock_service, client):
        mock_instance = AsyncMock()
        mock_instance.merge_duplicate_suppliers.return_value = MergeReport(
            dry_run=True,
            groups=[MergeGroup("dupont", "sup-current", ["sup-legacy"])],
        )
        mock_service.return_value = mock_instance

        response = client.post("/api/suppliers/merge", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["dry_run"] is True
        assert data["groups"][0]["merged_ids"] == ["sup-legacy"]
        assert mock_instance.merge_duplicate_suppliers.await_args.kwargs["dry_run"] is True
