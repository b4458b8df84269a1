"""Domain errors raised by the reconciliation and supplier services"""

from typing import Optional


class InvoiceBookError(Exception):
    """Base class for invoicebook errors"""
    pass


class MissingOrganizationError(InvoiceBookError):
    """Raised when an operation is attempted without an organization scope"""
    def __init__(self, message: str = "An organization_id is required"):
        super().__init__(message)


class CodeGenerationExhausted(InvoiceBookError):
    """Raised when no free supplier code is found within the attempt budget"""
    def __init__(self, base: str, attempts: int):
        super().__init__(f"No free supplier code for base {base!r} after {attempts} attempts")
        self.base = base
        self.attempts = attempts


class MalformedAllocationError(InvoiceBookError):
    """Raised when an allocation cannot take part in reconciliation"""
    def __init__(self, message: str, allocation_id: Optional[str] = None):
        super().__init__(message)
        self.allocation_id = allocation_id


class InvoiceNotFoundError(InvoiceBookError):
    """Raised when an invoice does not exist in the caller's organization"""
    def __init__(self, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id


class SupplierNotFoundError(InvoiceBookError):
    """Raised when a supplier does not exist in the caller's organization"""
    def __init__(self, supplier_id: str):
        super().__init__(f"Supplier {supplier_id} not found")
        self.supplier_id = supplier_id


def require_organization(organization_id: Optional[str]) -> str:
    """Return a stripped organization id or raise MissingOrganizationError"""
    if organization_id is None or not str(organization_id).strip():
        raise MissingOrganizationError()
    return str(organization_id).strip()
