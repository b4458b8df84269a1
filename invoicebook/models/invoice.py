"""Invoice, allocation and supplier data models"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum

from .decimal_wire import wire_to_decimal, decimal_to_wire


class TaxBasis(str, Enum):
    """How a line item's total_price relates to tax"""
    EXCLUSIVE = "EXCLUSIVE"  # total_price is HT
    INCLUSIVE = "INCLUSIVE"  # total_price is TTC, deflate with tax_rate
    UNKNOWN = "UNKNOWN"  # extraction did not say

    @classmethod
    def from_wire(cls, is_ht: Any) -> "TaxBasis":
        """Map the extraction's nullable ``is_ht`` flag onto a basis"""
        if is_ht is True:
            return cls.EXCLUSIVE
        if is_ht is False:
            return cls.INCLUSIVE
        return cls.UNKNOWN

    def to_wire(self) -> Optional[bool]:
        return {TaxBasis.EXCLUSIVE: True, TaxBasis.INCLUSIVE: False}.get(self)


class ValidationStatus(str, Enum):
    """Supplier validation lifecycle"""
    PENDING = "pending"
    VALIDATED = "validated"


class LineItem(BaseModel):
    """Invoice line item as produced by extraction"""
    model_config = ConfigDict(extra="allow")

    description: str = ""
    reference: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    tax_basis: TaxBasis = TaxBasis.UNKNOWN

    @model_validator(mode="before")
    @classmethod
    def _map_is_ht(cls, data: Any) -> Any:
        if isinstance(data, dict) and "is_ht" in data:
            data = dict(data)
            is_ht = data.pop("is_ht")
            data.setdefault("tax_basis", TaxBasis.from_wire(is_ht))
        return data

    @field_validator("quantity", "unit_price", "total_price", "tax_rate", mode="before")
    @classmethod
    def _lenient_decimal(cls, value: Any) -> Optional[Decimal]:
        return wire_to_decimal(value)

    @field_validator("description", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def to_wire(self) -> dict:
        """Serialize back to the extracted_data JSON shape"""
        data = dict(self.model_extra or {})
        data.update({
            "description": self.description,
            "reference": self.reference,
            "quantity": decimal_to_wire(self.quantity),
            "unit_price": decimal_to_wire(self.unit_price),
            "total_price": decimal_to_wire(self.total_price),
            "tax_rate": decimal_to_wire(self.tax_rate),
            "is_ht": self.tax_basis.to_wire(),
        })
        return data


class ExtractedInvoiceData(BaseModel):
    """Structured OCR/LLM output stored on the invoice"""
    model_config = ConfigDict(extra="allow")

    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    supplier_name: Optional[str] = None
    currency: Optional[str] = "EUR"
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    items: List[LineItem] = Field(default_factory=list)

    @field_validator("subtotal", "tax_amount", "total_amount", mode="before")
    @classmethod
    def _lenient_decimal(cls, value: Any) -> Optional[Decimal]:
        return wire_to_decimal(value)

    @field_validator("invoice_date", mode="before")
    @classmethod
    def _lenient_date(cls, value: Any) -> Any:
        if value in ("", None):
            return None
        if isinstance(value, str):
            try:
                return date.fromisoformat(value[:10])
            except ValueError:
                return None
        return value

    @field_validator("items", mode="before")
    @classmethod
    def _items_list(cls, value: Any) -> Any:
        return value or []

    def to_wire(self) -> dict:
        data = dict(self.model_extra or {})
        data.update({
            "invoice_number": self.invoice_number,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "supplier_name": self.supplier_name,
            "currency": self.currency,
            "subtotal": decimal_to_wire(self.subtotal),
            "tax_amount": decimal_to_wire(self.tax_amount),
            "total_amount": decimal_to_wire(self.total_amount),
            "items": [item.to_wire() for item in self.items],
        })
        return data


class Invoice(BaseModel):
    """Invoice with its extracted data"""
    id: Optional[str] = None
    organization_id: str
    file_name: Optional[str] = None
    supplier_id: Optional[str] = None
    extracted_data: ExtractedInvoiceData = Field(default_factory=ExtractedInvoiceData)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def items(self) -> List[LineItem]:
        return self.extracted_data.items


class Allocation(BaseModel):
    """A share of an invoice's HT subtotal booked to a ledger account"""
    id: Optional[str] = None
    invoice_id: Optional[str] = None
    user_id: Optional[str] = None
    account_code: str
    label: Optional[str] = None
    amount: Optional[Decimal] = None
    vat_code: Optional[str] = None
    vat_rate: Optional[Decimal] = None
    item_indices: List[int] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class Supplier(BaseModel):
    """Canonical supplier of an organization"""
    id: Optional[str] = None
    organization_id: str
    code: str
    display_name: str
    normalized_key: str
    validation_status: ValidationStatus = ValidationStatus.PENDING
    is_active: bool = False
    created_at: Optional[datetime] = None
