"""Invoice line item and payment mode schemas."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class DiscountInput(BaseModel):
    """Item discount as submitted; the type is validated by the engine."""

    type: str | None = None
    value: Decimal = Decimal("0")


class InvoiceItemInput(BaseModel):
    """One line item from the billing form."""

    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    service_ref: str | None = Field(default=None, alias="serviceRef")
    quantity: int = 1
    unit_price: Decimal | None = Field(default=None, alias="unitPrice")
    discount: DiscountInput | None = None
    tax_rate: Decimal = Field(default=Decimal("0"), alias="taxRate")
    start_date: date | None = Field(default=None, alias="startDate")
    expiry_date: date | None = Field(default=None, alias="expiryDate")


class PaymentModeInput(BaseModel):
    method: str = ""
    amount: Decimal = Decimal("0")


class InvoiceLineItemRead(BaseModel):
    description: str
    service_ref: str | None
    quantity: int
    unit_price: Decimal
    discount_type: str | None
    discount_value: Decimal | None
    tax_rate: Decimal
    start_date: date | None
    expiry_date: date | None
    amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal


class PaymentModeRead(BaseModel):
    method: str
    amount: Decimal


__all__ = [
    "DiscountInput",
    "InvoiceItemInput",
    "InvoiceLineItemRead",
    "PaymentModeInput",
    "PaymentModeRead",
]
