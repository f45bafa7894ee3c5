"""Invoice schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .line_item import (
    InvoiceItemInput,
    InvoiceLineItemRead,
    PaymentModeInput,
    PaymentModeRead,
)


class InvoicePreviewRequest(BaseModel):
    """Live totals request from the billing form."""

    model_config = ConfigDict(populate_by_name=True)

    items: list[InvoiceItemInput] = []
    payment_modes: list[PaymentModeInput] = Field(default=[], alias="paymentModes")
    rounding: Decimal = Decimal("0")


class InvoiceCreate(InvoicePreviewRequest):
    """Payload for creating a draft or pro-forma invoice."""

    organization_ref: str = Field(alias="organizationRef")
    branch_ref: str = Field(alias="branchRef")
    member_ref: str = Field(alias="memberRef")
    created_by_ref: str = Field(alias="createdByRef")
    invoice_kind: str = Field(default="service", alias="invoiceKind")
    is_pro_forma: bool = Field(default=False, alias="isProForma")
    due_date: date | None = Field(default=None, alias="dueDate")
    customer_notes: str | None = Field(default=None, alias="customerNotes")
    internal_notes: str | None = Field(default=None, alias="internalNotes")
    discount_reason: str | None = Field(default=None, alias="discountReason")
    terms: str | None = None


class InvoiceItemsUpdate(BaseModel):
    items: list[InvoiceItemInput] = []


class PaymentAdd(PaymentModeInput):
    """Payload for recording a payment against an invoice."""


class InvoiceCancel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: str
    by_ref: str = Field(alias="byRef")


class InvoiceTotalsRead(BaseModel):
    subtotal: Decimal
    tax_total: Decimal
    rounding: Decimal
    total: Decimal
    paid_total: Decimal
    pending: Decimal
    status_recommendation: str


class CancellationRead(BaseModel):
    reason: str
    by_ref: str
    at: datetime


class InvoiceRead(BaseModel):
    id: int
    invoice_number: str | None
    organization_ref: str
    branch_ref: str
    member_ref: str
    created_by_ref: str
    created_at: datetime
    invoice_kind: str
    is_pro_forma: bool
    status: str
    effective_status: str
    subtotal: Decimal
    tax_total: Decimal
    rounding: Decimal
    total: Decimal
    paid_total: Decimal
    pending: Decimal
    due_date: date | None
    sent_at: datetime | None
    paid_at: datetime | None
    cancellation: CancellationRead | None
    customer_notes: str | None
    internal_notes: str | None
    discount_reason: str | None
    terms: str | None
    version: int
    items: list[InvoiceLineItemRead] = []
    payment_modes: list[PaymentModeRead] = []


class InvoicePage(BaseModel):
    invoices: list[InvoiceRead]
    page: int
    limit: int
    total: int
    pages: int


class StatusBucketRead(BaseModel):
    count: int
    amount: Decimal


class SalesSummaryRead(BaseModel):
    service_non_pt_sales: Decimal
    service_pt_sales: Decimal
    product_sales: Decimal
    service_non_pt_pending: Decimal
    service_pt_pending: Decimal
    product_pending: Decimal
    tax_total: Decimal
    gross_total: Decimal
    pending_total: Decimal
    invoice_count: int
    by_status: dict[str, StatusBucketRead]


__all__ = [
    "CancellationRead",
    "InvoiceCancel",
    "InvoiceCreate",
    "InvoiceItemsUpdate",
    "InvoicePage",
    "InvoicePreviewRequest",
    "InvoiceRead",
    "InvoiceTotalsRead",
    "PaymentAdd",
    "SalesSummaryRead",
    "StatusBucketRead",
]
