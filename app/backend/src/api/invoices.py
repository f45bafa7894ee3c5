"""Invoice related endpoints."""

from __future__ import annotations

import math
from datetime import date
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.backend.src.db import get_session_dependency
from app.backend.src.models import Invoice
from app.backend.src.schemas.invoice import (
    CancellationRead,
    InvoiceCancel,
    InvoiceCreate,
    InvoiceItemsUpdate,
    InvoicePage,
    InvoicePreviewRequest,
    InvoiceRead,
    InvoiceTotalsRead,
    PaymentAdd,
    SalesSummaryRead,
    StatusBucketRead,
)
from app.backend.src.schemas.line_item import InvoiceLineItemRead, PaymentModeRead
from app.backend.src.services import invoices as invoice_service
from app.backend.src.services.invoice_lifecycle import effective_status

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])

SessionDep = Annotated[Session, Depends(get_session_dependency)]


def serialize_invoice(invoice: Invoice, today: date | None = None) -> InvoiceRead:
    """Build the response model while the session is still open."""

    record = invoice_service.to_record(invoice)
    cancellation = None
    if record.cancellation is not None:
        cancellation = CancellationRead(
            reason=record.cancellation.reason,
            by_ref=record.cancellation.by_ref,
            at=record.cancellation.at,
        )
    return InvoiceRead(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        organization_ref=invoice.organization_ref,
        branch_ref=invoice.branch_ref,
        member_ref=invoice.member_ref,
        created_by_ref=invoice.created_by_ref,
        created_at=invoice.created_at,
        invoice_kind=invoice.invoice_kind,
        is_pro_forma=invoice.is_pro_forma,
        status=invoice.status,
        effective_status=effective_status(record, today),
        subtotal=invoice.subtotal,
        tax_total=invoice.tax_total,
        rounding=invoice.rounding,
        total=invoice.total,
        paid_total=invoice.paid_total,
        pending=invoice.pending,
        due_date=invoice.due_date,
        sent_at=invoice.sent_at,
        paid_at=invoice.paid_at,
        cancellation=cancellation,
        customer_notes=invoice.customer_notes,
        internal_notes=invoice.internal_notes,
        discount_reason=invoice.discount_reason,
        terms=invoice.terms,
        version=invoice.version_id,
        items=[
            InvoiceLineItemRead(
                description=row.description,
                service_ref=row.service_ref,
                quantity=row.quantity,
                unit_price=row.unit_price,
                discount_type=row.discount_type,
                discount_value=row.discount_value,
                tax_rate=row.tax_rate,
                start_date=row.start_date,
                expiry_date=row.expiry_date,
                amount=row.amount,
                discount_amount=row.discount_amount,
                tax_amount=row.tax_amount,
                total=row.total,
            )
            for row in invoice.line_items
        ],
        payment_modes=[
            PaymentModeRead(method=row.method, amount=row.amount)
            for row in invoice.payment_modes
        ],
    )


def _filters(
    organization_ref: str | None,
    branch_ref: str | None,
    member_ref: str | None,
    status_value: str | None,
    invoice_kind: str | None,
    start_date: date | None,
    end_date: date | None,
) -> invoice_service.InvoiceFilters:
    return invoice_service.InvoiceFilters(
        organization_ref=organization_ref,
        branch_ref=branch_ref,
        member_ref=member_ref,
        status=status_value,
        invoice_kind=invoice_kind,
        start_date=start_date,
        end_date=end_date,
    )


# --------------------------------------------------------------------------
# POST /invoices/preview
# --------------------------------------------------------------------------
@router.post("/preview", response_model=InvoiceTotalsRead)
def preview_invoice(payload: InvoicePreviewRequest) -> InvoiceTotalsRead:
    """Return live totals for the billing form without saving anything."""

    totals = invoice_service.preview_invoice(
        [item.model_dump() for item in payload.items],
        [mode.model_dump() for mode in payload.payment_modes],
        rounding=payload.rounding,
    )
    return InvoiceTotalsRead(
        **totals.as_display(),
        status_recommendation=totals.status_recommendation,
    )


# --------------------------------------------------------------------------
# POST /invoices
# --------------------------------------------------------------------------
@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(payload: InvoiceCreate, session: SessionDep) -> InvoiceRead:
    """Create a draft or pro-forma invoice."""

    invoice = invoice_service.create_invoice(
        session,
        organization_ref=payload.organization_ref,
        branch_ref=payload.branch_ref,
        member_ref=payload.member_ref,
        created_by_ref=payload.created_by_ref,
        items=[item.model_dump() for item in payload.items],
        payment_modes=[mode.model_dump() for mode in payload.payment_modes],
        invoice_kind=payload.invoice_kind,
        is_pro_forma=payload.is_pro_forma,
        rounding=payload.rounding,
        due_date=payload.due_date,
        customer_notes=payload.customer_notes,
        internal_notes=payload.internal_notes,
        discount_reason=payload.discount_reason,
        terms=payload.terms,
    )
    return serialize_invoice(invoice)


# --------------------------------------------------------------------------
# GET /invoices
# --------------------------------------------------------------------------
@router.get("", response_model=InvoicePage)
def list_invoices(
    session: SessionDep,
    organization_ref: str | None = None,
    branch_ref: str | None = None,
    member_ref: str | None = None,
    status_value: Annotated[str | None, Query(alias="status")] = None,
    invoice_kind: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
) -> InvoicePage:
    """Return a filtered, paginated invoice listing."""

    filters = _filters(
        organization_ref, branch_ref, member_ref, status_value, invoice_kind, start_date, end_date
    )
    invoices, total = invoice_service.list_invoices(session, filters, page=page, limit=limit)
    return InvoicePage(
        invoices=[serialize_invoice(invoice) for invoice in invoices],
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )


# --------------------------------------------------------------------------
# GET /invoices/summary
# --------------------------------------------------------------------------
@router.get("/summary", response_model=SalesSummaryRead)
def sales_summary(
    session: SessionDep,
    organization_ref: str | None = None,
    branch_ref: str | None = None,
    member_ref: str | None = None,
    status_value: Annotated[str | None, Query(alias="status")] = None,
    invoice_kind: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    include_cancelled: bool = False,
) -> SalesSummaryRead:
    """Return service (PT / non-PT) and product sales for the filtered invoices."""

    filters = _filters(
        organization_ref, branch_ref, member_ref, status_value, invoice_kind, start_date, end_date
    )
    summary = invoice_service.summarize_invoices(
        session, filters, include_cancelled=include_cancelled
    )
    return SalesSummaryRead(
        service_non_pt_sales=summary.service_non_pt_sales,
        service_pt_sales=summary.service_pt_sales,
        product_sales=summary.product_sales,
        service_non_pt_pending=summary.service_non_pt_pending,
        service_pt_pending=summary.service_pt_pending,
        product_pending=summary.product_pending,
        tax_total=summary.tax_total,
        gross_total=summary.gross_total,
        pending_total=summary.pending_total,
        invoice_count=summary.invoice_count,
        by_status={
            key: StatusBucketRead(count=bucket.count, amount=bucket.amount)
            for key, bucket in summary.by_status.items()
        },
    )


# --------------------------------------------------------------------------
# Single invoice operations
# --------------------------------------------------------------------------
@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(invoice_id: int, session: SessionDep) -> InvoiceRead:
    return serialize_invoice(invoice_service.get_invoice(session, invoice_id))


@router.put("/{invoice_id}/items", response_model=InvoiceRead)
def replace_items(
    invoice_id: int, payload: InvoiceItemsUpdate, session: SessionDep
) -> InvoiceRead:
    """Replace the line items of a draft or open invoice."""

    invoice = invoice_service.replace_items(
        session, invoice_id, [item.model_dump() for item in payload.items]
    )
    return serialize_invoice(invoice)


@router.post("/{invoice_id}/payments", response_model=InvoiceRead)
def add_payment(invoice_id: int, payload: PaymentAdd, session: SessionDep) -> InvoiceRead:
    """Record a payment mode against an invoice."""

    invoice = invoice_service.add_payment(
        session, invoice_id, method=payload.method, amount=payload.amount
    )
    return serialize_invoice(invoice)


@router.post("/{invoice_id}/submit", response_model=InvoiceRead)
def submit_invoice(invoice_id: int, session: SessionDep) -> InvoiceRead:
    """Convert a draft or pro-forma invoice into a numbered invoice."""

    invoice = invoice_service.submit_invoice(session, invoice_id)
    return serialize_invoice(invoice)


@router.post("/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_invoice(invoice_id: int, payload: InvoiceCancel, session: SessionDep) -> InvoiceRead:
    """Cancel an invoice; paid invoices keep their payment history."""

    invoice = invoice_service.cancel_invoice(
        session, invoice_id, reason=payload.reason, by_ref=payload.by_ref
    )
    LOGGER.info("invoice_cancel_requested", invoice_id=invoice_id, by_ref=payload.by_ref)
    return serialize_invoice(invoice)


__all__ = ["router", "serialize_invoice"]
