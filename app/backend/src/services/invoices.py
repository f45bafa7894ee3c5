"""Service layer functions for persisting invoices.

This is the only module that reads or writes invoice rows. Each public
function loads the latest snapshot, applies one lifecycle action to it and
writes every derived field plus the new state in a single commit.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.backend.src.core.config import get_settings
from app.backend.src.models import Invoice, InvoiceLineItem, InvoicePaymentMode
from app.backend.src.services import invoice_lifecycle as lifecycle
from app.backend.src.services.calculations import (
    ZERO,
    Discount,
    LineItemInput,
    round_money,
)
from app.backend.src.services.exceptions import (
    BillingError,
    ConcurrentModificationError,
    NotFoundError,
)
from app.backend.src.services.invoice_lifecycle import (
    STATUS_OVERDUE,
    Cancellation,
    InvoiceRecord,
    SequenceProvider,
)
from app.backend.src.services.invoice_totals import (
    STATUS_PARTIAL,
    STATUS_SENT,
    InvoiceTotals,
    PaymentEntry,
    compute_invoice_totals,
)
from app.backend.src.services.metrics import invoice_errors_total, invoice_transitions_total
from app.backend.src.services.sales_projection import (
    Classifier,
    SalesAccumulator,
    SalesSummary,
    default_classify,
)
from app.backend.src.services.sequences import DatabaseSequenceProvider

LOGGER = structlog.get_logger(__name__)

SUMMARY_PAGE_SIZE = 500


@dataclass(frozen=True, slots=True)
class InvoiceFilters:
    """Caller-supplied scope for invoice listings and reports."""

    organization_ref: str | None = None
    branch_ref: str | None = None
    member_ref: str | None = None
    status: str | None = None
    invoice_kind: str | None = None
    start_date: date | None = None
    end_date: date | None = None


# --------------------------------------------------------------------------
# Snapshot mapping
# --------------------------------------------------------------------------
def _stored_items(invoice: Invoice) -> tuple[LineItemInput, ...]:
    return tuple(
        LineItemInput(
            description=row.description,
            unit_price=Decimal(row.unit_price),
            quantity=row.quantity,
            discount=(
                Discount(type=row.discount_type, value=Decimal(row.discount_value or 0))
                if row.discount_type
                else None
            ),
            tax_rate=Decimal(row.tax_rate or 0),
            service_ref=row.service_ref,
            start_date=row.start_date,
            expiry_date=row.expiry_date,
        )
        for row in invoice.line_items
    )


def to_record(invoice: Invoice) -> InvoiceRecord:
    """Build the immutable snapshot for an ORM invoice."""

    items = _stored_items(invoice)
    payment_modes = tuple(
        PaymentEntry(method=row.method, amount=Decimal(row.amount))
        for row in invoice.payment_modes
    )
    cancellation = None
    if invoice.cancelled_at is not None:
        cancellation = Cancellation(
            reason=invoice.cancellation_reason or "",
            by_ref=invoice.cancelled_by_ref or "",
            at=invoice.cancelled_at,
        )

    return InvoiceRecord(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        organization_ref=invoice.organization_ref,
        branch_ref=invoice.branch_ref,
        member_ref=invoice.member_ref,
        created_by_ref=invoice.created_by_ref,
        created_at=invoice.created_at,
        items=items,
        invoice_kind=invoice.invoice_kind,
        is_pro_forma=invoice.is_pro_forma,
        status=invoice.status,
        payment_modes=payment_modes,
        rounding=Decimal(invoice.rounding or 0),
        due_date=invoice.due_date,
        sent_at=invoice.sent_at,
        paid_at=invoice.paid_at,
        cancellation=cancellation,
        customer_notes=invoice.customer_notes,
        internal_notes=invoice.internal_notes,
        discount_reason=invoice.discount_reason,
        terms=invoice.terms,
    )


def _write_record(invoice: Invoice, record: InvoiceRecord, totals: InvoiceTotals) -> None:
    invoice.invoice_number = record.invoice_number
    invoice.organization_ref = record.organization_ref
    invoice.branch_ref = record.branch_ref
    invoice.member_ref = record.member_ref
    invoice.created_by_ref = record.created_by_ref
    invoice.invoice_kind = record.invoice_kind
    invoice.is_pro_forma = record.is_pro_forma
    invoice.status = record.status
    invoice.rounding = record.rounding
    invoice.due_date = record.due_date
    invoice.sent_at = record.sent_at
    invoice.paid_at = record.paid_at
    invoice.customer_notes = record.customer_notes
    invoice.internal_notes = record.internal_notes
    invoice.discount_reason = record.discount_reason
    invoice.terms = record.terms
    if record.created_at is not None:
        invoice.created_at = record.created_at
    if record.cancellation is not None:
        invoice.cancellation_reason = record.cancellation.reason
        invoice.cancelled_by_ref = record.cancellation.by_ref
        invoice.cancelled_at = record.cancellation.at

    display = totals.as_display()
    invoice.subtotal = display["subtotal"]
    invoice.tax_total = display["tax_total"]
    invoice.total = display["total"]
    invoice.paid_total = display["paid_total"]
    invoice.pending = display["pending"]
    invoice.updated_at = datetime.now(timezone.utc)

    if _stored_items(invoice) != record.items:
        invoice.line_items = [
            InvoiceLineItem(
                position=position,
                description=computed.item.description,
                service_ref=computed.item.service_ref,
                quantity=computed.item.quantity,
                unit_price=computed.item.unit_price,
                discount_type=computed.item.discount.type if computed.item.discount else None,
                discount_value=computed.item.discount.value if computed.item.discount else None,
                tax_rate=computed.item.tax_rate,
                start_date=computed.item.start_date,
                expiry_date=computed.item.expiry_date,
                amount=round_money(computed.amount),
                discount_amount=round_money(computed.discount_amount),
                tax_amount=round_money(computed.tax_amount),
                total=round_money(computed.total),
            )
            for position, computed in enumerate(totals.items)
        ]

    # Payment modes are append-only once stored.
    for position in range(len(invoice.payment_modes), len(record.payment_modes)):
        entry = record.payment_modes[position]
        invoice.payment_modes.append(
            InvoicePaymentMode(position=position, method=entry.method, amount=entry.amount)
        )


# --------------------------------------------------------------------------
# Reads
# --------------------------------------------------------------------------
def _invoice_query() -> Select[tuple[Invoice]]:
    return select(Invoice).options(
        selectinload(Invoice.line_items), selectinload(Invoice.payment_modes)
    )


def get_invoice(session: Session, invoice_id: int) -> Invoice:
    """Return an invoice with its items and payments, or raise ``NotFoundError``."""

    invoice = session.execute(
        _invoice_query().where(Invoice.id == invoice_id)
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


def _apply_filters(
    query: Select[Any], filters: InvoiceFilters, today: date | None = None
) -> Select[Any]:
    if filters.organization_ref:
        query = query.where(Invoice.organization_ref == filters.organization_ref)
    if filters.branch_ref:
        query = query.where(Invoice.branch_ref == filters.branch_ref)
    if filters.member_ref:
        query = query.where(Invoice.member_ref == filters.member_ref)
    if filters.invoice_kind:
        query = query.where(Invoice.invoice_kind == filters.invoice_kind)
    if filters.status == STATUS_OVERDUE:
        query = query.where(
            Invoice.status.in_([STATUS_SENT, STATUS_PARTIAL]),
            Invoice.due_date < (today or lifecycle.utc_today()),
            Invoice.pending > 0,
        )
    elif filters.status and filters.status != "all":
        query = query.where(Invoice.status == filters.status)
    if filters.start_date:
        query = query.where(Invoice.created_at >= datetime.combine(filters.start_date, time.min))
    if filters.end_date:
        end = datetime.combine(filters.end_date + timedelta(days=1), time.min)
        query = query.where(Invoice.created_at < end)
    return query


def list_invoices(
    session: Session,
    filters: InvoiceFilters,
    *,
    page: int = 1,
    limit: int = 20,
    today: date | None = None,
) -> tuple[list[Invoice], int]:
    """Return one page of invoices, newest first, and the total match count."""

    count_query = _apply_filters(select(func.count(Invoice.id)), filters, today)
    total = session.execute(count_query).scalar_one()
    query = (
        _apply_filters(_invoice_query(), filters, today)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .offset((max(page, 1) - 1) * limit)
        .limit(limit)
    )
    return list(session.execute(query).scalars().all()), total


def summarize_invoices(
    session: Session,
    filters: InvoiceFilters,
    classify: Classifier = default_classify,
    *,
    include_cancelled: bool = False,
    today: date | None = None,
) -> SalesSummary:
    """Fold every invoice in scope into category sales, page by page."""

    accumulator = SalesAccumulator(classify, include_cancelled=include_cancelled, today=today)
    query = _apply_filters(_invoice_query(), filters, today).order_by(Invoice.id.asc())
    offset = 0
    while True:
        page = session.execute(query.offset(offset).limit(SUMMARY_PAGE_SIZE)).scalars().all()
        for invoice in page:
            accumulator.add(to_record(invoice))
        if len(page) < SUMMARY_PAGE_SIZE:
            break
        offset += SUMMARY_PAGE_SIZE
    return accumulator.summary()


def preview_invoice(
    items: Sequence[Mapping[str, Any]],
    payment_modes: Sequence[Mapping[str, Any]] = (),
    *,
    rounding: Decimal = ZERO,
) -> InvoiceTotals:
    """Compute totals for the billing form without storing anything."""

    return compute_invoice_totals(
        items,
        payment_modes,
        rounding=rounding,
        strict=get_settings().strict_discount_types,
    )


# --------------------------------------------------------------------------
# Writes
# --------------------------------------------------------------------------
def _commit(session: Session, invoice: Invoice, action: str) -> Invoice:
    try:
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        invoice_errors_total.labels(kind="CONCURRENT_MODIFICATION").inc()
        LOGGER.warning("invoice_write_conflict", invoice_id=invoice.id, action=action)
        raise ConcurrentModificationError(invoice.id) from exc
    invoice_transitions_total.labels(action=action, status=invoice.status).inc()
    return invoice


def _transition(
    session: Session,
    invoice_id: int,
    action: str,
    apply: Callable[[InvoiceRecord], InvoiceRecord],
) -> Invoice:
    invoice = get_invoice(session, invoice_id)
    before = to_record(invoice)
    try:
        after = apply(before)
        totals = after.totals()
        _write_record(invoice, after, totals)
    except BillingError as exc:
        session.rollback()
        invoice_errors_total.labels(kind=exc.code).inc()
        LOGGER.info(
            "invoice_action_rejected",
            invoice_id=invoice_id,
            action=action,
            status=before.status,
            error=exc.code,
        )
        raise
    invoice = _commit(session, invoice, action)
    LOGGER.info(
        f"invoice_{action}",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        previous_status=before.status,
        status=invoice.status,
        pending=str(invoice.pending),
    )
    return invoice


def create_invoice(
    session: Session,
    *,
    organization_ref: str,
    branch_ref: str,
    member_ref: str,
    created_by_ref: str,
    items: Sequence[Mapping[str, Any]],
    payment_modes: Sequence[Mapping[str, Any]] = (),
    invoice_kind: str = "service",
    is_pro_forma: bool = False,
    rounding: Decimal = ZERO,
    due_date: date | None = None,
    customer_notes: str | None = None,
    internal_notes: str | None = None,
    discount_reason: str | None = None,
    terms: str | None = None,
) -> Invoice:
    """Store a new unnumbered draft or pro-forma invoice."""

    try:
        record = lifecycle.new_invoice(
            organization_ref=organization_ref,
            branch_ref=branch_ref,
            member_ref=member_ref,
            created_by_ref=created_by_ref,
            items=items,
            payment_modes=payment_modes,
            invoice_kind=invoice_kind,
            is_pro_forma=is_pro_forma,
            rounding=rounding,
            due_date=due_date,
            customer_notes=customer_notes,
            internal_notes=internal_notes,
            discount_reason=discount_reason,
            terms=terms,
            strict=get_settings().strict_discount_types,
        )
    except BillingError as exc:
        invoice_errors_total.labels(kind=exc.code).inc()
        raise

    invoice = Invoice()
    _write_record(invoice, record, record.totals())
    session.add(invoice)
    invoice = _commit(session, invoice, "created")
    LOGGER.info(
        "invoice_created",
        invoice_id=invoice.id,
        branch_ref=invoice.branch_ref,
        member_ref=invoice.member_ref,
        is_pro_forma=invoice.is_pro_forma,
        total=str(invoice.total),
    )
    return invoice


def submit_invoice(
    session: Session,
    invoice_id: int,
    *,
    sequence_provider: SequenceProvider | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Number a draft (once) and move it to sent, partial or paid."""

    settings = get_settings()
    provider = sequence_provider or DatabaseSequenceProvider(session)
    return _transition(
        session,
        invoice_id,
        "submitted",
        lambda record: lifecycle.submit_invoice(
            record,
            provider,
            format_number=settings.format_invoice_number,
            due_days=settings.default_due_days,
            now=now,
        ),
    )


def add_payment(
    session: Session,
    invoice_id: int,
    *,
    method: str,
    amount: Decimal,
    now: datetime | None = None,
) -> Invoice:
    """Record a payment mode against an open invoice."""

    return _transition(
        session,
        invoice_id,
        "payment_added",
        lambda record: lifecycle.add_payment(
            record, {"method": method, "amount": amount}, now=now
        ),
    )


def replace_items(
    session: Session,
    invoice_id: int,
    items: Sequence[Mapping[str, Any]],
    *,
    now: datetime | None = None,
) -> Invoice:
    """Replace the line items of an editable invoice."""

    strict = get_settings().strict_discount_types
    return _transition(
        session,
        invoice_id,
        "items_replaced",
        lambda record: lifecycle.replace_items(record, items, strict=strict, now=now),
    )


def cancel_invoice(
    session: Session,
    invoice_id: int,
    *,
    reason: str,
    by_ref: str,
    now: datetime | None = None,
) -> Invoice:
    """Cancel an invoice, stamping who cancelled it and why."""

    return _transition(
        session,
        invoice_id,
        "cancelled",
        lambda record: lifecycle.cancel_invoice(record, reason, by_ref, now=now),
    )


__all__ = [
    "InvoiceFilters",
    "add_payment",
    "cancel_invoice",
    "create_invoice",
    "get_invoice",
    "list_invoices",
    "preview_invoice",
    "replace_items",
    "submit_invoice",
    "summarize_invoices",
    "to_record",
]
