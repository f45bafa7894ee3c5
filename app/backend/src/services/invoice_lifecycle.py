"""Invoice lifecycle rules.

Invoices move through ``draft`` (optionally pro-forma) into the numbered
states ``sent``, ``partial`` and ``paid``; ``cancelled`` is terminal.
``overdue`` is never stored, it is derived on read by :func:`effective_status`.

Every function takes an immutable :class:`InvoiceRecord` and returns a new
one. Checks run before anything is built, so a rejected action leaves the
caller's record untouched.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Protocol

import structlog

from app.backend.src.services.calculations import ZERO, LineItemInput, to_decimal
from app.backend.src.services.exceptions import (
    EmptyItemsError,
    InvalidTransition,
    ValidationError,
)
from app.backend.src.services.invoice_totals import (
    STATUS_DRAFT,
    STATUS_PAID,
    STATUS_PARTIAL,
    STATUS_SENT,
    InvoiceTotals,
    PaymentEntry,
    compute_invoice_totals,
)

LOGGER = structlog.get_logger(__name__)

STATUS_OVERDUE = "overdue"
STATUS_CANCELLED = "cancelled"
EDITABLE_STATUSES = frozenset({STATUS_DRAFT, STATUS_SENT, STATUS_PARTIAL})
INVOICE_KINDS = frozenset({"service", "package", "deal"})
NOTES_MAX_LENGTH = 240

_STATUS_RANK = {STATUS_DRAFT: 0, STATUS_SENT: 1, STATUS_PARTIAL: 2, STATUS_PAID: 3}


class SequenceProvider(Protocol):
    """Atomic get-next-and-increment counter scoped to a branch."""

    def next_value(self, branch_ref: str) -> int: ...


@dataclass(frozen=True, slots=True)
class Cancellation:
    reason: str
    by_ref: str
    at: datetime


@dataclass(frozen=True, slots=True)
class InvoiceRecord:
    """Snapshot of an invoice as read from (or about to be written to) storage."""

    organization_ref: str
    branch_ref: str
    member_ref: str
    created_by_ref: str
    items: tuple[LineItemInput, ...]
    invoice_kind: str = "service"
    is_pro_forma: bool = False
    status: str = STATUS_DRAFT
    payment_modes: tuple[PaymentEntry, ...] = ()
    rounding: Decimal = ZERO
    id: int | None = None
    invoice_number: str | None = None
    created_at: datetime | None = None
    due_date: date | None = None
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancellation: Cancellation | None = None
    customer_notes: str | None = None
    internal_notes: str | None = None
    discount_reason: str | None = None
    terms: str | None = None

    def totals(self) -> InvoiceTotals:
        return compute_invoice_totals(
            self.items,
            self.payment_modes,
            rounding=self.rounding,
            sent=self.status != STATUS_DRAFT,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Calendar date used for due-date and overdue checks."""

    return _utcnow().date()


def _check_notes(**notes: str | None) -> None:
    for field, value in notes.items():
        if value is not None and len(value) > NOTES_MAX_LENGTH:
            raise ValidationError(
                f"{field} must be at most {NOTES_MAX_LENGTH} characters", field=field
            )


def _advance(current: str, recommended: str) -> str:
    """Never move a numbered invoice backwards."""

    if _STATUS_RANK.get(recommended, 0) > _STATUS_RANK.get(current, 0):
        return recommended
    return current


def new_invoice(
    *,
    organization_ref: str,
    branch_ref: str,
    member_ref: str,
    created_by_ref: str,
    items: Sequence[LineItemInput | Mapping[str, Any]],
    payment_modes: Sequence[PaymentEntry | Mapping[str, Any]] = (),
    invoice_kind: str = "service",
    is_pro_forma: bool = False,
    rounding: Decimal = ZERO,
    due_date: date | None = None,
    customer_notes: str | None = None,
    internal_notes: str | None = None,
    discount_reason: str | None = None,
    terms: str | None = None,
    strict: bool = True,
    now: datetime | None = None,
) -> InvoiceRecord:
    """Validate billing form input and return an unnumbered draft."""

    if not items:
        raise EmptyItemsError()
    for field, value in (
        ("organization_ref", organization_ref),
        ("branch_ref", branch_ref),
        ("member_ref", member_ref),
        ("created_by_ref", created_by_ref),
    ):
        if not value:
            raise ValidationError(f"{field} is required", field=field)
    if invoice_kind not in INVOICE_KINDS:
        raise ValidationError(f"Unsupported invoice kind '{invoice_kind}'", field="invoice_kind")
    _check_notes(customer_notes=customer_notes, internal_notes=internal_notes)

    line_items = tuple(
        item if isinstance(item, LineItemInput) else LineItemInput.from_raw(item, strict=strict)
        for item in items
    )
    payments = tuple(PaymentEntry.from_raw(entry) for entry in payment_modes)

    record = InvoiceRecord(
        organization_ref=organization_ref,
        branch_ref=branch_ref,
        member_ref=member_ref,
        created_by_ref=created_by_ref,
        items=line_items,
        invoice_kind=invoice_kind,
        is_pro_forma=is_pro_forma,
        payment_modes=tuple(entry for entry in payments if entry.is_active),
        rounding=to_decimal(rounding, "rounding"),
        created_at=now or _utcnow(),
        due_date=due_date,
        customer_notes=customer_notes,
        internal_notes=internal_notes,
        discount_reason=discount_reason,
        terms=terms,
    )
    record.totals()
    return record


def submit_invoice(
    invoice: InvoiceRecord,
    sequence_provider: SequenceProvider,
    *,
    format_number: Callable[[int], str] = str,
    due_days: int | None = None,
    now: datetime | None = None,
) -> InvoiceRecord:
    """Convert a draft into a numbered invoice, or re-derive a numbered one.

    The sequence provider is consulted only when the invoice has no number
    yet, so repeated submission never consumes a second value.
    """

    if invoice.status in (STATUS_PAID, STATUS_CANCELLED):
        raise InvalidTransition(invoice.status, "submit")

    totals = compute_invoice_totals(
        invoice.items, invoice.payment_modes, rounding=invoice.rounding, sent=True
    )
    moment = now or _utcnow()
    status = (
        totals.status_recommendation
        if invoice.status == STATUS_DRAFT
        else _advance(invoice.status, totals.status_recommendation)
    )

    invoice_number = invoice.invoice_number
    if invoice_number is None:
        invoice_number = format_number(sequence_provider.next_value(invoice.branch_ref))
        LOGGER.info(
            "invoice_number_assigned",
            invoice_id=invoice.id,
            branch_ref=invoice.branch_ref,
            invoice_number=invoice_number,
        )

    due_date = invoice.due_date
    if due_date is None and due_days is not None:
        due_date = moment.date() + timedelta(days=due_days)

    return replace(
        invoice,
        status=status,
        invoice_number=invoice_number,
        is_pro_forma=False,
        due_date=due_date,
        sent_at=invoice.sent_at or moment,
        paid_at=invoice.paid_at or (moment if status == STATUS_PAID else None),
    )


def add_payment(
    invoice: InvoiceRecord,
    payment: PaymentEntry | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> InvoiceRecord:
    """Append a payment mode; numbered invoices advance to partial or paid."""

    if invoice.status not in EDITABLE_STATUSES:
        raise InvalidTransition(invoice.status, "add_payment")

    entry = PaymentEntry.from_raw(payment)
    if not entry.method:
        raise ValidationError("Payment method is required", field="method")
    if entry.amount <= ZERO:
        raise ValidationError("Payment amount must be greater than zero", field="amount")

    payment_modes = invoice.payment_modes + (entry,)
    if invoice.status == STATUS_DRAFT:
        return replace(invoice, payment_modes=payment_modes)

    totals = compute_invoice_totals(
        invoice.items, payment_modes, rounding=invoice.rounding, sent=True
    )
    status = _advance(invoice.status, totals.status_recommendation)
    paid_at = invoice.paid_at
    if status == STATUS_PAID and paid_at is None:
        paid_at = now or _utcnow()
    return replace(invoice, payment_modes=payment_modes, status=status, paid_at=paid_at)


def replace_items(
    invoice: InvoiceRecord,
    items: Sequence[LineItemInput | Mapping[str, Any]],
    *,
    strict: bool = True,
    now: datetime | None = None,
) -> InvoiceRecord:
    """Swap the invoice's line items while it is still editable."""

    if invoice.status not in EDITABLE_STATUSES:
        raise InvalidTransition(invoice.status, "edit_items")
    if not items:
        raise EmptyItemsError()

    line_items = tuple(
        item if isinstance(item, LineItemInput) else LineItemInput.from_raw(item, strict=strict)
        for item in items
    )
    totals = compute_invoice_totals(
        line_items,
        invoice.payment_modes,
        rounding=invoice.rounding,
        sent=invoice.status != STATUS_DRAFT,
    )
    if invoice.status == STATUS_DRAFT:
        return replace(invoice, items=line_items)

    status = _advance(invoice.status, totals.status_recommendation)
    paid_at = invoice.paid_at
    if status == STATUS_PAID and paid_at is None:
        paid_at = now or _utcnow()
    return replace(invoice, items=line_items, status=status, paid_at=paid_at)


def cancel_invoice(
    invoice: InvoiceRecord,
    reason: str,
    by_ref: str,
    *,
    now: datetime | None = None,
) -> InvoiceRecord:
    """Cancel an invoice, keeping its number and payment history."""

    if invoice.status == STATUS_CANCELLED:
        raise InvalidTransition(invoice.status, "cancel")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Cancellation reason is required", field="reason")
    if not by_ref:
        raise ValidationError("Cancelling staff reference is required", field="by_ref")
    _check_notes(reason=reason)

    return replace(
        invoice,
        status=STATUS_CANCELLED,
        cancellation=Cancellation(reason=reason, by_ref=by_ref, at=now or _utcnow()),
    )


def effective_status(
    invoice: InvoiceRecord,
    today: date | None = None,
    totals: InvoiceTotals | None = None,
) -> str:
    """Return the stored status, or ``overdue`` for unpaid invoices past due."""

    if invoice.status not in (STATUS_SENT, STATUS_PARTIAL) or invoice.due_date is None:
        return invoice.status
    today = today or utc_today()
    if invoice.due_date >= today:
        return invoice.status
    pending = (totals or invoice.totals()).pending
    return STATUS_OVERDUE if pending > ZERO else invoice.status


__all__ = [
    "Cancellation",
    "InvoiceRecord",
    "SequenceProvider",
    "add_payment",
    "cancel_invoice",
    "effective_status",
    "new_invoice",
    "replace_items",
    "submit_invoice",
    "utc_today",
]
