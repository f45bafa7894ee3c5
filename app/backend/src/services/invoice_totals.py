"""Invoice-level aggregation of line items and payment entries."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.backend.src.services.calculations import (
    MONEY_PLACES,
    ZERO,
    ComputedLineItem,
    LineItemInput,
    check_places,
    compute_item,
    round_money,
    to_decimal,
)
from app.backend.src.services.exceptions import EmptyItemsError, ValidationError

PAYMENT_METHODS: frozenset[str] = frozenset(
    {"cash", "card", "upi", "bank_transfer", "cheque", "online", "other"}
)
PAYMENT_METHOD_ALIASES = {"razorpay": "online", "bank": "bank_transfer"}

STATUS_DRAFT = "draft"
STATUS_SENT = "sent"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"


@dataclass(frozen=True, slots=True)
class PaymentEntry:
    """One payment mode line captured against an invoice."""

    method: str
    amount: Decimal

    @property
    def is_active(self) -> bool:
        return bool(self.method) and self.amount > ZERO

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | "PaymentEntry") -> "PaymentEntry":
        if isinstance(raw, PaymentEntry):
            return raw
        method = str(raw.get("method") or "").strip().lower()
        method = PAYMENT_METHOD_ALIASES.get(method, method)
        if method and method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Unsupported payment method '{method}'", field="payment_modes.method"
            )
        amount = to_decimal(raw.get("amount"), "payment_modes.amount")
        if amount <= ZERO:
            return cls(method=method, amount=ZERO)
        return cls(
            method=method,
            amount=check_places(amount, MONEY_PLACES, "payment_modes.amount"),
        )


@dataclass(frozen=True, slots=True)
class InvoiceTotals:
    """Derived invoice figures; all values are unrounded."""

    items: tuple[ComputedLineItem, ...]
    subtotal: Decimal
    tax_total: Decimal
    rounding: Decimal
    total: Decimal
    paid_total: Decimal
    pending: Decimal
    status_recommendation: str

    @property
    def amount_due(self) -> Decimal:
        """Total at cent precision, the figure payments settle against."""

        return round_money(self.total)

    def as_display(self) -> dict[str, Decimal]:
        return {
            "subtotal": round_money(self.subtotal),
            "tax_total": round_money(self.tax_total),
            "rounding": round_money(self.rounding),
            "total": round_money(self.total),
            "paid_total": round_money(self.paid_total),
            "pending": round_money(self.pending),
        }


def active_payments(payment_modes: Iterable[PaymentEntry]) -> list[PaymentEntry]:
    """Drop entries with no method or a zero amount."""

    return [entry for entry in payment_modes if entry.is_active]


def recommend_status(total: Decimal, paid_total: Decimal, *, sent: bool = False) -> str:
    """Return the status implied by the paid amount alone."""

    if total > ZERO and paid_total > ZERO and paid_total >= round_money(total):
        return STATUS_PAID
    if paid_total > ZERO:
        return STATUS_PARTIAL
    return STATUS_SENT if sent else STATUS_DRAFT


def compute_invoice_totals(
    items: Sequence[LineItemInput | Mapping[str, Any]],
    payment_modes: Sequence[PaymentEntry | Mapping[str, Any]] = (),
    *,
    rounding: Decimal | int | str = ZERO,
    sent: bool = False,
    strict: bool = True,
) -> InvoiceTotals:
    """Sum items into invoice totals and reconcile them with payments.

    Raises :class:`EmptyItemsError` when ``items`` is empty. Overpayment is
    not an error: ``pending`` floors at zero.
    """

    if not items:
        raise EmptyItemsError()

    computed = tuple(compute_item(item, strict=strict) for item in items)
    payments = [PaymentEntry.from_raw(entry) for entry in payment_modes]

    subtotal = sum((entry.item_net for entry in computed), ZERO)
    tax_total = sum((entry.tax_amount for entry in computed), ZERO)
    rounding_value = check_places(to_decimal(rounding, "rounding"), MONEY_PLACES, "rounding")
    total = subtotal + tax_total + rounding_value
    if total < ZERO:
        total = ZERO

    paid_total = sum((entry.amount for entry in active_payments(payments)), ZERO)
    pending = round_money(total) - paid_total
    if pending < ZERO:
        pending = ZERO

    return InvoiceTotals(
        items=computed,
        subtotal=subtotal,
        tax_total=tax_total,
        rounding=rounding_value,
        total=total,
        paid_total=paid_total,
        pending=pending,
        status_recommendation=recommend_status(total, paid_total, sent=sent),
    )


__all__ = [
    "InvoiceTotals",
    "PAYMENT_METHODS",
    "PaymentEntry",
    "active_payments",
    "compute_invoice_totals",
    "recommend_status",
]
