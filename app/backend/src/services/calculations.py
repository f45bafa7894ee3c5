"""Line item calculation helpers.

Every amount here stays unrounded; :func:`round_money` is applied only when a
figure is displayed or persisted for list views.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from app.backend.src.services.exceptions import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

# Decimal places kept by the invoice store for entered figures.
MONEY_PLACES = 2
RATE_PLACES = 4

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FLAT = "flat"
DISCOUNT_TYPES: frozenset[str] = frozenset({DISCOUNT_PERCENTAGE, DISCOUNT_FLAT})


def round_money(value: Decimal) -> Decimal:
    """Round a monetary value to cents for presentation."""

    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field: str) -> Decimal:
    """Parse user input into a :class:`Decimal`, treating blanks as zero."""

    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValidationError(f"{field} must be a number", field=field) from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def to_date(value: Any, field: str) -> date | None:
    """Accept ``date`` objects or ISO ``YYYY-MM-DD`` strings."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO date", field=field) from exc


def check_places(value: Decimal, places: int, field: str) -> Decimal:
    """Reject values the invoice store would truncate to ``places`` decimals."""

    if value != value.quantize(Decimal(1).scaleb(-places)):
        raise ValidationError(
            f"{field} allows at most {places} decimal places", field=field
        )
    return value


def _clamp(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


@dataclass(frozen=True, slots=True)
class Discount:
    """Item-level discount, either a percentage of the amount or a flat value."""

    type: str = DISCOUNT_PERCENTAGE
    value: Decimal = ZERO

    @classmethod
    def from_raw(cls, raw: Any, *, strict: bool = True) -> "Discount | None":
        if raw is None:
            return None
        if isinstance(raw, Discount):
            return raw
        if not isinstance(raw, Mapping):
            raise ValidationError("discount must be an object", field="discount")

        discount_type = str(raw.get("type") or "").strip().lower()
        if not discount_type:
            discount_type = DISCOUNT_PERCENTAGE
        elif discount_type not in DISCOUNT_TYPES:
            if strict:
                raise ValidationError(
                    f"Unsupported discount type '{discount_type}'",
                    field="discount.type",
                )
            discount_type = DISCOUNT_PERCENTAGE

        value = _clamp(to_decimal(raw.get("value"), "discount.value"))
        return cls(type=discount_type, value=check_places(value, RATE_PLACES, "discount.value"))


@dataclass(frozen=True, slots=True)
class LineItemInput:
    """Raw billable entry as entered on the billing form."""

    description: str
    unit_price: Decimal
    quantity: int = 1
    discount: Discount | None = None
    tax_rate: Decimal = ZERO
    service_ref: str | None = None
    start_date: date | None = None
    expiry_date: date | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, strict: bool = True) -> "LineItemInput":
        """Build an item from loosely typed input, applying the clamp policy.

        Negative numbers become zero; a missing description or unit price is
        rejected.
        """

        description = str(raw.get("description") or "").strip()
        if not description:
            raise ValidationError("Line item description is required", field="description")

        unit_price = raw.get("unit_price", raw.get("unitPrice"))
        if unit_price is None or unit_price == "":
            raise ValidationError(
                f"Unit price is required for '{description}'", field="unit_price"
            )

        quantity = raw.get("quantity")
        quantity_value = to_decimal(1 if quantity is None else quantity, "quantity")
        if quantity_value != quantity_value.to_integral_value():
            raise ValidationError("quantity must be a whole number", field="quantity")

        tax_rate = raw.get("tax_rate", raw.get("taxRate"))
        service_ref = raw.get("service_ref", raw.get("serviceRef"))

        return cls(
            description=description,
            unit_price=check_places(
                _clamp(to_decimal(unit_price, "unit_price")), RATE_PLACES, "unit_price"
            ),
            quantity=max(int(quantity_value), 0),
            discount=Discount.from_raw(raw.get("discount"), strict=strict),
            tax_rate=check_places(
                _clamp(to_decimal(tax_rate, "tax_rate")), RATE_PLACES, "tax_rate"
            ),
            service_ref=str(service_ref) if service_ref else None,
            start_date=to_date(raw.get("start_date", raw.get("startDate")), "start_date"),
            expiry_date=to_date(raw.get("expiry_date", raw.get("expiryDate")), "expiry_date"),
        )


@dataclass(frozen=True, slots=True)
class ComputedLineItem:
    """A line item together with its derived amounts."""

    item: LineItemInput
    amount: Decimal
    discount_amount: Decimal
    item_net: Decimal
    tax_amount: Decimal
    total: Decimal

    @property
    def description(self) -> str:
        return self.item.description


def compute_item(
    raw_item: LineItemInput | Mapping[str, Any], *, strict: bool = True
) -> ComputedLineItem:
    """Derive amount, discount, tax and total for one line item."""

    if isinstance(raw_item, LineItemInput):
        item = raw_item
    else:
        item = LineItemInput.from_raw(raw_item, strict=strict)

    unit_price = _clamp(item.unit_price)
    quantity = Decimal(max(item.quantity, 0))
    amount = unit_price * quantity

    discount_amount = ZERO
    if item.discount is not None and item.discount.value > ZERO:
        if item.discount.type == DISCOUNT_FLAT:
            discount_amount = item.discount.value
        else:
            discount_amount = amount * item.discount.value / HUNDRED
    discount_amount = min(_clamp(discount_amount), amount)

    item_net = amount - discount_amount
    tax_amount = item_net * _clamp(item.tax_rate) / HUNDRED
    return ComputedLineItem(
        item=item,
        amount=amount,
        discount_amount=discount_amount,
        item_net=item_net,
        tax_amount=tax_amount,
        total=item_net + tax_amount,
    )


__all__ = [
    "ComputedLineItem",
    "Discount",
    "LineItemInput",
    "check_places",
    "compute_item",
    "round_money",
    "to_decimal",
]
