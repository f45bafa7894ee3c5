"""Unit tests for line item calculations."""

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

import pytest

from app.backend.src.services.calculations import (
    Discount,
    LineItemInput,
    compute_item,
    round_money,
)
from app.backend.src.services.exceptions import ValidationError


def test_percentage_discount_and_tax() -> None:
    result = compute_item(
        {
            "description": "Gym Membership - 12 Months",
            "unit_price": 1000,
            "quantity": 1,
            "discount": {"type": "percentage", "value": 10},
            "tax_rate": 18,
        }
    )

    assert result.amount == Decimal("1000")
    assert result.discount_amount == Decimal("100")
    assert result.item_net == Decimal("900")
    assert result.tax_amount == Decimal("162")
    assert result.total == Decimal("1062")


def test_flat_discount_is_capped_at_amount() -> None:
    result = compute_item(
        {
            "description": "Locker",
            "unitPrice": "200",
            "quantity": 2,
            "discount": {"type": "flat", "value": "750"},
            "taxRate": "18",
        }
    )

    assert result.amount == Decimal("400")
    assert result.discount_amount == Decimal("400")
    assert result.item_net == Decimal("0")
    assert result.total == Decimal("0")


def test_negative_inputs_are_clamped_to_zero() -> None:
    result = compute_item(
        {
            "description": "Steam bath",
            "unit_price": -500,
            "quantity": 3,
            "discount": {"type": "flat", "value": -20},
            "tax_rate": -5,
        }
    )

    assert result.amount == Decimal("0")
    assert result.discount_amount == Decimal("0")
    assert result.tax_amount == Decimal("0")

    negative_quantity = compute_item({"description": "Towel", "unit_price": 50, "quantity": -2})
    assert negative_quantity.item.quantity == 0
    assert negative_quantity.total == Decimal("0")


def test_missing_discount_type_defaults_to_percentage() -> None:
    result = compute_item(
        {"description": "Yoga", "unit_price": 500, "discount": {"value": 20}}
    )

    assert result.item.discount == Discount(type="percentage", value=Decimal("20"))
    assert result.discount_amount == Decimal("100")


def test_unknown_discount_type_rejected_in_strict_mode() -> None:
    raw = {"description": "Yoga", "unit_price": 500, "discount": {"type": "bogo", "value": 20}}

    with pytest.raises(ValidationError) as exc_info:
        compute_item(raw)
    assert exc_info.value.details["field"] == "discount.type"

    lenient = compute_item(raw, strict=False)
    assert lenient.item.discount.type == "percentage"
    assert lenient.discount_amount == Decimal("100")


@pytest.mark.parametrize(
    "raw, field",
    [
        ({"description": "", "unit_price": 100}, "description"),
        ({"description": "   ", "unit_price": 100}, "description"),
        ({"description": "Zumba"}, "unit_price"),
        ({"description": "Zumba", "unit_price": "abc"}, "unit_price"),
        ({"description": "Zumba", "unit_price": 100, "quantity": 1.5}, "quantity"),
        ({"description": "Zumba", "unit_price": 100, "start_date": "next week"}, "start_date"),
    ],
)
def test_invalid_items_are_rejected(raw: dict, field: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        LineItemInput.from_raw(raw)

    assert exc_info.value.details["field"] == field


def test_dates_are_parsed_for_display() -> None:
    item = LineItemInput.from_raw(
        {
            "description": "PT Sessions",
            "unit_price": 3000,
            "startDate": "2024-04-01",
            "expiryDate": "2024-06-30T00:00:00",
        }
    )

    assert item.start_date.isoformat() == "2024-04-01"
    assert item.expiry_date.isoformat() == "2024-06-30"


def test_intermediate_amounts_are_not_rounded() -> None:
    result = compute_item(
        {"description": "Diet plan", "unit_price": "333.33", "tax_rate": "18"}
    )

    assert result.tax_amount == Decimal("59.9994")
    assert round_money(result.total) == Decimal("393.33")


@pytest.mark.parametrize(
    "raw, field",
    [
        ({"description": "Yoga", "unit_price": "10.12345"}, "unit_price"),
        ({"description": "Yoga", "unit_price": 100, "tax_rate": "18.00001"}, "tax_rate"),
        (
            {"description": "Yoga", "unit_price": 100, "discount": {"type": "flat", "value": "0.00005"}},
            "discount.value",
        ),
    ],
)
def test_values_beyond_stored_precision_are_rejected(raw: dict, field: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        LineItemInput.from_raw(raw)

    assert exc_info.value.details["field"] == field


def test_trailing_zeros_do_not_count_as_precision() -> None:
    item = LineItemInput.from_raw({"description": "Yoga", "unit_price": "10.120000"})

    assert item.unit_price == Decimal("10.12")
