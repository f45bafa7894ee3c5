"""API tests for the invoice endpoints."""

from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_gym_billing.db")

import pytest
from fastapi.testclient import TestClient

from app.backend.src.db import get_engine
from app.backend.src.main import app
from app.backend.src.models.base import Base


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


def _payload(**overrides) -> dict:  # type: ignore[no-untyped-def]
    payload = {
        "organizationRef": "org-1",
        "branchRef": "branch-1",
        "memberRef": "member-1",
        "createdByRef": "staff-1",
        "items": [
            {
                "description": "Gym Membership - 12 Months",
                "unitPrice": "1000",
                "quantity": 1,
                "discount": {"type": "percentage", "value": "10"},
                "taxRate": "18",
            }
        ],
    }
    payload.update(overrides)
    return payload


def test_preview_returns_live_totals(client: TestClient) -> None:
    response = client.post(
        "/api/invoices/preview",
        json={
            "items": _payload()["items"],
            "paymentModes": [{"method": "cash", "amount": "500"}],
        },
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert Decimal(data["total"]) == Decimal("1062")
    assert Decimal(data["pending"]) == Decimal("562")
    assert data["status_recommendation"] == "partial"


def test_preview_without_items_is_rejected(client: TestClient) -> None:
    response = client.post("/api/invoices/preview", json={"items": []})

    assert response.status_code == 422
    assert response.json()["error"] == "EMPTY_ITEMS"


def test_invoice_lifecycle_over_http(client: TestClient) -> None:
    created = client.post("/api/invoices", json=_payload(isProForma=True))
    assert created.status_code == 201, created.text
    invoice = created.json()
    assert invoice["status"] == "draft"
    assert invoice["is_pro_forma"] is True
    assert invoice["invoice_number"] is None
    invoice_id = invoice["id"]

    submitted = client.post(f"/api/invoices/{invoice_id}/submit")
    assert submitted.status_code == 200, submitted.text
    assert submitted.json()["invoice_number"] == "INV-000001"
    assert submitted.json()["is_pro_forma"] is False
    assert submitted.json()["status"] == "sent"

    payment = client.post(
        f"/api/invoices/{invoice_id}/payments", json={"method": "upi", "amount": "1062"}
    )
    assert payment.status_code == 200, payment.text
    assert payment.json()["status"] == "paid"
    assert Decimal(payment.json()["pending"]) == Decimal("0")

    blocked = client.put(
        f"/api/invoices/{invoice_id}/items",
        json={"items": [{"description": "Day pass", "unitPrice": "100"}]},
    )
    assert blocked.status_code == 409
    assert blocked.json()["error"] == "INVALID_TRANSITION"

    cancelled = client.post(
        f"/api/invoices/{invoice_id}/cancel",
        json={"reason": "Member relocated", "byRef": "manager-1"},
    )
    assert cancelled.status_code == 200, cancelled.text
    body = cancelled.json()
    assert body["status"] == "cancelled"
    assert body["cancellation"]["by_ref"] == "manager-1"
    assert Decimal(body["paid_total"]) == Decimal("1062")


def test_replace_items_recomputes_totals(client: TestClient) -> None:
    invoice_id = client.post("/api/invoices", json=_payload()).json()["id"]

    response = client.put(
        f"/api/invoices/{invoice_id}/items",
        json={
            "items": [
                {"description": "PT Sessions", "unitPrice": "3000", "taxRate": "18"},
                {"description": "Locker", "unitPrice": "200", "quantity": 2},
            ]
        },
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert Decimal(data["subtotal"]) == Decimal("3400")
    assert Decimal(data["total"]) == Decimal("3940")
    assert [item["description"] for item in data["items"]] == ["PT Sessions", "Locker"]


def test_invalid_discount_type_is_rejected(client: TestClient) -> None:
    payload = _payload()
    payload["items"][0]["discount"] = {"type": "bogo", "value": "10"}

    response = client.post("/api/invoices", json=payload)

    assert response.status_code == 422
    assert response.json()["details"]["field"] == "discount.type"


def test_missing_invoice_returns_404(client: TestClient) -> None:
    response = client.get("/api/invoices/4242")

    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


def test_list_and_summary_endpoints(client: TestClient) -> None:
    client.post("/api/invoices", json=_payload())
    client.post(
        "/api/invoices",
        json=_payload(
            memberRef="member-2",
            items=[{"description": "PT Sessions", "unitPrice": "3000"}],
        ),
    )

    listing = client.get("/api/invoices", params={"member_ref": "member-2", "limit": 10})
    assert listing.status_code == 200, listing.text
    page = listing.json()
    assert page["total"] == 1
    assert page["pages"] == 1
    assert page["invoices"][0]["member_ref"] == "member-2"

    summary = client.get("/api/invoices/summary", params={"branch_ref": "branch-1"})
    assert summary.status_code == 200, summary.text
    data = summary.json()
    assert Decimal(data["service_pt_sales"]) == Decimal("3000")
    assert Decimal(data["service_non_pt_sales"]) == Decimal("900")
    assert data["invoice_count"] == 2
    assert data["by_status"]["draft"]["count"] == 2
