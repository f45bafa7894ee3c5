"""Unit tests for the invoice persistence service layer."""

from __future__ import annotations

import os
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_gym_billing.db")

import pytest

from app.backend.src.db import get_engine, session_scope
from app.backend.src.models import Invoice, InvoiceSequence
from app.backend.src.models.base import Base
from app.backend.src.services import invoice_lifecycle
from app.backend.src.services import invoices as invoice_service
from app.backend.src.services.exceptions import (
    ConcurrentModificationError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from app.backend.src.services.sequences import DatabaseSequenceProvider

NOW = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)

MEMBERSHIP = {
    "description": "Gym Membership - 12 Months",
    "unit_price": 1000,
    "discount": {"type": "percentage", "value": 10},
    "tax_rate": 18,
}


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _create(session, **overrides) -> Invoice:  # type: ignore[no-untyped-def]
    params = {
        "organization_ref": "org-1",
        "branch_ref": "branch-1",
        "member_ref": "member-1",
        "created_by_ref": "staff-1",
        "items": [MEMBERSHIP],
    }
    params.update(overrides)
    return invoice_service.create_invoice(session, **params)


def test_create_invoice_persists_rounded_totals_and_items() -> None:
    with session_scope() as session:
        invoice = _create(session, payment_modes=[{"method": "cash", "amount": 500}])
        invoice_id = invoice.id

    with session_scope() as session:
        stored = invoice_service.get_invoice(session, invoice_id)
        assert stored.status == "draft"
        assert stored.invoice_number is None
        assert stored.total == Decimal("1062.00")
        assert stored.paid_total == Decimal("500.00")
        assert stored.pending == Decimal("562.00")
        assert [row.description for row in stored.line_items] == ["Gym Membership - 12 Months"]
        assert stored.line_items[0].discount_amount == Decimal("100.00")
        assert [row.method for row in stored.payment_modes] == ["cash"]


def test_create_invoice_rejects_invalid_input() -> None:
    with session_scope() as session:
        with pytest.raises(ValidationError):
            _create(session, items=[{"description": "Zumba"}])

    with session_scope() as session:
        assert session.query(Invoice).count() == 0


def test_submit_numbers_invoices_per_branch() -> None:
    with session_scope() as session:
        first = invoice_service.submit_invoice(session, _create(session).id, now=NOW)
        second = invoice_service.submit_invoice(session, _create(session).id, now=NOW)
        other = invoice_service.submit_invoice(
            session, _create(session, branch_ref="branch-2").id, now=NOW
        )

        assert first.invoice_number == "INV-000001"
        assert second.invoice_number == "INV-000002"
        assert other.invoice_number == "INV-000001"
        assert first.status == "sent"
        assert first.sent_at is not None

    with session_scope() as session:
        sequence = session.get(InvoiceSequence, "branch-1")
        assert sequence is not None
        assert sequence.next_value == 3


def test_resubmit_does_not_consume_a_number() -> None:
    with session_scope() as session:
        invoice_id = _create(session).id
        invoice_service.submit_invoice(session, invoice_id, now=NOW)
        again = invoice_service.submit_invoice(session, invoice_id, now=NOW)

        assert again.invoice_number == "INV-000001"
        assert session.get(InvoiceSequence, "branch-1").next_value == 2


def test_payment_flow_reaches_paid() -> None:
    with session_scope() as session:
        invoice_id = _create(session).id
        invoice_service.submit_invoice(session, invoice_id, now=NOW)

        partial = invoice_service.add_payment(
            session, invoice_id, method="cash", amount=Decimal("500"), now=NOW
        )
        assert partial.status == "partial"
        assert partial.pending == Decimal("562.00")

        paid = invoice_service.add_payment(
            session, invoice_id, method="upi", amount=Decimal("562"), now=NOW
        )
        assert paid.status == "paid"
        assert paid.pending == Decimal("0.00")
        assert [row.method for row in paid.payment_modes] == ["cash", "upi"]


def test_rejected_action_leaves_invoice_untouched() -> None:
    with session_scope() as session:
        invoice_id = _create(session, payment_modes=[{"method": "cash", "amount": 1062}]).id
        invoice_service.submit_invoice(session, invoice_id, now=NOW)

    with session_scope() as session:
        with pytest.raises(InvalidTransition):
            invoice_service.replace_items(
                session, invoice_id, [{"description": "Day pass", "unit_price": 100}]
            )

    with session_scope() as session:
        stored = invoice_service.get_invoice(session, invoice_id)
        assert stored.status == "paid"
        assert stored.total == Decimal("1062.00")
        assert len(stored.line_items) == 1


def test_cancel_keeps_payment_history() -> None:
    with session_scope() as session:
        invoice_id = _create(session, payment_modes=[{"method": "card", "amount": 1062}]).id
        invoice_service.submit_invoice(session, invoice_id, now=NOW)
        cancelled = invoice_service.cancel_invoice(
            session, invoice_id, reason="Member relocated", by_ref="manager-1", now=NOW
        )

        assert cancelled.status == "cancelled"
        assert cancelled.paid_total == Decimal("1062.00")
        assert cancelled.cancelled_by_ref == "manager-1"
        assert cancelled.invoice_number == "INV-000001"

        with pytest.raises(InvalidTransition):
            invoice_service.cancel_invoice(
                session, invoice_id, reason="Again", by_ref="manager-1"
            )


def test_get_missing_invoice_raises_not_found() -> None:
    with session_scope() as session:
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(session, 999)


def test_stale_writer_is_rejected() -> None:
    with session_scope() as session:
        invoice_id = _create(session).id
        invoice_service.submit_invoice(session, invoice_id, now=NOW)

    with session_scope() as stale_session:
        # Holding the reference keeps the outdated version in the identity map.
        stale = invoice_service.get_invoice(stale_session, invoice_id)
        stale_version = stale.version_id

        with session_scope() as session:
            invoice_service.add_payment(
                session, invoice_id, method="cash", amount=Decimal("100"), now=NOW
            )

        with pytest.raises(ConcurrentModificationError):
            invoice_service.add_payment(
                stale_session, invoice_id, method="card", amount=Decimal("200"), now=NOW
            )

    with session_scope() as session:
        stored = invoice_service.get_invoice(session, invoice_id)
        assert stored.version_id == stale_version + 1
        assert stored.paid_total == Decimal("100.00")
        assert [row.method for row in stored.payment_modes] == ["cash"]


def test_list_invoices_filters_and_paginates() -> None:
    with session_scope() as session:
        for member in ("member-1", "member-2", "member-1"):
            _create(session, member_ref=member)
        sent_id = _create(session, member_ref="member-3", due_date=date(2024, 1, 31)).id
        invoice_service.submit_invoice(session, sent_id, now=NOW)

    with session_scope() as session:
        rows, total = invoice_service.list_invoices(
            session, invoice_service.InvoiceFilters(member_ref="member-1"), page=1, limit=1
        )
        assert total == 2
        assert len(rows) == 1

        overdue, overdue_total = invoice_service.list_invoices(
            session,
            invoice_service.InvoiceFilters(status="overdue"),
            today=date(2024, 2, 15),
        )
        assert overdue_total == 1
        assert overdue[0].id == sent_id

        drafts, drafts_total = invoice_service.list_invoices(
            session, invoice_service.InvoiceFilters(status="draft")
        )
        assert drafts_total == 3


def test_summarize_invoices_uses_projection() -> None:
    with session_scope() as session:
        _create(session, items=[{"description": "PT Sessions", "unit_price": 3000}])
        _create(session, items=[{"description": "Protein combo", "unit_price": 1500}], invoice_kind="deal")
        _create(session, organization_ref="org-2")

    with session_scope() as session:
        summary = invoice_service.summarize_invoices(
            session, invoice_service.InvoiceFilters(organization_ref="org-1")
        )

    assert summary.service_pt_sales == Decimal("3000.00")
    assert summary.product_sales == Decimal("1500.00")
    assert summary.service_non_pt_sales == Decimal("0.00")
    assert summary.invoice_count == 2


def test_sub_cent_payment_is_rejected_before_saving() -> None:
    with session_scope() as session:
        invoice_id = _create(session).id
        invoice_service.submit_invoice(session, invoice_id, now=NOW)

    with session_scope() as session:
        with pytest.raises(ValidationError) as exc_info:
            invoice_service.add_payment(
                session, invoice_id, method="cash", amount=Decimal("0.004"), now=NOW
            )
        assert exc_info.value.details["field"] == "payment_modes.amount"

    with session_scope() as session:
        stored = invoice_service.get_invoice(session, invoice_id)
        assert stored.status == "sent"
        assert stored.paid_total == Decimal("0.00")
        assert stored.payment_modes == []


def test_existing_sequence_row_is_reused() -> None:
    with session_scope() as session:
        session.add(InvoiceSequence(branch_ref="branch-1", next_value=41))

    with session_scope() as session:
        invoice_id = _create(session).id
        submitted = invoice_service.submit_invoice(session, invoice_id, now=NOW)
        assert submitted.invoice_number == "INV-000041"

    with session_scope() as session:
        assert session.query(InvoiceSequence).count() == 1
        assert session.get(InvoiceSequence, "branch-1").next_value == 42


def test_sequence_row_created_by_another_writer_is_not_duplicated() -> None:
    with session_scope() as session:
        provider = DatabaseSequenceProvider(session)

        with session_scope() as other:
            assert DatabaseSequenceProvider(other).next_value("branch-8") == 1

        assert provider.next_value("branch-8") == 2
        assert provider.next_value("branch-8") == 3

    with session_scope() as session:
        rows = session.query(InvoiceSequence).filter_by(branch_ref="branch-8").all()
        assert [row.next_value for row in rows] == [4]


def test_overdue_listing_and_read_share_one_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(invoice_lifecycle, "utc_today", lambda: date(2024, 2, 15))

    with session_scope() as session:
        late_id = _create(session, due_date=date(2024, 2, 14)).id
        on_time_id = _create(session, due_date=date(2024, 2, 15)).id
        invoice_service.submit_invoice(session, late_id, now=NOW)
        invoice_service.submit_invoice(session, on_time_id, now=NOW)

    with session_scope() as session:
        rows, total = invoice_service.list_invoices(
            session, invoice_service.InvoiceFilters(status="overdue")
        )
        assert total == 1
        assert rows[0].id == late_id

        for invoice_id, expected in ((late_id, "overdue"), (on_time_id, "sent")):
            record = invoice_service.to_record(invoice_service.get_invoice(session, invoice_id))
            assert invoice_lifecycle.effective_status(record) == expected
