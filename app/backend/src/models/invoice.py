"""Invoice model."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Invoice(Base):
    """Represents a member invoice raised by a branch."""

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("branch_ref", "invoice_number", name="uq_invoices_branch_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    organization_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    branch_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    member_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_by_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_kind: Mapped[str] = mapped_column(String(16), nullable=False, default="service")
    is_pro_forma: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", index=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    tax_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    rounding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    paid_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    pending: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(240), nullable=True)
    cancelled_by_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    customer_notes: Mapped[str | None] = mapped_column(String(240), nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(String(240), nullable=True)
    discount_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
    )
    payment_modes: Mapped[list["InvoicePaymentMode"]] = relationship(
        "InvoicePaymentMode",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePaymentMode.position",
    )

    __mapper_args__ = {"version_id_col": version_id}


__all__ = ["Invoice"]
