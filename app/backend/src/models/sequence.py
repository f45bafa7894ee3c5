"""Per-branch invoice number sequence model."""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class InvoiceSequence(Base):
    """Next invoice sequence value for one branch."""

    __tablename__ = "invoice_sequences"

    branch_ref: Mapped[str] = mapped_column(String(64), primary_key=True)
    next_value: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


__all__ = ["InvoiceSequence"]
