"""Services for folding invoices into sales report summaries."""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

import structlog

from app.backend.src.services.calculations import ZERO, round_money
from app.backend.src.services.invoice_lifecycle import (
    STATUS_CANCELLED,
    InvoiceRecord,
    effective_status,
)
from app.backend.src.services.invoice_totals import InvoiceTotals

LOGGER = structlog.get_logger(__name__)

CATEGORY_SERVICE_NON_PT = "service-non-PT"
CATEGORY_SERVICE_PT = "service-PT"
CATEGORY_PRODUCT = "product"
CATEGORIES = (CATEGORY_SERVICE_NON_PT, CATEGORY_SERVICE_PT, CATEGORY_PRODUCT)

PRODUCT_INVOICE_KINDS = frozenset({"package", "deal"})
PT_PATTERN = re.compile(r"\b(pt|personal\s+trainer)\b", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class SaleLine:
    """One computed line item with the invoice context a classifier needs."""

    description: str
    service_ref: str | None
    invoice_kind: str
    item_net: Decimal
    total: Decimal


Classifier = Callable[[SaleLine], str]


def default_classify(line: SaleLine) -> str:
    """Packages and deals are products; PT services are matched by description."""

    if line.invoice_kind in PRODUCT_INVOICE_KINDS:
        return CATEGORY_PRODUCT
    if PT_PATTERN.search(line.description or ""):
        return CATEGORY_SERVICE_PT
    return CATEGORY_SERVICE_NON_PT


@dataclass(frozen=True, slots=True)
class StatusBucket:
    count: int
    amount: Decimal


@dataclass(frozen=True, slots=True)
class SalesSummary:
    """Rounded report figures for a set of invoices."""

    service_non_pt_sales: Decimal
    service_pt_sales: Decimal
    product_sales: Decimal
    service_non_pt_pending: Decimal
    service_pt_pending: Decimal
    product_pending: Decimal
    tax_total: Decimal
    gross_total: Decimal
    pending_total: Decimal
    invoice_count: int
    by_status: dict[str, StatusBucket] = field(default_factory=dict)


class SalesAccumulator:
    """Running, unrounded category sums over one or more pages of invoices."""

    def __init__(
        self,
        classify: Classifier = default_classify,
        *,
        include_cancelled: bool = False,
        today: date | None = None,
    ) -> None:
        self._classify = classify
        self._include_cancelled = include_cancelled
        self._today = today
        self._sales: dict[str, Decimal] = {category: ZERO for category in CATEGORIES}
        self._pending: dict[str, Decimal] = {category: ZERO for category in CATEGORIES}
        self._status_counts: dict[str, int] = defaultdict(int)
        self._status_amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
        self._tax_total = ZERO
        self._gross_total = ZERO
        self._pending_total = ZERO
        self._invoice_count = 0

    def _category(self, line: SaleLine) -> str:
        category = self._classify(line)
        if category not in self._sales:
            raise ValueError(f"Classifier returned unknown category '{category}'")
        return category

    def add(self, invoice: InvoiceRecord, totals: InvoiceTotals | None = None) -> None:
        totals = totals or invoice.totals()
        status = effective_status(invoice, self._today, totals)
        excluded = invoice.status == STATUS_CANCELLED and not self._include_cancelled

        lines: list[SaleLine] = []
        categories: list[str] = []
        if not excluded:
            lines = [
                SaleLine(
                    description=computed.description,
                    service_ref=computed.item.service_ref,
                    invoice_kind=invoice.invoice_kind,
                    item_net=computed.item_net,
                    total=computed.total,
                )
                for computed in totals.items
            ]
            # Classify everything before any running total changes.
            categories = [self._category(line) for line in lines]

        self._status_counts[status] += 1
        self._status_amounts[status] += totals.total
        if excluded:
            return

        for line, category in zip(lines, categories):
            self._sales[category] += line.item_net

        # Pending is spread over items by their share of the gross item total.
        if totals.pending > ZERO and lines:
            gross = sum((line.total for line in lines), ZERO)
            if gross > ZERO:
                for line, category in zip(lines, categories):
                    self._pending[category] += totals.pending * line.total / gross
            else:
                self._pending[categories[0]] += totals.pending

        self._tax_total += totals.tax_total
        self._gross_total += totals.total
        self._pending_total += totals.pending
        self._invoice_count += 1

    def extend(self, invoices: Iterable[InvoiceRecord]) -> "SalesAccumulator":
        for invoice in invoices:
            self.add(invoice)
        return self

    def summary(self) -> SalesSummary:
        by_status = {
            status: StatusBucket(count=count, amount=round_money(self._status_amounts[status]))
            for status, count in sorted(self._status_counts.items())
        }
        return SalesSummary(
            service_non_pt_sales=round_money(self._sales[CATEGORY_SERVICE_NON_PT]),
            service_pt_sales=round_money(self._sales[CATEGORY_SERVICE_PT]),
            product_sales=round_money(self._sales[CATEGORY_PRODUCT]),
            service_non_pt_pending=round_money(self._pending[CATEGORY_SERVICE_NON_PT]),
            service_pt_pending=round_money(self._pending[CATEGORY_SERVICE_PT]),
            product_pending=round_money(self._pending[CATEGORY_PRODUCT]),
            tax_total=round_money(self._tax_total),
            gross_total=round_money(self._gross_total),
            pending_total=round_money(self._pending_total),
            invoice_count=self._invoice_count,
            by_status=by_status,
        )


def project_sales(
    invoices: Iterable[InvoiceRecord],
    classify: Classifier = default_classify,
    *,
    include_cancelled: bool = False,
    today: date | None = None,
) -> SalesSummary:
    """Return category sales sums over pre-tax item values."""

    accumulator = SalesAccumulator(
        classify, include_cancelled=include_cancelled, today=today
    ).extend(invoices)
    summary = accumulator.summary()
    LOGGER.debug("sales_projected", invoice_count=summary.invoice_count)
    return summary


__all__ = [
    "CATEGORIES",
    "SaleLine",
    "SalesAccumulator",
    "SalesSummary",
    "StatusBucket",
    "default_classify",
    "project_sales",
]
