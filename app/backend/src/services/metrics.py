"""Prometheus metric definitions for invoice lifecycle operations."""

from __future__ import annotations

from prometheus_client import Counter

invoice_transitions_total = Counter(
    "invoice_transitions_total",
    "Invoice lifecycle actions by resulting status.",
    labelnames=["action", "status"],
)

invoice_errors_total = Counter(
    "invoice_errors_total",
    "Rejected invoice operations by error code.",
    labelnames=["kind"],
)

__all__ = [
    "invoice_errors_total",
    "invoice_transitions_total",
]
