"""
Invoice Engine Exceptions

Errors raised by the calculator, aggregator and lifecycle modules. None of
them are retried: the caller shows the message and the invoice keeps its
previously persisted state.
"""

from __future__ import annotations

from typing import Any


class BillingError(Exception):
    """Base exception for invoice engine errors."""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "BILLING_ERROR",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(BillingError):
    """Raised when invoice input is rejected before any mutation."""

    status_code = 422

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        code: str = "VALIDATION_ERROR",
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, code=code, details=error_details)


class EmptyItemsError(ValidationError):
    """Raised when an invoice has no usable line items."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message=message
            or "At least one line item with description and price is required.",
            field="items",
            code="EMPTY_ITEMS",
        )


class InvalidTransition(BillingError):
    """Raised when a lifecycle action is not allowed from the current state."""

    status_code = 409

    def __init__(
        self,
        current_state: str,
        action: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.current_state = current_state
        self.action = action
        msg = message or f"Cannot {action} an invoice in state '{current_state}'"
        error_details = details or {}
        error_details.update({"current_state": current_state, "action": action})
        super().__init__(message=msg, code="INVALID_TRANSITION", details=error_details)


class NotFoundError(BillingError):
    """Raised when an invoice or collaborator reference cannot be resolved."""

    status_code = 404

    def __init__(self, entity: str, ref: Any, message: str | None = None):
        super().__init__(
            message=message or f"{entity} not found: {ref}",
            code="NOT_FOUND",
            details={"entity": entity, "ref": ref},
        )


class ConcurrentModificationError(BillingError):
    """Raised when another writer updated the invoice first."""

    status_code = 409

    def __init__(self, invoice_id: Any):
        super().__init__(
            message="Invoice was modified by another request; reload and retry.",
            code="CONCURRENT_MODIFICATION",
            details={"invoice_id": invoice_id},
        )


__all__ = [
    "BillingError",
    "ConcurrentModificationError",
    "EmptyItemsError",
    "InvalidTransition",
    "NotFoundError",
    "ValidationError",
]
