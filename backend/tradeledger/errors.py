# Overview: Domain error taxonomy shared by services, routes, and the CLI.

"""
Ledger Errors

Every failure a caller can observe is one of these classes. Each carries a
`details` dict with enough context to render a precise message (available vs.
required quantity, current vs. attempted status) and the HTTP status code the
JSON API answers with.

HIERARCHY:
    LedgerError
    ├── NotFound                    404
    ├── ValidationError (ValueError) 400
    ├── InvalidState                409
    │   ├── AlreadyConverted
    │   └── CannotCancelPaidDocument
    ├── InsufficientStock           409
    ├── PaymentExceedsBalance       409
    └── ConcurrentModification      409 (retryable)
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        payload.update(self.details)
        return payload


class NotFound(LedgerError):
    """Unknown product, document, movement, or counterparty."""
    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "id": entity_id},
        )


class ValidationError(LedgerError, ValueError):
    """Malformed item, quantity, discount, tax, or header input."""
    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class InvalidState(LedgerError):
    """Transition attempted from a status that does not allow it."""
    status_code = 409

    def __init__(self, entity: str, current_status: str, attempted: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {attempted} {entity} in status {current_status}",
            {"entity": entity, "current_status": current_status, "attempted": attempted},
        )
        self.current_status = current_status
        self.attempted = attempted


class AlreadyConverted(InvalidState):
    def __init__(self, quotation_id: int, invoice_id: int | None):
        super().__init__(
            "quotation",
            "converted",
            "convert",
            message=f"Quotation {quotation_id} was already converted to invoice {invoice_id}",
        )
        self.details.update({"quotation_id": quotation_id, "invoice_id": invoice_id})


class CannotCancelPaidDocument(InvalidState):
    def __init__(self, entity: str, document_number: str):
        super().__init__(
            entity,
            "paid",
            "cancel",
            message=f"Cannot cancel a paid {entity} ({document_number})",
        )
        self.details["document_number"] = document_number


class InsufficientStock(LedgerError):
    """
    Raised when an outbound movement would drive stock below zero.

    Single-product failures carry product_id/sku/available/required at the
    top level; document-level checks report every short line under `items`.
    """
    status_code = 409

    def __init__(self, *, product_id=None, sku=None, available=None, required=None, items=None):
        if items:
            message = "Insufficient stock for " + ", ".join(
                f"{i['sku']} (available {i['available']}, required {i['required']})" for i in items
            )
            details = {"items": items}
        else:
            message = f"Insufficient stock for {sku}: available {available}, required {required}"
            details = {
                "product_id": product_id,
                "sku": sku,
                "available": available,
                "required": required,
            }
        super().__init__(message, details)


class PaymentExceedsBalance(LedgerError):
    status_code = 409

    def __init__(self, amount, balance):
        super().__init__(
            f"Payment amount {amount} exceeds balance {balance}",
            {"amount": str(amount), "balance": str(balance)},
        )


class ConcurrentModification(LedgerError):
    """A conflicting writer won repeatedly; the caller may retry the request."""
    status_code = 409

    def __init__(self, attempts: int):
        super().__init__(
            f"Concurrent modification detected; gave up after {attempts} attempts",
            {"attempts": attempts, "retryable": True},
        )
