# Overview: Payment accumulator for billable documents; derives amount paid, balance and payment status.

"""
Payment Accumulator

DESIGN PRINCIPLES:
- Payments are append-only rows under their document (InvoicePayment,
  PurchasePayment); amount_paid is their running sum.
- A payment can never push amount_paid above rounded_amount.
- balance = rounded_amount - amount_paid is recomputed here and nowhere else.
- Status follows the totals once the document is posted:
      paid     if amount_paid >= rounded_amount > 0
      partial  if 0 < amount_paid < rounded_amount
      unchanged otherwise

These helpers never commit; invoice_service and purchase_service call them
inside their transition transaction.
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import PaymentExceedsBalance, ValidationError
from ..extensions import db
from ..money import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CHEQUE = "cheque"
METHOD_MOBILE_MONEY = "mobile_money"
METHOD_CREDIT = "credit"

INVOICE_PAYMENT_METHODS = (
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_CHEQUE,
    METHOD_MOBILE_MONEY,
)

PURCHASE_PAYMENT_METHODS = INVOICE_PAYMENT_METHODS + (METHOD_CREDIT,)


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"


def derive_payment_status(amount_paid: Decimal, rounded_amount: Decimal, current_status: str) -> str:
    paid = Decimal(amount_paid or 0)
    total = Decimal(rounded_amount or 0)
    if total > 0 and paid >= total:
        return STATUS_PAID
    if ZERO < paid < total:
        return STATUS_PARTIAL
    return current_status


def refresh_balance(document) -> Decimal:
    balance = quantize_money(Decimal(document.rounded_amount or 0) - Decimal(document.amount_paid or 0))
    document.balance = balance
    return balance


def refresh_status(document) -> str:
    document.status = derive_payment_status(document.amount_paid, document.rounded_amount, document.status)
    return document.status


def validate_payment(document, amount, method: str, allowed_methods: tuple) -> Decimal:
    """Check a prospective payment against the document without mutating anything."""
    value = quantize_money(to_decimal(amount, "amount"))
    if value <= 0:
        raise ValidationError("amount must be greater than 0", field="amount")
    if method not in allowed_methods:
        raise ValidationError(
            f"method must be one of {', '.join(allowed_methods)}",
            field="method",
        )
    balance = quantize_money(Decimal(document.rounded_amount or 0) - Decimal(document.amount_paid or 0))
    if value > balance:
        raise PaymentExceedsBalance(value, balance)
    return value


def append_payment(
    document,
    payment_cls,
    amount: Decimal,
    method: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    recorded_by: int | None = None,
    paid_at=None,
):
    """Append a validated payment and accumulate it (no status change)."""
    payment = payment_cls(
        amount=amount,
        method=method,
        reference=reference,
        notes=notes,
        recorded_by=recorded_by,
        paid_at=paid_at or utcnow(),
    )
    document.payments.append(payment)
    document.amount_paid = quantize_money(Decimal(document.amount_paid or 0) + amount)
    refresh_balance(document)
    db.session.flush()
    return payment
