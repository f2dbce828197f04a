# Overview: Counterparty balance tracker; derives client/supplier running totals from document transitions.

"""
Counterparty Balance Tracker

Client.outstanding_balance and Supplier.outstanding_balance are never
incremented ad hoc. Each document transition calls apply_transition exactly
once, which compares the document's exposure before and after the transition
and moves the counterparty's balance by the difference.

EXPOSURE:
    rounded_amount - amount_paid   while balance_posted and not cancelled
    0                              otherwise

So confirm/receive (posting) adds the full unpaid amount, a payment removes
what it paid, and cancellation removes the unpaid remainder. A draft that was
never posted contributes nothing, before or after cancellation.

Every balance update is floored at zero.

TOTALS:
- invoice payment: Client.total_purchases += amount, last_purchase_date
- purchase receipt: Supplier.total_purchases += rounded_amount, last_purchase_date
- cancelling a received purchase: Supplier.total_purchases -= rounded_amount
- direct stock receipt: Supplier.total_purchases += quantity * unit_cost
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..models import Purchase
from ..money import ZERO, quantize_money
from ..time_utils import utcnow


logger = logging.getLogger(__name__)

TRANSITION_EVENTS = ("confirm", "receive", "payment", "cancel")


def document_exposure(document) -> Decimal:
    if not document.balance_posted or document.status == "cancelled":
        return ZERO
    remaining = Decimal(document.rounded_amount or 0) - Decimal(document.amount_paid or 0)
    return max(ZERO, remaining)


def _add_floored(current, delta: Decimal) -> Decimal:
    return quantize_money(max(ZERO, Decimal(current or 0) + delta))


def apply_transition(
    document,
    counterparty,
    *,
    event: str,
    exposure_before: Decimal,
    amount: Decimal | None = None,
    stock_was_moved: bool = False,
    when=None,
) -> Decimal:
    """
    Apply the counterparty side effects of one document transition.

    exposure_before must be taken with document_exposure() before the
    document was mutated. Returns the change applied to outstanding_balance.
    """
    if event not in TRANSITION_EVENTS:
        raise ValueError(f"Unknown transition event: {event}")
    when = when or utcnow()

    delta = document_exposure(document) - exposure_before
    if delta:
        counterparty.outstanding_balance = _add_floored(counterparty.outstanding_balance, delta)

    is_purchase = isinstance(document, Purchase)

    if event == "payment" and not is_purchase:
        counterparty.total_purchases = _add_floored(counterparty.total_purchases, Decimal(amount or 0))
        counterparty.last_purchase_date = when
    elif event == "receive":
        counterparty.total_purchases = _add_floored(counterparty.total_purchases, Decimal(document.rounded_amount))
        counterparty.last_purchase_date = when
    elif event == "cancel" and is_purchase and stock_was_moved:
        counterparty.total_purchases = _add_floored(counterparty.total_purchases, -Decimal(document.rounded_amount))

    logger.debug(
        "%s %s: outstanding %+s on %s",
        event,
        document.document_number,
        delta,
        counterparty.code,
    )
    return delta


def record_direct_receipt(supplier, amount: Decimal, when=None) -> None:
    """Stock received outside a purchase document still counts as supplied value."""
    supplier.total_purchases = _add_floored(supplier.total_purchases, Decimal(amount or 0))
    supplier.last_purchase_date = when or utcnow()
