from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z


TAX_CODES = ("A", "B", "None")


# =============================================================================
# SHARED COLUMNS
# =============================================================================

class LineItemMixin:
    """
    Priced line on a billable document or quotation.

    subtotal / tax_amount / total_with_tax and tax_rate are always derived by
    services.totals from quantity, unit amount, discount and tax_code.
    """
    position = db.Column(db.Integer, nullable=False, default=0)
    item_code = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="piece")
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    tax_code = db.Column(db.String(8), nullable=False, default="A")
    tax_rate = db.Column(db.Numeric(6, 2), nullable=False, default=Decimal("0"))
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_with_tax = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    def _line_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": decimal_str(self.quantity),
            "unit": self.unit,
            "discount": decimal_str(self.discount),
            "tax_code": self.tax_code,
            "tax_rate": decimal_str(self.tax_rate),
            "subtotal": decimal_str(self.subtotal),
            "tax_amount": decimal_str(self.tax_amount),
            "total_with_tax": decimal_str(self.total_with_tax),
        }


class PaymentEntryMixin:
    """Append-only payment record; amount_paid on the document is their sum."""
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    recorded_by = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": decimal_str(self.amount),
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
            "recorded_by": self.recorded_by,
            "paid_at": to_utc_z(self.paid_at),
        }


class BillableDocumentMixin:
    """
    Totals, payment accumulator and lifecycle audit fields shared by Invoice
    and Purchase.

    balance is stored for querying but is only ever written by
    payment_service.refresh_balance (rounded_amount - amount_paid).
    balance_posted marks that the document's exposure has been added to the
    counterparty's outstanding balance.
    """
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_discount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_a_ex = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_tax_a = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_b18 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_tax_b = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_tax = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    grand_total = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    rounded_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    amount_paid = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    balance_posted = db.Column(db.Boolean, nullable=False, default=False)

    currency = db.Column(db.String(8), nullable=False, default="FRW")
    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    notes = db.Column(db.Text, nullable=True)
    terms = db.Column(db.Text, nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def _billing_dict(self) -> dict:
        return {
            "status": self.status,
            "subtotal": decimal_str(self.subtotal),
            "total_discount": decimal_str(self.total_discount),
            "total_a_ex": decimal_str(self.total_a_ex),
            "total_tax_a": decimal_str(self.total_tax_a),
            "total_b18": decimal_str(self.total_b18),
            "total_tax_b": decimal_str(self.total_tax_b),
            "total_tax": decimal_str(self.total_tax),
            "grand_total": decimal_str(self.grand_total),
            "rounded_amount": decimal_str(self.rounded_amount),
            "amount_paid": decimal_str(self.amount_paid),
            "balance": decimal_str(self.balance),
            "currency": self.currency,
            "payment_terms": self.payment_terms,
            "notes": self.notes,
            "terms": self.terms,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by": self.confirmed_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


# =============================================================================
# INVOICES
# =============================================================================

class Invoice(BillableDocumentMixin, db.Model):
    """
    Sales invoice issued to a client.

    LIFECYCLE:
    draft -> confirmed -> partial -> paid
    any non-paid state -> cancelled (terminal)

    stock_deducted flips exactly once, when confirmation (explicit or
    triggered by the first payment) writes the out/sale movements.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.Index("ix_invoices_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=True, index=True)

    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("invoices", lazy=True))
    quotation = db.relationship("Quotation", foreign_keys=[quotation_id])
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )
    payments = db.relationship(
        "InvoicePayment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePayment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def document_number(self) -> str:
        return self.invoice_number

    @property
    def stock_moved(self) -> bool:
        return bool(self.stock_deducted)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "client_id": self.client_id,
            "quotation_id": self.quotation_id,
            "invoice_date": to_utc_z(self.invoice_date),
            "due_date": to_utc_z(self.due_date),
            "stock_deducted": self.stock_deducted,
        }
        data.update(self._billing_dict())
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoiceItem(LineItemMixin, db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")

    @property
    def unit_amount(self) -> Decimal:
        return self.unit_price

    def to_dict(self) -> dict:
        data = self._line_dict()
        data["unit_price"] = decimal_str(self.unit_price)
        return data


class InvoicePayment(PaymentEntryMixin, db.Model):
    __tablename__ = "invoice_payments"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    invoice = db.relationship("Invoice", back_populates="payments")


# =============================================================================
# PURCHASES
# =============================================================================

class Purchase(BillableDocumentMixin, db.Model):
    """
    Purchase order placed with a supplier.

    LIFECYCLE:
    draft -> ordered (optional) -> received -> partial -> paid
    any non-paid state -> cancelled (terminal)

    stock_added flips exactly once, when receipt writes the in/purchase
    movements and blends their cost into each product's average cost.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("purchase_number", name="uq_purchases_number"),
        db.Index("ix_purchases_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    supplier_invoice_number = db.Column(db.String(64), nullable=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expected_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    ordered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    stock_added = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItem.position",
    )
    payments = db.relationship(
        "PurchasePayment",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchasePayment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def document_number(self) -> str:
        return self.purchase_number

    @property
    def stock_moved(self) -> bool:
        return bool(self.stock_added)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "purchase_number": self.purchase_number,
            "supplier_id": self.supplier_id,
            "supplier_invoice_number": self.supplier_invoice_number,
            "order_date": to_utc_z(self.order_date),
            "expected_delivery_date": to_utc_z(self.expected_delivery_date),
            "ordered_at": to_utc_z(self.ordered_at),
            "received_at": to_utc_z(self.received_at),
            "stock_added": self.stock_added,
        }
        data.update(self._billing_dict())
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class PurchaseItem(LineItemMixin, db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_cost = db.Column(db.Numeric(14, 2), nullable=False)

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")

    @property
    def unit_amount(self) -> Decimal:
        return self.unit_cost

    def to_dict(self) -> dict:
        data = self._line_dict()
        data["unit_cost"] = decimal_str(self.unit_cost)
        return data


class PurchasePayment(PaymentEntryMixin, db.Model):
    __tablename__ = "purchase_payments"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)

    purchase = db.relationship("Purchase", back_populates="payments")


# =============================================================================
# NUMBERING
# =============================================================================

class DocumentSequence(db.Model):
    """
    Atomic per-type (and per-year) document sequences.

    WHY: Prevent duplicate numbers when documents are created concurrently
    (invoices, purchases, quotations, client and supplier codes).
    period is "" for sequences that never reset.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    period = db.Column(db.String(8), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
