from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z
from .documents import LineItemMixin


class Quotation(db.Model):
    """
    Price offer to a client.

    LIFECYCLE:
    draft -> sent -> approved -> converted
                  -> rejected
    draft/sent -> expired (valid_until passed)

    Conversion is one-way: once converted_invoice_id is set the quotation is
    frozen. Quotations carry no tax-bucket totals and never move stock.
    """
    __tablename__ = "quotations"
    __table_args__ = (
        db.UniqueConstraint("quotation_number", name="uq_quotations_number"),
        db.Index("ix_quotations_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quotation_number = db.Column(db.String(32), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    quotation_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_discount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_tax = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    grand_total = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    currency = db.Column(db.String(8), nullable=False, default="FRW")
    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    terms = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)

    # Set once by conversion; plain id to avoid a circular FK with invoices
    converted_invoice_id = db.Column(db.Integer, nullable=True, index=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("quotations", lazy=True))
    items = db.relationship(
        "QuotationItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationItem.position",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def document_number(self) -> str:
        return self.quotation_number

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "quotation_number": self.quotation_number,
            "client_id": self.client_id,
            "status": self.status,
            "quotation_date": to_utc_z(self.quotation_date),
            "valid_until": to_utc_z(self.valid_until),
            "subtotal": decimal_str(self.subtotal),
            "total_discount": decimal_str(self.total_discount),
            "total_tax": decimal_str(self.total_tax),
            "grand_total": decimal_str(self.grand_total),
            "currency": self.currency,
            "payment_terms": self.payment_terms,
            "terms": self.terms,
            "notes": self.notes,
            "sent_at": to_utc_z(self.sent_at),
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejected_by": self.rejected_by,
            "converted_invoice_id": self.converted_invoice_id,
            "converted_at": to_utc_z(self.converted_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class QuotationItem(LineItemMixin, db.Model):
    __tablename__ = "quotation_items"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)

    quotation = db.relationship("Quotation", back_populates="items")
    product = db.relationship("Product")

    @property
    def unit_amount(self) -> Decimal:
        return self.unit_price

    def to_dict(self) -> dict:
        data = self._line_dict()
        data["unit_price"] = decimal_str(self.unit_price)
        return data
