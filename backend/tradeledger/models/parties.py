from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z


PAYMENT_TERMS = ("cash", "credit_7", "credit_15", "credit_30", "credit_45", "credit_60")


class Client(db.Model):
    """
    Customer that invoices and quotations are issued to.

    COUNTERPARTY BALANCES: outstanding_balance, total_purchases and
    last_purchase_date are running totals owned by balance_service and only
    move as a side effect of invoice transitions (confirm, pay, cancel).
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_clients_code"),
        db.Index("ix_clients_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)

    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    credit_limit = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    # Derived running totals
    outstanding_balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_purchases = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    last_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "address": self.address,
            "payment_terms": self.payment_terms,
            "credit_limit": decimal_str(self.credit_limit),
            "outstanding_balance": decimal_str(self.outstanding_balance),
            "total_purchases": decimal_str(self.total_purchases),
            "last_purchase_date": to_utc_z(self.last_purchase_date),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Supplier(db.Model):
    """
    Vendor that purchases are placed with and stock is received from.

    outstanding_balance / total_purchases are derived from purchase
    transitions and direct stock receipts; never set through updates.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_suppliers_code"),
        db.Index("ix_suppliers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)

    payment_terms = db.Column(db.String(16), nullable=False, default="cash")

    outstanding_balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_purchases = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    last_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "address": self.address,
            "payment_terms": self.payment_terms,
            "outstanding_balance": decimal_str(self.outstanding_balance),
            "total_purchases": decimal_str(self.total_purchases),
            "last_purchase_date": to_utc_z(self.last_purchase_date),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
