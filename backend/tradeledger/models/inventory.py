from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z


PRODUCT_UNITS = ("piece", "kg", "g", "liter", "ml", "box", "pack", "meter", "set", "dozen")


class Category(db.Model):
    """Product grouping; cannot be deleted while products reference it."""
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_categories_name"),
        db.Index("ix_categories_is_active", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self, products_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if products_count is not None:
            data["products_count"] = products_count
        return data


class Product(db.Model):
    """
    Product master data and the stock aggregate.

    current_stock and average_cost are owned by the stock ledger: they change
    only when a StockMovement is appended (stock_service.apply_movement_locked)
    or when the latest movement is administratively deleted. Generic updates
    never touch them.

    SKU: unique across the catalogue, stored upper-case.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_archived", "is_archived"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="piece")
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)

    # Preferred supplier; set when stock is received from a supplier
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    # Stock aggregate (ledger-owned)
    current_stock = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))
    average_cost = db.Column(db.Numeric(18, 6), nullable=False, default=Decimal("0"))
    low_stock_threshold = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("10"))

    last_supply_date = db.Column(db.DateTime(timezone=True), nullable=True)
    last_sale_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return Decimal(self.current_stock or 0) <= Decimal(self.low_stock_threshold or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "category_id": self.category_id,
            "supplier_id": self.supplier_id,
            "current_stock": decimal_str(self.current_stock),
            "average_cost": decimal_str(self.average_cost),
            "low_stock_threshold": decimal_str(self.low_stock_threshold),
            "is_low_stock": self.is_low_stock,
            "last_supply_date": to_utc_z(self.last_supply_date),
            "last_sale_date": to_utc_z(self.last_sale_date),
            "is_archived": self.is_archived,
            "archived_at": to_utc_z(self.archived_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Stock ledger entry.

    APPEND-ONLY: quantity, direction, snapshots and costs never change after
    insert. Only descriptive metadata (notes, batch/lot, expiry, reference
    number) may be edited.

    CHAIN: for one product, ordered by id, each movement's previous_stock
    equals the preceding movement's new_stock, and the signed quantities sum
    to Product.current_stock.

    TYPES:
    - in: purchase receipts, initial stock, returns of cancelled sales
    - out: sales, reversals of cancelled purchases
    - adjustment: damage/loss/theft/expired/correction/transfer, either direction
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_id_id", "product_id", "id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # in, out, adjustment
    direction = db.Column(db.String(8), nullable=False)  # in, out
    reason = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    previous_stock = db.Column(db.Numeric(14, 3), nullable=False)
    new_stock = db.Column(db.Numeric(14, 3), nullable=False)

    # Average cost before/after this movement (restored on admin delete)
    previous_average_cost = db.Column(db.Numeric(18, 6), nullable=False, default=Decimal("0"))
    new_average_cost = db.Column(db.Numeric(18, 6), nullable=False, default=Decimal("0"))

    unit_cost = db.Column(db.Numeric(18, 6), nullable=True)
    total_cost = db.Column(db.Numeric(14, 2), nullable=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    batch_number = db.Column(db.String(64), nullable=True)
    lot_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Causal reference: which document or action produced this movement
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_number = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.Integer, nullable=True)

    movement_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))
    supplier = db.relationship("Supplier")

    @property
    def signed_quantity(self) -> Decimal:
        qty = Decimal(self.quantity)
        return qty if self.direction == "in" else -qty

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} "
            f"{self.type}/{self.reason} {self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "direction": self.direction,
            "reason": self.reason,
            "quantity": decimal_str(self.quantity),
            "previous_stock": decimal_str(self.previous_stock),
            "new_stock": decimal_str(self.new_stock),
            "previous_average_cost": decimal_str(self.previous_average_cost),
            "new_average_cost": decimal_str(self.new_average_cost),
            "unit_cost": decimal_str(self.unit_cost),
            "total_cost": decimal_str(self.total_cost),
            "supplier_id": self.supplier_id,
            "batch_number": self.batch_number,
            "lot_number": self.lot_number,
            "expiry_date": to_utc_z(self.expiry_date),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "performed_by": self.performed_by,
            "movement_date": to_utc_z(self.movement_date),
            "created_at": to_utc_z(self.created_at),
        }
