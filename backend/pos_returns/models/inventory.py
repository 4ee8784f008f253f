from __future__ import annotations

from ..extensions import db
from pos_returns.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, used as the barcode/SKU index for return lookups.

    SKUs are unique within a store. Barcodes are optional and are not
    constrained here; the locator reports ambiguity instead of guessing.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_barcode", "store_id", "barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryAdjustment(db.Model):
    """
    Stock movement written by the inventory adjustment sink.

    The return engine never touches stock counts; it only hands restock
    instructions to the sink, which appends one of these per instruction.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Positive restores stock
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    return_record_id = db.Column(db.Integer, db.ForeignKey("return_records.id"), nullable=True, index=True)
    return_record_line_id = db.Column(db.Integer, db.ForeignKey("return_record_lines.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "return_record_id": self.return_record_id,
            "return_record_line_id": self.return_record_line_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
