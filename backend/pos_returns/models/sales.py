from __future__ import annotations

from ..extensions import db
from pos_returns.time_utils import to_utc_z


ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_PARTIALLY_REFUNDED = "partially_refunded"
ORDER_STATUS_REFUNDED = "refunded"
ORDER_STATUS_CANCELLED = "cancelled"

# Only these statuses accept a return
RETURNABLE_ORDER_STATUSES = (ORDER_STATUS_COMPLETED, ORDER_STATUS_PARTIALLY_REFUNDED)

PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_REFUNDED = "refunded"


class Order(db.Model):
    """
    A completed POS sale (the order read model the return engine works from).

    WHY: The return engine only reads orders, appends refund payments and
    moves status along completed -> partially_refunded -> refunded.

    CONCURRENCY: version_id is an optimistic lock. Two terminals returning
    against the same order cannot both write a status change from the same
    version; the loser gets StaleDataError and re-validates.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "order_number", name="uq_orders_store_number"),
        db.Index("ix_orders_invoice_number", "invoice_number"),
        db.Index("ix_orders_store_status_ordered", "store_id", "status", "ordered_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable receipt number (e.g., "POS-2024-0007")
    order_number = db.Column(db.String(64), nullable=False)
    invoice_number = db.Column(db.String(64), nullable=True)
    customer_po_number = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(200), nullable=False, default="Walk-in Customer")

    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_COMPLETED, index=True)

    ordered_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderLineItem", back_populates="order", order_by="OrderLineItem.id", lazy=True)
    payments = db.relationship("Payment", back_populates="order", order_by="Payment.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    def get_item(self, item_id: int) -> "OrderLineItem | None":
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "order_number": self.order_number,
            "invoice_number": self.invoice_number,
            "customer_po_number": self.customer_po_number,
            "customer_name": self.customer_name,
            "status": self.status,
            "ordered_at": to_utc_z(self.ordered_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "total_cents": self.total_cents,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class OrderLineItem(db.Model):
    """
    One purchased line. Immutable once the order is completed.

    NOTE: There is deliberately no quantity_returned column. Returned
    quantity is derived from ReturnRecordLine rows (see return_ledger).
    """
    __tablename__ = "order_line_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Null for non-catalog lines (open-price items, services)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    name = db.Column(db.String(300), nullable=False)
    sku = db.Column(db.String(100), nullable=True)
    barcode = db.Column(db.String(100), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # After line-level discounts/rounding; refunds are derived from this
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Settlement record on an order.

    METHODS: cash, card, mobile_wallet, store_credit, original_method

    Refunds are new rows with a negative amount and status "refunded".
    Historical payments are never mutated.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_COMPLETED, index=True)

    # Set for refund payments
    return_record_id = db.Column(db.Integer, db.ForeignKey("return_records.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "return_record_id": self.return_record_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
