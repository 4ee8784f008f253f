from __future__ import annotations

from ..extensions import db
from pos_returns.time_utils import to_utc_z


class ReturnRecord(db.Model):
    """
    The durable artifact of one return transaction.

    DESIGN PRINCIPLES:
    - Created exactly once per successful commit, never updated or deleted
    - Corrections are new returns (or voids at a higher layer)
    - ReturnRecordLines are the authoritative return history: the
      returnable quantity of every order line is derived from them

    processed_by is the resolved identity string: the cashier, or
    "Approved by #<employee number>" / "Approved by <name>" when a
    supervisor approval was consumed.
    """
    __tablename__ = "return_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "return_number", name="uq_return_records_store_number"),
        db.Index("ix_return_records_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable return number (e.g., "RTN-2024-0001")
    return_number = db.Column(db.String(64), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    reason_category = db.Column(db.String(32), nullable=False)
    reason_text = db.Column(db.Text, nullable=True)
    refund_method = db.Column(db.String(32), nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False)

    processed_by = db.Column(db.String(128), nullable=False)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Supervisor approval stamp (null when no approval was consumed)
    supervisor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    supervisor_name = db.Column(db.String(128), nullable=True)
    supervisor_employee_number = db.Column(db.String(32), nullable=True)
    approved_amount_cents = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("return_records", lazy=True, order_by="ReturnRecord.id"))
    lines = db.relationship("ReturnRecordLine", back_populates="return_record", order_by="ReturnRecordLine.id", lazy=True)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "reason_category": self.reason_category,
            "reason_text": self.reason_text,
            "refund_method": self.refund_method,
            "refund_amount_cents": self.refund_amount_cents,
            "processed_by": self.processed_by,
            "processed_by_user_id": self.processed_by_user_id,
            "supervisor_user_id": self.supervisor_user_id,
            "supervisor_name": self.supervisor_name,
            "supervisor_employee_number": self.supervisor_employee_number,
            "approved_amount_cents": self.approved_amount_cents,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class ReturnRecordLine(db.Model):
    """One returned (item, quantity, condition) triple on a ReturnRecord."""
    __tablename__ = "return_record_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_record_id = db.Column(db.Integer, db.ForeignKey("return_records.id"), nullable=False, index=True)
    order_line_item_id = db.Column(db.Integer, db.ForeignKey("order_line_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    condition = db.Column(db.String(16), nullable=False)  # resellable, damaged, defective

    unit_refund_cents = db.Column(db.Integer, nullable=False)
    line_refund_cents = db.Column(db.Integer, nullable=False)

    # True when a restock instruction was issued for this line
    restocked = db.Column(db.Boolean, nullable=False, default=False)

    return_record = db.relationship("ReturnRecord", back_populates="lines")
    order_line_item = db.relationship("OrderLineItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_record_id": self.return_record_id,
            "order_line_item_id": self.order_line_item_id,
            "product_id": self.product_id,
            "name": self.order_line_item.name if self.order_line_item else None,
            "quantity": self.quantity,
            "condition": self.condition,
            "unit_refund_cents": self.unit_refund_cents,
            "line_refund_cents": self.line_refund_cents,
            "restocked": self.restocked,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-store document sequences.

    WHY: Prevent race conditions when generating return numbers from
    several terminals at once.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_doc_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class AuditEvent(db.Model):
    """Append-only audit trail for return and approval events."""
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_store_occurred", "store_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., RETURN_PROCESSED
    entity_type = db.Column(db.String(64), nullable=False)  # e.g., return_record, order
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
