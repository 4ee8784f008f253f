# Overview: Inventory adjustment sink for return restocks.

"""
Inventory Adjustment Sink

The return engine emits RestockInstructions; this sink turns each into an
InventoryAdjustment row in the caller's transaction. It never commits, so
the restock lands or rolls back together with the refund payment, the
order status change and the ReturnRecord.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryAdjustment, Product


REASON_RETURN_RESTOCK = "return-restock"


@dataclass(frozen=True)
class RestockInstruction:
    product_id: int
    quantity: int
    reason: str = REASON_RETURN_RESTOCK
    store_id: int | None = None
    return_record_id: int | None = None
    return_record_line_id: int | None = None
    note: str | None = None


def apply_restock(instruction: RestockInstruction) -> InventoryAdjustment:
    """Record a restock. Raises ValueError for invalid instructions."""
    if instruction.quantity <= 0:
        raise ValueError("restock quantity must be positive")

    product = db.session.get(Product, instruction.product_id)
    if product is None:
        raise ValueError(f"product {instruction.product_id} not found")
    if instruction.store_id is not None and product.store_id != instruction.store_id:
        raise ValueError("product does not belong to store")

    adjustment = InventoryAdjustment(
        store_id=product.store_id,
        product_id=product.id,
        quantity_delta=instruction.quantity,
        reason=instruction.reason,
        return_record_id=instruction.return_record_id,
        return_record_line_id=instruction.return_record_line_id,
        note=instruction.note,
    )
    db.session.add(adjustment)
    db.session.flush()
    return adjustment


def get_adjustments_for_return(return_record_id: int) -> list[InventoryAdjustment]:
    return (
        db.session.query(InventoryAdjustment)
        .filter_by(return_record_id=return_record_id)
        .order_by(InventoryAdjustment.id.asc())
        .all()
    )


def get_restocked_quantity(store_id: int, product_id: int) -> int:
    """Total units restocked from returns for a product."""
    q = db.session.query(
        func.coalesce(func.sum(InventoryAdjustment.quantity_delta), 0)
    ).filter(
        InventoryAdjustment.store_id == store_id,
        InventoryAdjustment.product_id == product_id,
        InventoryAdjustment.reason == REASON_RETURN_RESTOCK,
    )
    return int(q.scalar() or 0)
