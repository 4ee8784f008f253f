# Overview: Derives returnable quantities from the authoritative return history.

"""
Returnable-Quantity Ledger

INVARIANT: for every order line,
    sum(ReturnRecordLine.quantity for that line) <= purchased quantity

Returned quantity is never stored on the order line. It is summed from
ReturnRecordLine rows on every call; nothing is cached, because another
terminal may have appended a return since the caller last looked.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderLineItem, ReturnRecord, ReturnRecordLine
from .return_errors import UnknownLineItem


def returned_quantities(order_id: int) -> dict[int, int]:
    """Map of order_line_item_id -> total quantity returned so far."""
    rows = (
        db.session.query(
            ReturnRecordLine.order_line_item_id,
            func.coalesce(func.sum(ReturnRecordLine.quantity), 0),
        )
        .join(ReturnRecord, ReturnRecord.id == ReturnRecordLine.return_record_id)
        .filter(ReturnRecord.order_id == order_id)
        .group_by(ReturnRecordLine.order_line_item_id)
        .all()
    )
    return {int(item_id): int(qty) for item_id, qty in rows}


def remaining(purchased: int, returned: int) -> int:
    """Units still returnable. Floored at zero."""
    return max(0, purchased - returned)


def returnable_quantity(order: Order, item_id: int) -> int:
    """
    How many units of a line can still be returned.

    Raises UnknownLineItem if the line is not on the order.
    """
    item = order.get_item(item_id)
    if item is None:
        raise UnknownLineItem(item_id)
    returned = returned_quantities(order.id).get(item.id, 0)
    return remaining(item.quantity, returned)


def line_summary(item: OrderLineItem, returned: int) -> dict:
    available = remaining(item.quantity, returned)
    return {
        "item_id": item.id,
        "product_id": item.product_id,
        "name": item.name,
        "sku": item.sku,
        "barcode": item.barcode,
        "purchased_quantity": item.quantity,
        "returned_quantity": returned,
        "returnable_quantity": available,
        "line_total_cents": item.line_total_cents,
        # Fully returned lines are not selectable
        "selectable": available > 0,
    }


def returnable_summary(order: Order) -> list[dict]:
    """Per-line purchased/returned/returnable breakdown for the selection UI."""
    returned = returned_quantities(order.id)
    return [line_summary(item, returned.get(item.id, 0)) for item in order.items]


def is_fully_returned(order: Order, returned: dict[int, int]) -> bool:
    """True when every line has no returnable units left."""
    return all(remaining(item.quantity, returned.get(item.id, 0)) == 0 for item in order.items)
