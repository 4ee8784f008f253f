# Overview: Computes refund amounts from the original sale's line totals.

"""
Refund Calculator

UNIT PRICE: derived as line_total / purchased quantity, never from the
stored unit price, so refunds follow whatever line-level discount or
rounding the original sale applied.

ROUNDING: amounts are integer cents. The unit refund is
round(line_total / purchased), half-up, and a return of qty units refunds
unit * qty. The price of a selection depends only on the line, never on
earlier returns, so a quote stays valid until commit. When the line total
does not divide evenly, the refunds of all returns against a line can
differ from the line total by the rounding remainder.

No tax is recomputed here; GCT adjustment belongs to the GL side.

Unknown lines and quantities above the returnable quantity are errors,
never clamped.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..models import Order, OrderLineItem
from .return_errors import InvalidSelection, QuantityExceedsReturnable, UnknownLineItem
from .return_ledger import remaining


@dataclass(frozen=True)
class LineRefund:
    item_id: int
    quantity: int
    unit_refund_cents: int
    refund_cents: int


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def unit_refund_cents(item: OrderLineItem) -> int:
    """Derived unit price in cents (for display and the return record)."""
    return _round_cents(Decimal(item.line_total_cents) / Decimal(item.quantity))


def line_refund_cents(item: OrderLineItem, quantity: int) -> int:
    return unit_refund_cents(item) * quantity


def calculate_line_refunds(
    order: Order,
    selections: Iterable,
    returned: dict[int, int] | None = None,
) -> list[LineRefund]:
    """
    Validate selections against the order and price each one.

    selections: objects with item_id and quantity.
    returned: order_line_item_id -> quantity already returned.
    """
    returned = returned or {}
    refunds = []
    for selection in selections:
        item = order.get_item(selection.item_id)
        if item is None:
            raise UnknownLineItem(selection.item_id)
        if selection.quantity <= 0:
            raise InvalidSelection("Return quantity must be positive", item_id=item.id)

        available = remaining(item.quantity, returned.get(item.id, 0))
        if selection.quantity > available:
            raise QuantityExceedsReturnable(item.id, selection.quantity, available)

        refunds.append(LineRefund(
            item_id=item.id,
            quantity=selection.quantity,
            unit_refund_cents=unit_refund_cents(item),
            refund_cents=line_refund_cents(item, selection.quantity),
        ))
    return refunds


def calculate_refund(order: Order, selections: Iterable, returned: dict[int, int] | None = None) -> int:
    """Total refund in cents for the selections."""
    return sum(r.refund_cents for r in calculate_line_refunds(order, selections, returned))
