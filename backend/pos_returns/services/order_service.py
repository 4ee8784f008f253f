# Overview: Read access to orders for return lookup and selection.

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Order, ReturnRecord
from ..models.sales import RETURNABLE_ORDER_STATUSES
from . import fuzzy_matcher


def get_order(order_id: int, store_id: int | None = None) -> Order | None:
    if not isinstance(order_id, int) or isinstance(order_id, bool):
        return None
    order = db.session.get(Order, order_id)
    if order is None:
        return None
    if store_id is not None and order.store_id != store_id:
        return None
    return order


def list_returnable_orders(store_id: int) -> list[Order]:
    """Orders that still accept returns, oldest first (stable search order)."""
    return (
        db.session.query(Order)
        .filter(
            Order.store_id == store_id,
            Order.status.in_(RETURNABLE_ORDER_STATUSES),
        )
        .order_by(Order.id.asc())
        .all()
    )


def search_returnable_orders(store_id: int, query: str) -> list[fuzzy_matcher.SearchMatch]:
    return fuzzy_matcher.search_orders(query, list_returnable_orders(store_id))


def get_order_returns(order_id: int) -> list[ReturnRecord]:
    """All return records for an order, oldest first."""
    return (
        db.session.query(ReturnRecord)
        .filter_by(order_id=order_id)
        .order_by(ReturnRecord.id.asc())
        .all()
    )


def list_returns(store_id: int, start: date | None = None, end: date | None = None) -> list[ReturnRecord]:
    """
    Return records processed in a store, oldest first.

    start and end are calendar days (UTC) and both are inclusive; either may
    be omitted to leave that side of the range open.
    """
    query = db.session.query(ReturnRecord).filter(ReturnRecord.store_id == store_id)
    if start is not None:
        query = query.filter(ReturnRecord.created_at >= datetime.combine(start, time.min))
    if end is not None:
        query = query.filter(ReturnRecord.created_at < datetime.combine(end + timedelta(days=1), time.min))
    return query.order_by(ReturnRecord.created_at.asc(), ReturnRecord.id.asc()).all()


def summarize_returns(records: list[ReturnRecord]) -> dict:
    """Totals for a list of returns, with a count per reason category."""
    total_cents = sum(r.refund_amount_cents for r in records)
    by_reason: dict[str, int] = {}
    for record in records:
        by_reason[record.reason_category] = by_reason.get(record.reason_category, 0) + 1

    average_cents = 0
    if records:
        average_cents = int((Decimal(total_cents) / len(records)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return {
        "total_returns": len(records),
        "total_refunded_cents": total_cents,
        "average_refund_cents": average_cents,
        "by_reason": by_reason,
    }
