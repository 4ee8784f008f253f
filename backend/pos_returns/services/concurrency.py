# Overview: Order row locking and retry for return commits racing across terminals.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Order


# Lock timeouts/deadlocks, and a lost race on Order.version_id
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_order(order_id: int) -> Order | None:
    """
    Load an order holding its row lock until the transaction ends.

    SQLite has no SELECT ... FOR UPDATE; there the version_id check on the
    order's status write is what catches a concurrent return.
    """
    return db.session.query(Order).filter_by(id=order_id).with_for_update().first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Run a commit function, retrying on lock conflicts.

    Each retry starts from a rolled-back session, so func must re-read
    whatever it validates (order status, return history).
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Return commit conflict (%s), retry %d of %d",
                type(exc).__name__, attempt, attempts - 1,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
