# Overview: Service-layer allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


RETURN_PREFIX = "RTN"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def allocate_next_number(*, store_id: int, document_type: str) -> int:
    """
    Atomically allocate the next number for a store/type inside the
    caller's transaction.

    The first allocation inserts the sequence row under a savepoint; if a
    concurrent terminal inserted it first, fall back to the UPDATE path.
    """
    if not store_id:
        raise DocumentSequenceError("store_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_return_number(*, store_id: int, year: int, pad: int = 4) -> str:
    """
    Allocate the next return number, e.g. "RTN-2024-0007".

    Sequences restart every year and are per store.
    """
    number = allocate_next_number(store_id=store_id, document_type=f"RETURN-{year}")
    return f"{RETURN_PREFIX}-{year}-{number:0{pad}d}"
