# Overview: Return Processor; validates, prices, authorizes and commits POS returns.

"""
Return Processing Service

WHY: A return touches money, stock and order state at once, from several
terminals at once. This module is the only writer of ReturnRecords.

ALGORITHM (process_return):
1. Reject an empty selection.
2. Validate every selection against the returnable-quantity ledger.
   One bad line rejects the whole batch.
3. Price the selection (refund_calculator).
4. If the policy needs a supervisor and no approval is attached, raise
   ApprovalRequired. The caller obtains one and re-invokes.
5. Commit, as one transaction:
   - lock the order and RE-READ the return history; the quantity check is
     the last validation before any write
   - allocate the return number, write ReturnRecord + lines
   - append a negative "refunded" Payment
   - collect a restock instruction for each resellable line
   - move the order to refunded / partially_refunded
   - append the audit event
   The write phase is retried on lock conflicts from a clean session. Restock
   instructions go to the sink once, after the write phase has succeeded,
   and the transaction commits after the sink returns.

Nothing is written before step 5, and step 5 either lands completely or
rolls back and re-raises. Collaborator failures are never swallowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..extensions import db
from ..models import Order, Payment, ReturnRecord, ReturnRecordLine
from ..models.sales import (
    ORDER_STATUS_PARTIALLY_REFUNDED,
    ORDER_STATUS_REFUNDED,
    PAYMENT_STATUS_REFUNDED,
    RETURNABLE_ORDER_STATUSES,
)
from pos_returns.time_utils import utcnow
from . import return_ledger
from .authorization_gate import SupervisorApproval, requires_approval
from .concurrency import lock_order, run_with_retry
from .document_service import next_return_number
from .inventory_service import RestockInstruction, apply_restock
from .ledger_service import EVENT_RETURN_PROCESSED, append_audit_event
from .refund_calculator import LineRefund, calculate_line_refunds
from .return_errors import (
    ApprovalDenied,
    ApprovalRequired,
    EmptySelection,
    InvalidSelection,
    OrderNotFound,
    OrderNotReturnable,
    RefundMethodUnsupported,
)
from .settings_service import ReturnPolicy


# =============================================================================
# CONSTANTS
# =============================================================================

CONDITION_RESELLABLE = "resellable"
CONDITION_DAMAGED = "damaged"
CONDITION_DEFECTIVE = "defective"
CONDITIONS = (CONDITION_RESELLABLE, CONDITION_DAMAGED, CONDITION_DEFECTIVE)

# Damaged and defective stock never re-enters available inventory
RESTOCKABLE_CONDITIONS = frozenset({CONDITION_RESELLABLE})

REASON_CATEGORIES = (
    "defective",
    "wrong_item",
    "changed_mind",
    "price_adjustment",
    "duplicate",
    "damaged",
    "overcharged",
    "other",
)


# =============================================================================
# REQUEST / QUOTE VALUES
# =============================================================================

@dataclass(frozen=True)
class ReturnSelection:
    item_id: int
    quantity: int
    condition: str = CONDITION_RESELLABLE

    def to_dict(self) -> dict:
        return {"item_id": self.item_id, "quantity": self.quantity, "condition": self.condition}


@dataclass(frozen=True)
class ReturnRequest:
    """
    Everything the processor needs for one return, passed explicitly.

    processed_by is the cashier identity shown on the record when no
    supervisor approval is consumed.
    """
    order_id: int
    selections: tuple[ReturnSelection, ...]
    reason_category: str
    refund_method: str
    processed_by: str
    reason_text: str | None = None
    processed_by_user_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "selections": [s.to_dict() for s in self.selections],
            "reason_category": self.reason_category,
            "reason_text": self.reason_text,
            "refund_method": self.refund_method,
        }


@dataclass(frozen=True)
class ReturnQuote:
    order_id: int
    refund_cents: int
    lines: tuple[LineRefund, ...]
    approval_required: bool

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "refund_amount_cents": self.refund_cents,
            "approval_required": self.approval_required,
            "lines": [
                {
                    "item_id": line.item_id,
                    "quantity": line.quantity,
                    "unit_refund_cents": line.unit_refund_cents,
                    "refund_cents": line.refund_cents,
                }
                for line in self.lines
            ],
        }


def build_request(payload: dict, *, processed_by: str, processed_by_user_id: int | None = None) -> ReturnRequest:
    """
    Build a ReturnRequest from a JSON-style payload.

    {
        "order_id": 1,
        "items": [{"item_id": 10, "quantity": 2, "condition": "resellable"}],
        "reason_category": "changed_mind",
        "reason_text": "...",          (optional)
        "refund_method": "cash"
    }
    """
    items = payload.get("items") or []
    if not isinstance(items, list):
        raise InvalidSelection("items must be a list")

    selections = []
    for raw in items:
        if not isinstance(raw, dict):
            raise InvalidSelection("each item must be an object")
        selections.append(ReturnSelection(
            item_id=raw.get("item_id"),
            quantity=raw.get("quantity"),
            condition=raw.get("condition") or CONDITION_RESELLABLE,
        ))

    return ReturnRequest(
        order_id=payload.get("order_id"),
        selections=tuple(selections),
        reason_category=payload.get("reason_category") or "",
        reason_text=payload.get("reason_text"),
        refund_method=payload.get("refund_method") or "",
        processed_by=processed_by,
        processed_by_user_id=processed_by_user_id,
    )


# =============================================================================
# VALIDATION
# =============================================================================

def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_request_shape(request: ReturnRequest, policy: ReturnPolicy) -> None:
    if not request.selections:
        raise EmptySelection()

    if request.reason_category not in REASON_CATEGORIES:
        raise InvalidSelection(f"Unknown reason category: {request.reason_category!r}")
    if request.reason_category == "other" and not (request.reason_text or "").strip():
        raise InvalidSelection("A reason is required when the category is 'other'")

    if request.refund_method not in policy.allowed_refund_methods:
        raise RefundMethodUnsupported(request.refund_method)

    seen = set()
    for selection in request.selections:
        if not _is_int(selection.item_id):
            raise InvalidSelection("item_id must be an integer")
        if selection.item_id in seen:
            raise InvalidSelection("Line item selected more than once", item_id=selection.item_id)
        seen.add(selection.item_id)
        if not _is_int(selection.quantity) or selection.quantity <= 0:
            raise InvalidSelection("Return quantity must be a positive integer", item_id=selection.item_id)
        if selection.condition not in CONDITIONS:
            raise InvalidSelection(f"Unknown condition: {selection.condition!r}", item_id=selection.item_id)


def _load_order(order_id, *, lock: bool = False) -> Order:
    if not _is_int(order_id):
        raise OrderNotFound(order_id)
    if lock:
        order = lock_order(order_id)
    else:
        order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def _ensure_returnable(order: Order) -> None:
    if order.status not in RETURNABLE_ORDER_STATUSES:
        raise OrderNotReturnable(order.order_number, order.status)


def _check_authorization(
    policy: ReturnPolicy,
    amount_cents: int,
    authorization: SupervisorApproval | None,
    request: ReturnRequest,
) -> SupervisorApproval | None:
    """The approval to consume, or raise if one is missing/insufficient."""
    if authorization is not None:
        if not authorization.covers(amount_cents):
            raise ApprovalDenied(
                f"Approval covers {authorization.amount_cents} cents, refund is {amount_cents} cents",
                request=request,
            )
        return authorization
    if requires_approval(policy, amount_cents):
        raise ApprovalRequired(amount_cents, request=request)
    return None


def quote_return(request: ReturnRequest, *, policy: ReturnPolicy) -> ReturnQuote:
    """
    Validate and price a request without writing anything.

    Raises ReturnError subclasses for invalid requests.
    """
    _validate_request_shape(request, policy)
    order = _load_order(request.order_id)
    _ensure_returnable(order)

    returned = return_ledger.returned_quantities(order.id)
    lines = calculate_line_refunds(order, request.selections, returned)
    refund_cents = sum(line.refund_cents for line in lines)

    return ReturnQuote(
        order_id=order.id,
        refund_cents=refund_cents,
        lines=tuple(lines),
        approval_required=requires_approval(policy, refund_cents),
    )


# =============================================================================
# PROCESSING
# =============================================================================

def process_return(
    request: ReturnRequest,
    *,
    policy: ReturnPolicy,
    authorization: SupervisorApproval | None = None,
    restock: Callable[[RestockInstruction], object] | None = None,
) -> ReturnRecord:
    """
    Process a return end to end and return the committed ReturnRecord.

    Args:
        request: the explicit return request
        policy: effective return policy for this transaction
        authorization: supervisor approval, if one was obtained
        restock: inventory adjustment sink (defaults to apply_restock),
            called exactly once per restocked line inside the transaction

    Raises:
        ReturnError subclasses: request rejected, nothing written
        ApprovalRequired: re-invoke with a SupervisorApproval
        anything raised by collaborators during commit (after rollback)
    """
    quote = quote_return(request, policy=policy)
    _check_authorization(policy, quote.refund_cents, authorization, request)

    restock = restock or apply_restock

    def _write() -> tuple[ReturnRecord, list[RestockInstruction]]:
        order = _load_order(request.order_id, lock=True)
        _ensure_returnable(order)

        # Re-read history at commit time; another terminal may have
        # returned units since the quote.
        returned = return_ledger.returned_quantities(order.id)
        lines = calculate_line_refunds(order, request.selections, returned)
        refund_cents = sum(line.refund_cents for line in lines)
        approval = _check_authorization(policy, refund_cents, authorization, request)

        now = utcnow()
        instructions = []
        record = ReturnRecord(
            store_id=order.store_id,
            return_number=next_return_number(store_id=order.store_id, year=now.year),
            order_id=order.id,
            reason_category=request.reason_category,
            reason_text=request.reason_text,
            refund_method=request.refund_method,
            refund_amount_cents=refund_cents,
            processed_by=approval.processed_by_label if approval else request.processed_by,
            processed_by_user_id=request.processed_by_user_id,
            created_at=now,
        )
        if approval is not None:
            record.supervisor_user_id = approval.supervisor_user_id
            record.supervisor_name = approval.supervisor_name
            record.supervisor_employee_number = approval.employee_number
            record.approved_amount_cents = approval.amount_cents
            record.approved_at = approval.approved_at
        db.session.add(record)
        db.session.flush()

        for selection, line in zip(request.selections, lines):
            item = order.get_item(selection.item_id)
            restockable = selection.condition in RESTOCKABLE_CONDITIONS and item.product_id is not None
            record_line = ReturnRecordLine(
                return_record_id=record.id,
                order_line_item_id=item.id,
                product_id=item.product_id,
                quantity=line.quantity,
                condition=selection.condition,
                unit_refund_cents=line.unit_refund_cents,
                line_refund_cents=line.refund_cents,
                restocked=restockable,
            )
            db.session.add(record_line)
            db.session.flush()

            if restockable:
                instructions.append(RestockInstruction(
                    product_id=item.product_id,
                    quantity=line.quantity,
                    store_id=order.store_id,
                    return_record_id=record.id,
                    return_record_line_id=record_line.id,
                    note=f"Return {record.return_number} on order {order.order_number}",
                ))

        db.session.add(Payment(
            order_id=order.id,
            method=request.refund_method,
            amount_cents=-refund_cents,
            status=PAYMENT_STATUS_REFUNDED,
            return_record_id=record.id,
            created_by_user_id=request.processed_by_user_id,
            created_at=now,
        ))

        for line in lines:
            returned[line.item_id] = returned.get(line.item_id, 0) + line.quantity
        if return_ledger.is_fully_returned(order, returned):
            order.status = ORDER_STATUS_REFUNDED
        else:
            order.status = ORDER_STATUS_PARTIALLY_REFUNDED
        order.updated_at = now

        append_audit_event(
            store_id=order.store_id,
            event_type=EVENT_RETURN_PROCESSED,
            entity_type="return_record",
            entity_id=record.id,
            actor_user_id=request.processed_by_user_id,
            occurred_at=now,
            note=f"{record.return_number} on {order.order_number}: {refund_cents} cents via {request.refund_method}",
            payload={
                "order_id": order.id,
                "order_status": order.status,
                "lines": [s.to_dict() for s in request.selections],
                "supervisor_user_id": approval.supervisor_user_id if approval else None,
            },
        )

        db.session.flush()
        return record, instructions

    try:
        record, instructions = run_with_retry(_write)
        for instruction in instructions:
            restock(instruction)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return record


# =============================================================================
# QUERIES
# =============================================================================

def get_return_by_number(store_id: int, return_number: str) -> ReturnRecord | None:
    return (
        db.session.query(ReturnRecord)
        .filter_by(store_id=store_id, return_number=return_number.strip().upper())
        .first()
    )
