# Overview: Flask API routes for POS return lookup and processing.

# backend/pos_returns/routes/returns.py
"""
Return Processing API Routes

DESIGN:
- Lookup a sale by scanned/typed token, or by free-text search
- Show per-line returnable quantities
- Return history over a date range, with totals per reason category
- Quote a selection (refund amount, whether a supervisor is needed)
- Process the return; supervisor credentials may ride along and are run
  through the Authorization Gate inline

STATUS CODES:
- 400: rejected request (body carries a code and the offending line)
- 403: supervisor approval denied
- 404: order not found in the caller's store
- 409: quantity exceeds what is still returnable / ambiguous lookup
- 428: approval required; the selection is echoed back for the retry
"""

from datetime import date
from functools import partial

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import (
    auth_service,
    document_locator,
    order_service,
    return_ledger,
    return_service,
    settings_service,
)
from ..services.authorization_gate import AuthorizationGate, GATE_PENDING
from ..services.ledger_service import (
    EVENT_APPROVAL_DENIED,
    EVENT_APPROVAL_GRANTED,
    append_audit_event,
)
from ..services.return_errors import (
    ApprovalDenied,
    ApprovalRequired,
    OrderNotFound,
    QuantityExceedsReturnable,
    ReturnError,
)
from ..decorators import require_auth


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


def _error_response(exc: ReturnError):
    if isinstance(exc, OrderNotFound):
        status = 404
    elif isinstance(exc, QuantityExceedsReturnable):
        status = 409
    elif isinstance(exc, ApprovalDenied):
        status = 403
    else:
        status = 400
    body = exc.to_dict()
    if getattr(exc, "request", None) is not None:
        body["request"] = exc.request.to_dict()
    return jsonify(body), status


def _current_policy():
    return settings_service.resolve_return_policy(g.store_id, current_app.config)


# =============================================================================
# LOOKUP / SEARCH
# =============================================================================

@returns_bp.get("/lookup/<token>")
@require_auth
def lookup_route(token: str):
    """
    Resolve a scanned or typed token to an order.

    Returns:
        200: single order (with per-line returnable quantities)
        404: nothing matched (terminal may fall back to search)
        409: several orders contain the scanned product, or the receipt's
             order no longer accepts returns
    """
    try:
        result = document_locator.locate(token, g.store_id)
        body = result.to_dict()

        if result.status == document_locator.STATUS_FOUND:
            body["returnable"] = return_ledger.returnable_summary(result.order)
            return jsonify(body), 200
        if result.status == document_locator.STATUS_NOT_FOUND:
            return jsonify({**body, "error": f"No returnable order found for {token}"}), 404
        if result.status == document_locator.STATUS_AMBIGUOUS:
            return jsonify({**body, "ambiguous": True, "error": "Several orders match; choose one"}), 409
        return jsonify({**body, "error": f"Order {result.order.order_number} is {result.order.status}"}), 409

    except Exception:
        current_app.logger.exception("Failed to look up return document")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/search")
@require_auth
def search_route():
    """Fuzzy search over returnable orders: ?q=<text>"""
    try:
        query = request.args.get("q", "")
        matches = order_service.search_returnable_orders(g.store_id, query)
        return jsonify({"results": [m.to_dict() for m in matches]}), 200
    except Exception:
        current_app.logger.exception("Failed to search orders")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/orders/<int:order_id>/returnable")
@require_auth
def returnable_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.store_id)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({
            "order": order.to_dict(),
            "lines": return_ledger.returnable_summary(order),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load returnable quantities")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/orders/<int:order_id>")
@require_auth
def order_returns_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.store_id)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        records = order_service.get_order_returns(order.id)
        return jsonify({"returns": [r.to_dict() for r in records]}), 200
    except Exception:
        current_app.logger.exception("Failed to list order returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/history")
@require_auth
def history_route():
    """
    Returns processed in the caller's store: ?start=YYYY-MM-DD&end=YYYY-MM-DD

    Both days are inclusive and optional.
    """
    start = request.args.get("start")
    end = request.args.get("end")
    try:
        start_day = date.fromisoformat(start) if start else None
    except ValueError:
        return jsonify({"error": "Invalid start format"}), 400
    try:
        end_day = date.fromisoformat(end) if end else None
    except ValueError:
        return jsonify({"error": "Invalid end format"}), 400
    if start_day and end_day and start_day > end_day:
        return jsonify({"error": "start must not be after end"}), 400

    try:
        records = order_service.list_returns(g.store_id, start_day, end_day)
        return jsonify({
            "returns": [r.to_dict(include_lines=False) for r in records],
            "summary": order_service.summarize_returns(records),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list return history")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUOTE / PROCESS
# =============================================================================

def _build_request(data: dict):
    user = g.current_user
    req = return_service.build_request(
        data,
        processed_by=user.display_name,
        processed_by_user_id=user.id,
    )
    if order_service.get_order(req.order_id, g.store_id) is None:
        raise OrderNotFound(req.order_id)
    return req


@returns_bp.post("/quote")
@require_auth
def quote_route():
    """Validate a selection and price it. Writes nothing."""
    try:
        data = request.get_json(silent=True) or {}
        req = _build_request(data)
        quote = return_service.quote_return(req, policy=_current_policy())
        return jsonify({"quote": quote.to_dict()}), 200

    except ReturnError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to quote return")
        return jsonify({"error": "Internal server error"}), 500


def _approve_inline(req, policy, supervisor: dict):
    """Run the Authorization Gate with credentials sent by the terminal."""
    # The approval is for the quoted amount. process_return prices the same
    # selection from line totals alone, so returns landing in between do not
    # move it.
    quote = return_service.quote_return(req, policy=policy)
    gate = AuthorizationGate(policy, req, quote.refund_cents)
    if gate.begin() != GATE_PENDING:
        return None

    username = supervisor.get("username") or ""
    authenticate = partial(auth_service.verify_supervisor_credential, g.store_id)
    try:
        approval = gate.approve(username, supervisor.get("credential") or "", authenticate)
    except ApprovalDenied:
        current_app.logger.warning(
            "Supervisor approval denied for order %s (supervisor=%s, cashier=%s)",
            req.order_id, username, g.current_user.username,
        )
        append_audit_event(
            store_id=g.store_id,
            event_type=EVENT_APPROVAL_DENIED,
            entity_type="order",
            entity_id=req.order_id,
            actor_user_id=g.current_user.id,
            note=f"Supervisor {username} denied",
            payload={"amount_cents": quote.refund_cents},
        )
        db.session.commit()
        raise

    append_audit_event(
        store_id=g.store_id,
        event_type=EVENT_APPROVAL_GRANTED,
        entity_type="order",
        entity_id=req.order_id,
        actor_user_id=approval.supervisor_user_id,
        note=approval.processed_by_label,
        payload={"amount_cents": approval.amount_cents},
    )
    return approval


@returns_bp.post("/")
@require_auth
def process_return_route():
    """
    Process a return.

    Request body:
    {
        "order_id": 1,
        "items": [{"item_id": 10, "quantity": 2, "condition": "resellable"}],
        "reason_category": "changed_mind",
        "reason_text": "Wrong colour",                    (optional)
        "refund_method": "cash",
        "supervisor": {"username": "sup", "credential": "1234"}  (optional)
    }

    Returns:
        201: {"return": {...}}
        428: approval required (body echoes the request)
    """
    req = None
    try:
        data = request.get_json(silent=True) or {}
        req = _build_request(data)
        policy = _current_policy()

        authorization = None
        supervisor = data.get("supervisor")
        if isinstance(supervisor, dict):
            authorization = _approve_inline(req, policy, supervisor)

        record = return_service.process_return(req, policy=policy, authorization=authorization)
        return jsonify({"return": record.to_dict()}), 201

    except ApprovalRequired as e:
        body = e.to_dict()
        body["request"] = req.to_dict() if req is not None else None
        return jsonify(body), 428
    except ReturnError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process return")
        return jsonify({"error": "Internal server error"}), 500
