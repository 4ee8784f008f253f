# Overview: Error and control-signal types raised by the return engine.

"""
Return Engine Errors

Two families, deliberately unrelated:

- ReturnError: a real failure. The request was rejected before anything was
  written. Carries enough detail (to_dict) to re-render the selection UI.
- ReturnControlSignal: not a failure. ApprovalRequired tells the caller to
  obtain a supervisor approval and re-invoke. Catching ReturnError never
  swallows it.
"""

from __future__ import annotations


class ReturnError(Exception):
    """Base class for rejected return requests."""

    code = "RETURN_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class EmptySelection(ReturnError):
    code = "EMPTY_SELECTION"

    def __init__(self):
        super().__init__("Select at least one item to return")


class InvalidSelection(ReturnError):
    """Malformed selection: bad quantity, unknown condition, duplicate line, bad reason."""

    code = "INVALID_SELECTION"

    def __init__(self, message: str, item_id: int | None = None):
        super().__init__(message)
        self.item_id = item_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["item_id"] = self.item_id
        return data


class UnknownLineItem(ReturnError):
    code = "UNKNOWN_LINE_ITEM"

    def __init__(self, item_id: int):
        super().__init__(f"Line item {item_id} is not part of this order")
        self.item_id = item_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["item_id"] = self.item_id
        return data


class QuantityExceedsReturnable(ReturnError):
    code = "QUANTITY_EXCEEDS_RETURNABLE"

    def __init__(self, item_id: int, requested: int, available: int):
        super().__init__(
            f"Cannot return {requested} units of line item {item_id}. "
            f"Only {available} remaining."
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "item_id": self.item_id,
            "requested": self.requested,
            "available": self.available,
        })
        return data


class ApprovalDenied(ReturnError):
    """
    Supervisor credential rejected, or the attached approval does not
    cover this return. `request` holds the pending selection so the
    operator can retry without re-entering items.
    """

    code = "APPROVAL_DENIED"

    def __init__(self, message: str = "Supervisor approval denied", request=None):
        super().__init__(message)
        self.request = request


class RefundMethodUnsupported(ReturnError):
    code = "REFUND_METHOD_UNSUPPORTED"

    def __init__(self, method: str):
        super().__init__(f"Refund method '{method}' is not accepted")
        self.method = method

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["refund_method"] = self.method
        return data


class OrderNotFound(ReturnError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class OrderNotReturnable(ReturnError):
    code = "ORDER_NOT_RETURNABLE"

    def __init__(self, order_number: str, status: str):
        super().__init__(f"Cannot return items from order {order_number} with status {status}")
        self.order_number = order_number
        self.status = status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data


class ReturnControlSignal(Exception):
    """Base class for non-failure signals that require the caller to act."""


class ApprovalRequired(ReturnControlSignal):
    """The refund needs a supervisor approval covering amount_cents."""

    code = "APPROVAL_REQUIRED"

    def __init__(self, amount_cents: int, request=None):
        super().__init__(f"Supervisor approval required for refund of {amount_cents} cents")
        self.amount_cents = amount_cents
        self.request = request

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "approval_required": True,
            "amount_cents": self.amount_cents,
        }
