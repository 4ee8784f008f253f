# Overview: Supervisor approval gate for returns (policy check + approval lifecycle).

"""
Authorization Gate

STATES: idle -> pending_approval -> approved | denied | cancelled

- A return enters pending_approval when the policy always requires a
  supervisor, or the refund meets/exceeds the approval threshold.
- approved needs a credential validated by the identity collaborator and
  stamps a SupervisorApproval for the exact amount being authorized.
- denied/cancelled hand the pending ReturnRequest back untouched so the
  operator can retry without re-selecting items.

The gate never touches the order or creates a ReturnRecord; it only
yields or withholds a SupervisorApproval. One gate per in-flight request;
gates are not shared between terminals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from pos_returns.time_utils import utcnow, to_utc_z
from .return_errors import ApprovalDenied
from .settings_service import ReturnPolicy


GATE_IDLE = "idle"
GATE_PENDING = "pending_approval"
GATE_APPROVED = "approved"
GATE_DENIED = "denied"
GATE_CANCELLED = "cancelled"

ACTION_RETURN = "return"


class GateStateError(ValueError):
    """Raised on a transition the gate's current state does not allow."""


@dataclass(frozen=True)
class SupervisorApproval:
    """Ephemeral authorization token, consumed by the next commit."""
    supervisor_name: str
    amount_cents: int
    approved_at: datetime
    action: str = ACTION_RETURN
    employee_number: str | None = None
    supervisor_user_id: int | None = None

    def covers(self, amount_cents: int, action: str = ACTION_RETURN) -> bool:
        return self.action == action and self.amount_cents >= amount_cents

    @property
    def processed_by_label(self) -> str:
        if self.employee_number:
            return f"Approved by #{self.employee_number}"
        return f"Approved by {self.supervisor_name}"

    def to_dict(self) -> dict:
        return {
            "supervisor_name": self.supervisor_name,
            "employee_number": self.employee_number,
            "supervisor_user_id": self.supervisor_user_id,
            "amount_cents": self.amount_cents,
            "action": self.action,
            "approved_at": to_utc_z(self.approved_at),
        }


def requires_approval(policy: ReturnPolicy, amount_cents: int) -> bool:
    """True when the policy or the threshold demands a supervisor."""
    if policy.always_require_supervisor:
        return True
    threshold = policy.approval_threshold_cents
    return threshold is not None and amount_cents >= threshold


class AuthorizationGate:
    """
    Approval lifecycle for one pending return.

    authenticate: callable(username, credential) -> identity or None. The
    identity needs name, employee_number and user_id attributes
    (auth_service.SupervisorIdentity).
    """

    def __init__(self, policy: ReturnPolicy, request, amount_cents: int):
        self.policy = policy
        self.request = request
        self.amount_cents = amount_cents
        self.state = GATE_IDLE
        self.approval: SupervisorApproval | None = None

    @property
    def approval_needed(self) -> bool:
        return requires_approval(self.policy, self.amount_cents)

    def begin(self) -> str:
        """Enter pending_approval if approval is needed; otherwise stay idle."""
        if self.state != GATE_IDLE:
            raise GateStateError(f"Cannot begin approval from state {self.state}")
        if self.approval_needed:
            self.state = GATE_PENDING
        return self.state

    def approve(self, username: str, credential: str, authenticate: Callable) -> SupervisorApproval:
        if self.state != GATE_PENDING:
            raise GateStateError(f"Cannot approve from state {self.state}")

        identity = authenticate(username, credential)
        if identity is None:
            self.state = GATE_DENIED
            raise ApprovalDenied("Invalid supervisor credentials", request=self.request)

        self.approval = SupervisorApproval(
            supervisor_name=identity.name,
            employee_number=identity.employee_number,
            supervisor_user_id=identity.user_id,
            amount_cents=self.amount_cents,
            approved_at=utcnow(),
        )
        self.state = GATE_APPROVED
        return self.approval

    def deny(self):
        """Supervisor refused. Returns the pending request for retry."""
        if self.state != GATE_PENDING:
            raise GateStateError(f"Cannot deny from state {self.state}")
        self.state = GATE_DENIED
        return self.request

    def cancel(self):
        """Operator abandoned the approval. No side effects."""
        if self.state not in (GATE_IDLE, GATE_PENDING):
            raise GateStateError(f"Cannot cancel from state {self.state}")
        self.state = GATE_CANCELLED
        return self.request
