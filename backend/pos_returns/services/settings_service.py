# Overview: Resolves the effective return policy for a store.

"""
Return Policy Resolution

The engine never reads settings itself. Callers resolve a ReturnPolicy
once per transaction and pass it in, so a policy change between
transactions takes effect without any global mutable state.

PRECEDENCE: StoreSetting row > application config > built-in default.
The built-in default always requires a supervisor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..extensions import db
from ..models import StoreSetting


KEY_ALWAYS_REQUIRE_SUPERVISOR = "returns.always_require_supervisor"
KEY_APPROVAL_THRESHOLD_CENTS = "returns.approval_threshold_cents"
KEY_ALLOWED_REFUND_METHODS = "returns.allowed_refund_methods"

DEFAULT_REFUND_METHODS = frozenset({"cash", "card", "mobile_wallet", "store_credit", "original_method"})


class SettingsValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ReturnPolicy:
    always_require_supervisor: bool = True
    approval_threshold_cents: int | None = None
    allowed_refund_methods: frozenset = field(default_factory=lambda: DEFAULT_REFUND_METHODS)

    def to_dict(self) -> dict:
        return {
            "always_require_supervisor": self.always_require_supervisor,
            "approval_threshold_cents": self.approval_threshold_cents,
            "allowed_refund_methods": sorted(self.allowed_refund_methods),
        }


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise SettingsValidationError(f"{key} must be a boolean")


def _coerce_threshold(key: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    raise SettingsValidationError(f"{key} must be a non-negative integer or null")


def _coerce_methods(key: str, value: Any) -> frozenset:
    if isinstance(value, (list, tuple, set, frozenset)) and all(isinstance(v, str) and v for v in value):
        return frozenset(value)
    raise SettingsValidationError(f"{key} must be a list of refund method names")


_COERCERS = {
    KEY_ALWAYS_REQUIRE_SUPERVISOR: _coerce_bool,
    KEY_APPROVAL_THRESHOLD_CENTS: _coerce_threshold,
    KEY_ALLOWED_REFUND_METHODS: _coerce_methods,
}


def policy_from_config(config: Mapping[str, Any] | None) -> ReturnPolicy:
    """Build a policy from Flask config values (missing keys use the defaults)."""
    config = config or {}
    always = config.get("RETURNS_ALWAYS_REQUIRE_SUPERVISOR")
    methods = config.get("RETURNS_ALLOWED_REFUND_METHODS")
    return ReturnPolicy(
        always_require_supervisor=True if always is None else bool(always),
        approval_threshold_cents=config.get("RETURNS_APPROVAL_THRESHOLD_CENTS"),
        allowed_refund_methods=frozenset(methods) if methods else DEFAULT_REFUND_METHODS,
    )


def get_store_overrides(store_id: int) -> dict[str, Any]:
    rows = db.session.query(StoreSetting).filter(
        StoreSetting.store_id == store_id,
        StoreSetting.key.in_(list(_COERCERS)),
    ).all()
    return {row.key: row.value_json for row in rows}


def resolve_return_policy(store_id: int | None = None, config: Mapping[str, Any] | None = None) -> ReturnPolicy:
    """Effective policy for a store: store overrides on top of config."""
    policy = policy_from_config(config)
    if store_id is None:
        return policy

    overrides = get_store_overrides(store_id)
    values = {
        "always_require_supervisor": policy.always_require_supervisor,
        "approval_threshold_cents": policy.approval_threshold_cents,
        "allowed_refund_methods": policy.allowed_refund_methods,
    }
    if KEY_ALWAYS_REQUIRE_SUPERVISOR in overrides:
        values["always_require_supervisor"] = _coerce_bool(
            KEY_ALWAYS_REQUIRE_SUPERVISOR, overrides[KEY_ALWAYS_REQUIRE_SUPERVISOR])
    if KEY_APPROVAL_THRESHOLD_CENTS in overrides:
        values["approval_threshold_cents"] = _coerce_threshold(
            KEY_APPROVAL_THRESHOLD_CENTS, overrides[KEY_APPROVAL_THRESHOLD_CENTS])
    if KEY_ALLOWED_REFUND_METHODS in overrides:
        values["allowed_refund_methods"] = _coerce_methods(
            KEY_ALLOWED_REFUND_METHODS, overrides[KEY_ALLOWED_REFUND_METHODS])
    return ReturnPolicy(**values)


def set_store_setting(store_id: int, key: str, value: Any) -> StoreSetting:
    """Validate and upsert a store-level return policy override."""
    coercer = _COERCERS.get(key)
    if coercer is None:
        raise SettingsValidationError(f"Unknown setting: {key}")
    value = coercer(key, value)
    if isinstance(value, frozenset):
        value = sorted(value)

    row = db.session.query(StoreSetting).filter_by(store_id=store_id, key=key).first()
    if row is None:
        row = StoreSetting(store_id=store_id, key=key)
        db.session.add(row)
    row.value_json = value
    db.session.commit()
    return row
