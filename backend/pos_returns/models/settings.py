from __future__ import annotations

from ..extensions import db
from pos_returns.time_utils import to_utc_z


class StoreSetting(db.Model):
    """
    Per-store override of a configuration value (JSON-encoded).

    Keys used by the return engine:
    - returns.always_require_supervisor (bool)
    - returns.approval_threshold_cents (int or null)
    - returns.allowed_refund_methods (list of str)
    """
    __tablename__ = "store_settings"
    __table_args__ = (
        db.UniqueConstraint("store_id", "key", name="uq_store_settings_store_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    key = db.Column(db.String(128), nullable=False)
    value_json = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "key": self.key,
            "value_json": self.value_json,
            "updated_at": to_utc_z(self.updated_at),
        }
