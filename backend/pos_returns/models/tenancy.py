from __future__ import annotations

from ..extensions import db
from pos_returns.time_utils import to_utc_z


class Store(db.Model):
    """
    A physical store (tenant scope for orders, products and returns).

    WHY: Return numbers, product indices and return policy are all per store.
    Two stores may legitimately reuse the same SKU or order number.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }
