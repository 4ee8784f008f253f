from __future__ import annotations

from ..extensions import db
from pos_returns.time_utils import to_utc_z


ROLE_CASHIER = "cashier"
ROLE_SUPERVISOR = "supervisor"
ROLE_MANAGER = "manager"

# Roles allowed to authorize returns
SUPERVISOR_ROLES = (ROLE_SUPERVISOR, ROLE_MANAGER)


class User(db.Model):
    """
    Staff accounts for authentication and attribution.

    WHY: Every return is attributable to a cashier, and every approval to a
    supervisor. No shared logins.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("store_id", "username", name="uq_users_store_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    full_name = db.Column(db.String(128), nullable=True)
    employee_number = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CASHIER)

    # Bcrypt hashes
    password_hash = db.Column(db.String(255), nullable=False)
    # Optional numeric PIN for supervisor overrides at the terminal
    pin_hash = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    store = db.relationship("Store", backref=db.backref("users", lazy=True))

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    @property
    def can_authorize_returns(self) -> bool:
        return self.role in SUPERVISOR_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "username": self.username,
            "full_name": self.full_name,
            "employee_number": self.employee_number,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Bearer session tokens (stored as SHA-256 hashes, never plaintext).
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
