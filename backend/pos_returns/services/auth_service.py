# Overview: Password/PIN hashing and staff credential verification.

"""
Authentication Service

WHY: Every return is attributable. Staff passwords and supervisor PINs are
bcrypt-hashed; verification is timing-safe via bcrypt.checkpw().

verify_supervisor_credential() is the identity collaborator used by the
Authorization Gate: it answers "who approved this?" or None, and nothing
else about the return.
"""

import bcrypt
import re
from dataclasses import dataclass

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CASHIER
from pos_returns.time_utils import utcnow


PIN_RE = re.compile(r"^\d{4,6}$")


class PasswordValidationError(Exception):
    """Raised when a password or PIN doesn't meet requirements."""
    pass


@dataclass(frozen=True)
class SupervisorIdentity:
    user_id: int
    name: str
    employee_number: str | None = None


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one letter and one digit.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def _hash(secret: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(secret.encode('utf-8'), salt).decode('utf-8')


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    return _hash(password)


def hash_pin(pin: str) -> str:
    if not PIN_RE.match(pin):
        raise PasswordValidationError("PIN must be 4-6 digits")
    return _hash(pin)


def verify_password(password: str, password_hash: str | None) -> bool:
    """True if password matches the bcrypt hash."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def create_user(
    store_id: int,
    username: str,
    password: str,
    *,
    role: str = ROLE_CASHIER,
    full_name: str | None = None,
    employee_number: str | None = None,
    pin: str | None = None,
) -> User:
    """Create a staff user. Username must be unique within the store."""
    existing = db.session.query(User).filter_by(store_id=store_id, username=username).first()
    if existing:
        raise ValueError(f"Username '{username}' already exists")

    user = User(
        store_id=store_id,
        username=username,
        full_name=full_name,
        employee_number=employee_number,
        role=role,
        password_hash=hash_password(password),
        pin_hash=hash_pin(pin) if pin else None,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(store_id: int | None, username: str, password: str) -> User | None:
    """Return the active user for valid credentials, else None."""
    q = db.session.query(User).filter_by(username=username, is_active=True)
    if store_id is not None:
        q = q.filter_by(store_id=store_id)
    user = q.first()
    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def verify_supervisor_credential(store_id: int, username: str, credential: str) -> SupervisorIdentity | None:
    """
    Validate a supervisor credential for a store.

    The credential is the user's PIN when one is set, otherwise the
    password. Only active supervisor/manager users qualify.
    """
    if not username or not credential:
        return None

    user = db.session.query(User).filter_by(
        store_id=store_id,
        username=username,
        is_active=True,
    ).first()
    if user is None or not user.can_authorize_returns:
        return None

    secret_hash = user.pin_hash or user.password_hash
    if not verify_password(credential, secret_hash):
        return None

    return SupervisorIdentity(
        user_id=user.id,
        name=user.display_name,
        employee_number=user.employee_number,
    )
