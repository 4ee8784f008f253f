# Overview: Bearer session tokens for terminal users.

"""
Session Token Management Service

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- 12-hour absolute timeout, 2-hour idle timeout
- Revocable on logout
"""

import secrets
import hashlib
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from pos_returns.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=12)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough for high-entropy tokens (unlike passwords)."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """Create a session. Returns (SessionToken, plaintext token)."""
    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> User | None:
    """
    Return the session's active user, or None for unknown, revoked,
    expired or idle sessions. Refreshes last_used_at.
    """
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return None

    now = utcnow()
    if now > session.expires_at or now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        session.is_revoked = True
        db.session.commit()
        return None

    user = session.user
    if user is None or not user.is_active:
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False
    session.is_revoked = True
    db.session.commit()
    return True
