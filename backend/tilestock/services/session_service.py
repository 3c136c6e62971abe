# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service with Shop Context

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

MULTI-TENANT: Sessions capture role and shop_id at creation time. This
establishes the caller identity for every authenticated request without
repeated database lookups.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS, 24 by default)
- Revocable on logout
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, Shop, User
from tilestock.time_utils import utcnow
from .tenant_service import CallerIdentity


DEFAULT_ABSOLUTE_TIMEOUT_HOURS = 24


@dataclass
class SessionContext:
    """
    Complete session context returned by validate_session.

    Contains the user, the session row and the caller identity derived from
    the immutable session record.
    """
    user: User
    session: SessionToken
    caller: CallerIdentity


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _absolute_timeout() -> timedelta:
    hours = DEFAULT_ABSOLUTE_TIMEOUT_HOURS
    if has_app_context():
        hours = int(current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", hours))
    return timedelta(hours=hours)


def create_session(user: User) -> tuple[SessionToken, str]:
    """
    Create new session token for user, capturing role and shop.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        role=user.role,
        shop_id=user.shop_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if:
    - Token is invalid, expired, or revoked
    - User account is deactivated
    - The session's shop is deactivated

    Updates last_used_at on successful validation.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    if session.shop_id is not None:
        shop = db.session.get(Shop, session.shop_id)
        if shop is None or not shop.is_active:
            return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        caller=CallerIdentity(user_id=user.id, role=session.role, shop_id=session.shop_id),
    )


def revoke_session(token: str) -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
