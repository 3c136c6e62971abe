# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service with Shop Scoping

WHY: Every stock movement and sale must be attributable. Uses bcrypt for
secure password hashing and validates password strength.

ROLES:
- grand_admin: no shop, sees and manages every shop
- shop_admin: one shop, manages its tiles, settings and staff
- staff: one shop, day-to-day stock and sales

SECURITY NOTES:
- Passwords hashed with bcrypt (BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters, upper, lower, digit and special character required
- Emails are unique and stored lower-cased
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app, has_app_context

from ..errors import PermissionDenied
from ..extensions import db
from ..models import ROLES, ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN, ROLE_STAFF, Shop, User
from ..validation import ConflictError, ValidationError, require_choice
from tilestock.time_utils import utcnow
from .tenant_service import CallerIdentity


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _bcrypt_rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return 12


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _check_create_permission(caller: CallerIdentity | None, role: str, shop_id: int | None) -> None:
    """
    grand_admin may create any user. shop_admin may create staff in its own
    shop. Nobody else may create users. caller=None is the bootstrap path
    used by the CLI.
    """
    if caller is None or caller.is_grand_admin:
        return
    if caller.role == ROLE_SHOP_ADMIN and role == ROLE_STAFF and shop_id == caller.shop_id:
        return
    raise PermissionDenied(
        "Permission denied",
        {"role": caller.role, "requested_role": role, "requested_shop_id": shop_id},
    )


def create_user(
    *,
    email: str,
    name: str,
    password: str,
    role: str = ROLE_STAFF,
    shop_id: int | None = None,
    caller: CallerIdentity | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    grand_admin users have no shop; shop_admin and staff require an active
    shop. For shop_admin callers the shop defaults to their own.

    Raises:
        ValidationError / PasswordValidationError: bad input
        ConflictError: email already registered
        PermissionDenied: caller may not create this user
    """
    require_choice(role, "role", ROLES)
    email = (email or "").strip().lower()
    name = (name or "").strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not name:
        raise ValidationError("name is required")

    if role == ROLE_GRAND_ADMIN:
        shop_id = None
    else:
        if shop_id is None and caller is not None and not caller.is_grand_admin:
            shop_id = caller.shop_id
        if shop_id is None:
            raise ValidationError("shop_id is required for shop users")

    _check_create_permission(caller, role, shop_id)

    if shop_id is not None:
        shop = db.session.get(Shop, shop_id)
        if shop is None or not shop.is_active:
            raise ValidationError("Shop not found")

    if db.session.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        shop_id=shop_id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise. Users of an inactive
    shop cannot log in. Updates last_login_at on success.
    """
    email = (email or "").strip().lower()
    user = db.session.query(User).filter(
        User.email == email,
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if user.shop_id is not None:
        shop = db.session.get(Shop, user.shop_id)
        if shop is None or not shop.is_active:
            return None

    if verify_password(password or "", user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def list_users(caller: CallerIdentity) -> list[User]:
    """grand_admin sees everyone; shop_admin sees its shop; staff only themselves."""
    query = db.session.query(User)
    if caller.is_grand_admin:
        pass
    elif caller.role == ROLE_SHOP_ADMIN:
        query = query.filter(User.shop_id == caller.shop_id)
    else:
        query = query.filter(User.id == caller.user_id)
    return query.order_by(User.name.asc(), User.id.asc()).all()
