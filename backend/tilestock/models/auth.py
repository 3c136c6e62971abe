from __future__ import annotations

from ..extensions import db
from tilestock.time_utils import to_utc_z, utcnow


ROLE_GRAND_ADMIN = "grand_admin"
ROLE_SHOP_ADMIN = "shop_admin"
ROLE_STAFF = "staff"
ROLES = (ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN, ROLE_STAFF)


class User(db.Model):
    """
    User accounts for authentication and attribution.

    MULTI-TENANT: shop_admin and staff users belong to exactly one shop.
    grand_admin users have no shop and may act on every shop.

    WHY: Every stock movement and sale must be attributable.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        db.Index("ix_users_shop_id", "shop_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_STAFF)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    shop = db.relationship("Shop", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "shop_id": self.shop_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Session token with tenant context.

    MULTI-TENANT: role and shop_id are captured at login and stay fixed for
    the session lifetime, so every request is scoped without re-reading the
    user row.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS)
    - Revocable on logout

    low_stock_alert_seen_at backs the once-per-session low-stock dialog.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    role = db.Column(db.String(16), nullable=False)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    low_stock_alert_seen_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role": self.role,
            "shop_id": self.shop_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
