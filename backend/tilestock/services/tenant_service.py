"""
Multi-Tenant Service: Caller Identity and Shop Scoping Helpers

WHY: Centralize tenant validation logic for reuse across services and routes.
Every core operation receives a caller identity and must scope reads and
writes to the caller's shop unless the caller is a grand admin.

SECURITY INVARIANTS:
1. Non-grand-admin callers always have their own shop_id forced onto queries
   and mutations; a shop_id supplied in the request is ignored for them
2. Records outside the caller's scope are reported as not found, never as
   forbidden, so their existence is not revealed
3. Role checks happen in the service layer, not only in routes

USAGE:
    from tilestock.services.tenant_service import CallerIdentity, resolve_shop_id

    caller = CallerIdentity(user_id=1, role="staff", shop_id=3)
    shop_id = resolve_shop_id(caller, request_shop_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import PermissionDenied, ShopNotFound
from ..extensions import db
from ..models import Shop, ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN
from ..validation import ValidationError, coerce_int


@dataclass(frozen=True)
class CallerIdentity:
    """
    Who is performing an operation.

    Built from the session at request time (see decorators.require_auth), or
    directly by CLI commands and tests.
    """
    user_id: int | None
    role: str
    shop_id: int | None = None

    @property
    def is_grand_admin(self) -> bool:
        return self.role == ROLE_GRAND_ADMIN

    @property
    def is_admin(self) -> bool:
        return self.role in (ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)


SYSTEM_CALLER = CallerIdentity(user_id=None, role=ROLE_GRAND_ADMIN, shop_id=None)


def require_role(caller: CallerIdentity, *roles: str) -> None:
    if caller.role not in roles:
        raise PermissionDenied(
            "Permission denied",
            {"required_roles": list(roles), "role": caller.role},
        )


def require_admin(caller: CallerIdentity) -> None:
    require_role(caller, ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)


def scope_shop_id(caller: CallerIdentity, requested_shop_id: int | None = None) -> int | None:
    """
    Effective shop filter for a read.

    Grand admins get what they asked for (None = all shops). Everyone else
    gets their own shop regardless of what they asked for.
    """
    if caller.is_grand_admin:
        if requested_shop_id is None:
            return None
        return coerce_int(requested_shop_id, "shop_id", minimum=1)
    if caller.shop_id is None:
        raise PermissionDenied("User is not assigned to a shop")
    return caller.shop_id


def resolve_shop_id(caller: CallerIdentity, requested_shop_id: int | None = None) -> int:
    """
    Shop a write applies to.

    Grand admins must name a shop; everyone else writes to their own shop.
    Raises ShopNotFound if the shop does not exist or is inactive.
    """
    shop_id = scope_shop_id(caller, requested_shop_id)
    if shop_id is None:
        raise ValidationError("shop_id is required")
    require_shop(shop_id)
    return shop_id


def require_shop(shop_id: int, *, include_inactive: bool = False) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if shop is None or (not include_inactive and not shop.is_active):
        raise ShopNotFound("Shop not found", {"shop_id": shop_id})
    return shop


def can_access_shop(caller: CallerIdentity, shop_id: int | None) -> bool:
    return caller.is_grand_admin or (shop_id is not None and caller.shop_id == shop_id)


def require_shop_access(caller: CallerIdentity, shop_id: int) -> Shop:
    """Validate the caller may act on `shop_id`; out-of-scope shops look missing."""
    if not can_access_shop(caller, shop_id):
        raise ShopNotFound("Shop not found", {"shop_id": shop_id})
    return require_shop(shop_id)


def apply_shop_scope(query, column, caller: CallerIdentity, requested_shop_id: int | None = None):
    """Filter `query` on `column` by the caller's effective shop."""
    shop_id = scope_shop_id(caller, requested_shop_id)
    if shop_id is not None:
        query = query.filter(column == shop_id)
    return query
