from __future__ import annotations

from flask import current_app, has_app_context

from ..errors import InvalidState, ShopNotFound
from ..extensions import db
from ..models import ROLE_GRAND_ADMIN, Shop, Tile, User
from ..validation import MAX_QUANTITY, ValidationError, coerce_int
from tilestock.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import CallerIdentity, require_admin, require_role, require_shop_access


ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")
CONTACT_FIELDS = ("phone", "email")


def flatten_shop_payload(payload: dict) -> dict:
    """
    Map the nested API shape onto Shop columns:

        {"name", "address": {...}, "contact": {...}, "settings": {"low_stock_threshold"}}
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    flat = {}
    for key, value in payload.items():
        if key == "address":
            if not isinstance(value, dict):
                raise ValidationError("address must be an object")
            for field, item in value.items():
                if field not in ADDRESS_FIELDS:
                    raise ValidationError(f"Unknown address field: {field}")
                flat[f"address_{field}"] = item
        elif key == "contact":
            if not isinstance(value, dict):
                raise ValidationError("contact must be an object")
            for field, item in value.items():
                if field not in CONTACT_FIELDS:
                    raise ValidationError(f"Unknown contact field: {field}")
                flat[f"contact_{field}"] = item
        elif key == "settings":
            if not isinstance(value, dict):
                raise ValidationError("settings must be an object")
            for field, item in value.items():
                if field != "low_stock_threshold":
                    raise ValidationError(f"Unknown settings field: {field}")
                flat["low_stock_threshold"] = item
        else:
            flat[key] = value
    return flat


def list_shops(caller: CallerIdentity) -> list[Shop]:
    """Grand admins see every active shop; everyone else sees their own."""
    query = db.session.query(Shop).filter(Shop.is_active.is_(True))
    if not caller.is_grand_admin:
        query = query.filter(Shop.id == caller.shop_id)
    return query.order_by(Shop.name.asc()).all()


def get_shop(caller: CallerIdentity, shop_id: int) -> Shop:
    return require_shop_access(caller, shop_id)


def create_shop(caller: CallerIdentity, patch: dict) -> Shop:
    require_role(caller, ROLE_GRAND_ADMIN)

    def _op():
        data = dict(patch)
        if data.get("low_stock_threshold") is None:
            data["low_stock_threshold"] = (
                current_app.config.get("LOW_STOCK_THRESHOLD_DEFAULT", 50) if has_app_context() else 50
            )
        shop = Shop(**data)
        db.session.add(shop)
        db.session.commit()
        return shop

    return run_with_retry(_op)


def update_shop(caller: CallerIdentity, shop_id: int, patch: dict) -> Shop:
    require_role(caller, ROLE_GRAND_ADMIN)

    def _op():
        shop = lock_for_update(db.session.query(Shop).filter_by(id=shop_id)).first()
        if shop is None or not shop.is_active:
            raise ShopNotFound("Shop not found", {"shop_id": shop_id})
        for key, value in patch.items():
            setattr(shop, key, value)
        shop.updated_at = utcnow()
        db.session.commit()
        return shop

    return run_with_retry(_op)


def update_settings(caller: CallerIdentity, shop_id: int, low_stock_threshold: int) -> Shop:
    """Shop admins may tune their own shop's threshold; grand admins any shop's."""
    require_admin(caller)
    shop = require_shop_access(caller, shop_id)
    shop.low_stock_threshold = coerce_int(low_stock_threshold, "low_stock_threshold", minimum=0, maximum=MAX_QUANTITY)
    shop.updated_at = utcnow()
    db.session.commit()
    return shop


def delete_shop(caller: CallerIdentity, shop_id: int) -> Shop:
    """Soft delete, refused while the shop still has active users or tiles."""
    require_role(caller, ROLE_GRAND_ADMIN)
    shop = require_shop_access(caller, shop_id)

    user_count = db.session.query(User).filter(User.shop_id == shop.id, User.is_active.is_(True)).count()
    tile_count = (
        db.session.query(Tile)
        .filter(Tile.shop_id == shop.id, Tile.is_active.is_(True), Tile.is_deleted.is_(False))
        .count()
    )
    if user_count or tile_count:
        raise InvalidState(
            f"Cannot delete shop. It has {user_count} active users and {tile_count} active tiles. "
            "Please deactivate or transfer them first.",
            {"shop_id": shop.id, "active_users": user_count, "active_tiles": tile_count},
        )

    shop.is_active = False
    shop.updated_at = utcnow()
    db.session.commit()
    return shop
