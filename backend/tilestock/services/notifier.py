# Overview: Domain event publishing; transports plug in behind the Notifier interface.

"""
Real-time domain events.

Services publish events after their unit of work commits. Each event goes to
two rooms: the owning shop (`shop_<id>`) and the global admin room
(`grand_admin`). The envelope is:

    {"type": ..., "shop_id": ..., "data": {...}, "timestamp": "...Z", "user_id": ...}

The notifier is configured once on the app (create_app(notifier=...)) and
passed into services explicitly; services never reach for a module-level
broadcaster.
"""

from __future__ import annotations

from flask import current_app, has_app_context

from tilestock.time_utils import to_utc_z, utcnow


GRAND_ADMIN_ROOM = "grand_admin"

EVENT_STOCK_UPDATED = "stock_updated"
EVENT_SALE_CREATED = "sale_created"
EVENT_SALE_UPDATED = "sale_updated"
EVENT_SALE_CANCELLED = "sale_cancelled"
EVENT_SALE_DELIVERED = "sale_delivered"
EVENT_TILE_CREATED = "tile_created"
EVENT_TILE_UPDATED = "tile_updated"
EVENT_TILE_DELETED = "tile_deleted"


def shop_room(shop_id: int) -> str:
    return f"shop_{shop_id}"


class Notifier:
    """Transport interface. Implementations deliver one envelope to one room."""

    def send(self, room: str, event: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default transport: writes events to the app logger."""

    def send(self, room: str, event: dict) -> None:
        if has_app_context():
            current_app.logger.info("event %s -> %s (shop_id=%s)", event["type"], room, event.get("shop_id"))


def get_notifier(notifier: Notifier | None = None) -> Notifier:
    if notifier is not None:
        return notifier
    if has_app_context():
        configured = current_app.extensions.get("notifier")
        if configured is not None:
            return configured
    return LoggingNotifier()


def build_event(event_type: str, shop_id: int | None, data: dict, user_id: int | None = None) -> dict:
    return {
        "type": event_type,
        "shop_id": shop_id,
        "data": data,
        "timestamp": to_utc_z(utcnow()),
        "user_id": user_id,
    }


def publish(
    event_type: str,
    *,
    shop_id: int | None,
    data: dict,
    user_id: int | None = None,
    notifier: Notifier | None = None,
) -> dict:
    """
    Send an event to the shop room and the grand admin room.

    Delivery failures are logged and dropped; the database change has already
    committed by the time this runs.
    """
    target = get_notifier(notifier)
    event = build_event(event_type, shop_id, data, user_id)
    rooms = [GRAND_ADMIN_ROOM]
    if shop_id is not None:
        rooms.insert(0, shop_room(shop_id))
    for room in rooms:
        try:
            target.send(room, event)
        except Exception:
            if has_app_context():
                current_app.logger.exception("Failed to publish %s to %s", event_type, room)
    return event


def stock_updated_payload(tile) -> dict:
    return {
        "tile_id": tile.id,
        "quantity": tile.quantity,
        "available_quantity": tile.available_quantity,
        "reserved_quantity": tile.reserved_quantity,
    }
