# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors raised by the service layer.

Every error carries:
- kind: short machine-checkable code (e.g. "insufficient_stock")
- message: human-readable text; quantity errors always include the offending
  value and the current constraint ("Available: 4 pieces, Requested: 10 pieces")
- details: structured payload for clients that want to adjust and retry
- status_code: HTTP status the routes translate it to

Services raise, routes translate. Nothing in the service layer swallows these.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all expected business failures."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class InvalidQuantity(DomainError):
    """Non-positive or malformed packet/piece/quantity input."""

    kind = "invalid_quantity"
    status_code = 400


class TileNotFound(DomainError):
    """Tile does not exist or is outside the caller's shop scope."""

    kind = "tile_not_found"
    status_code = 404


class SaleNotFound(DomainError):
    kind = "sale_not_found"
    status_code = 404


class ShopNotFound(DomainError):
    kind = "shop_not_found"
    status_code = 404


class InsufficientStock(DomainError):
    """Requested removal or sale exceeds available stock."""

    kind = "insufficient_stock"
    status_code = 409


class InvalidState(DomainError):
    """Illegal lifecycle transition (e.g. cancelling a delivered sale)."""

    kind = "invalid_state"
    status_code = 409


class PermissionDenied(DomainError):
    kind = "permission_denied"
    status_code = 403


class PersistenceFailure(DomainError):
    """
    Store unreachable or write rejected after retries.

    The original exception is kept on `cause` for diagnostics; routes only
    expose it when the app runs in debug mode.
    """

    kind = "persistence_failure"
    status_code = 500

    def __init__(self, message: str = "Persistence failure", cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause

    def to_dict(self, include_cause: bool = False) -> dict:
        payload = super().to_dict()
        if include_cause and self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload
