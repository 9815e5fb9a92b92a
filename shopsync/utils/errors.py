"""
Error taxonomy for order sync and fulfillment.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with, so routers never need their own mapping tables.
"""
from typing import Any, Dict, List, Optional


class ShopSyncError(Exception):
    """Base class for all domain errors"""

    code = "shopsync_error"
    http_status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


class ValidationError(ShopSyncError):
    """Malformed input (negative quantities, fees above total, unknown status...)"""

    code = "validation_error"
    http_status = 422


class NotFoundError(ShopSyncError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class PlatformNotConfiguredError(NotFoundError):
    code = "platform_not_configured"

    def __init__(self, platform: str):
        super().__init__("Platform integration", platform)
        self.platform = platform


class InvalidTransitionError(ShopSyncError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move fulfillment from '{current}' to '{target}'",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class DuplicatePickingListError(ShopSyncError):
    code = "duplicate_picking_list"
    http_status = 409

    def __init__(self, sale_id: int, picking_list_id: int):
        super().__init__(
            f"Sale {sale_id} already has open picking list {picking_list_id}",
            sale_id=sale_id,
            picking_list_id=picking_list_id,
        )
        self.sale_id = sale_id
        self.picking_list_id = picking_list_id


class MissingShippingInfoError(ShopSyncError):
    code = "missing_shipping_info"
    http_status = 422

    def __init__(self, missing: List[str]):
        readable = " and ".join(field.replace("_", " ") for field in missing)
        super().__init__(f"{readable} required", missing=missing)
        self.missing = missing


class IncompletePickingError(ShopSyncError):
    code = "incomplete_picking"
    http_status = 409

    def __init__(self, picking_list_id: int, short_items: List[int]):
        super().__init__(
            f"Picking list {picking_list_id} has {len(short_items)} item(s) not fully picked",
            picking_list_id=picking_list_id,
            short_items=short_items,
        )
        self.short_items = short_items


class SideEffectError(ShopSyncError):
    """A transition side effect (inventory reserve/consume/release) was refused"""

    code = "side_effect_failed"
    http_status = 409


class SyncInProgressError(ShopSyncError):
    code = "sync_in_progress"
    http_status = 409

    def __init__(self, platform: str):
        super().__init__(f"A sync for {platform} is already running", platform=platform)
        self.platform = platform


class PlatformError(ShopSyncError):
    """Base for errors raised while talking to a marketplace"""

    def __init__(self, platform: str, message: str, status: Optional[int] = None):
        super().__init__(f"{platform}: {message}", platform=platform, status=status)
        self.platform = platform
        self.status = status


class AuthExpiredError(PlatformError):
    """Credentials rejected or expired. Needs an operator reconnect, never retried."""

    code = "auth_expired"
    http_status = 401


class TransientPlatformError(PlatformError):
    """Network failure, rate limit or 5xx. Safe to retry with backoff."""

    code = "transient_platform_error"
    http_status = 503
