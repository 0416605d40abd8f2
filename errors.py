"""Exceptions raised by the storefront services."""

from typing import Dict, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class Unauthenticated(StorefrontError):
    """Raised when an operation needs a signed-in account and has none."""

    def __init__(self, msg: str = "User not authenticated"):
        super().__init__(msg)


class PermissionDenied(StorefrontError):
    """Raised when a buyer reaches for an admin-only operation."""

    def __init__(self, msg: str = "Admin access required"):
        super().__init__(msg)


class NotFoundError(StorefrontError):
    """Raised when a document doesn't exist (or isn't visible to the caller)."""

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class ValidationError(StorefrontError):
    """Raised when input is rejected before it reaches the store.

    ``fields`` maps a field name to the message shown next to it.
    """

    def __init__(self, msg: str, fields: Optional[Dict[str, str]] = None):
        self.fields = fields or {}
        super().__init__(msg)


class InvalidTransitionError(ValidationError):
    """Raised when an order status change breaks the lifecycle rules."""

    def __init__(self, field: str, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(
            f"Cannot change {field} from '{current}' to '{new}'",
            {field: f"'{current}' cannot become '{new}'"},
        )


class RemotePersistenceError(StorefrontError):
    """Raised when a store call fails."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        msg = f"Failed to {operation}"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)


class ConfigurationError(StorefrontError):
    """Raised when a required key or credential is not configured."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(
            f"Payment configuration error: {setting} is not set. Please contact support."
        )


class OrderCreationError(StorefrontError):
    """Raised when the order or its lines could not be written."""

    def __init__(self, msg: str, order_id: Optional[str] = None):
        self.order_id = order_id
        super().__init__(msg)


class PaymentError(StorefrontError):
    """Raised when the payment widget reports failure. The buyer may retry."""

    def __init__(self, reference: str, msg: str = "Payment was not successful. Please try again."):
        self.reference = reference
        super().__init__(msg)


class RecommendationUnavailable(StorefrontError):
    """Raised inside recommendations.py when the remote service is unusable.

    Never leaves that module.
    """

    pass
