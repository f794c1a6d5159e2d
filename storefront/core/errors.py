"""Error taxonomy for the storefront core.

Every service raises subclasses of StorefrontError; the API layer maps them
to HTTP responses in one exception handler.
"""
from typing import Dict, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnauthenticatedError(StorefrontError):
    """Raised when a request carries no valid credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(StorefrontError):
    """Raised when the identity lacks the role or assignment an action needs."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(StorefrontError):
    """Raised when a referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class ValidationError(StorefrontError):
    """Raised when input is rejected before any write happens."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        self.fields = fields or {}
        super().__init__(message)


class ConflictError(StorefrontError):
    """Raised when a concurrent writer or an exhausted resource wins."""

    status_code = 409


class InsufficientStockError(ConflictError):
    def __init__(self, component_id: int, requested: int, available: Optional[int] = None):
        self.component_id = component_id
        self.requested = requested
        self.available = available
        msg = f"Insufficient stock for component {component_id}. Requested: {requested}"
        if available is not None:
            msg = f"{msg}, Available: {available}"
        super().__init__(msg)


class StaleStateError(ConflictError):
    """Raised when an entity changed underneath an optimistic update."""

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} was modified by another transaction")


class ConcurrencyConflictError(ConflictError):
    """Raised when the database aborts a transaction over a lock conflict."""

    def __init__(self, message: str = "Transaction lost a concurrent update, please retry"):
        super().__init__(message)


class InvalidPromoError(StorefrontError):
    """Raised when a promo code cannot be applied.

    reason is one of: not_found, inactive, expired, below_minimum, exhausted.
    An exhausted code is a conflict (409); the rest are client errors (400).
    """

    REASONS = ("not_found", "inactive", "expired", "below_minimum", "exhausted")

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        self.status_code = 409 if reason == "exhausted" else 400
        super().__init__(f"Promo code {code} is invalid: {reason}")


class PromoExhaustedError(InvalidPromoError, ConflictError):
    """Raised when a promo code has no redemptions left."""

    def __init__(self, code: str):
        super().__init__(code, "exhausted")


class InvalidTransitionError(StorefrontError):
    """Raised when a status change is not in the entity's transition table."""

    status_code = 400

    def __init__(self, entity_type: str, current, requested):
        self.entity_type = entity_type
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid {entity_type} transition: {_name(current)} -> {_name(requested)}"
        )


class InvalidStateError(StorefrontError):
    """Raised when an operation is not allowed in the entity's current state."""

    status_code = 400


class PaymentGatewayError(StorefrontError):
    """Raised by payment gateway clients when a session cannot be created."""

    status_code = 502


def _name(value) -> str:
    return getattr(value, "value", str(value))
