"""Exceptions raised by storefront services.

Every error carries the HTTP status the web layer answers with, so routes can
let them propagate to a single error handler.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class InvalidInput(StorefrontError):
    """Raised when a request is malformed or violates a business rule."""

    status_code = 400


class NotFound(StorefrontError):
    """Raised when a product, order, user or referral code doesn't exist."""

    status_code = 404


class Conflict(StorefrontError):
    """Raised when the stored state forbids the requested change."""

    status_code = 409


class InsufficientStock(Conflict):
    """Raised when a stock decrement would drive a product below zero."""

    def __init__(self, product_id: str, requested: int):
        self.product_id = product_id
        self.requested = requested
        super().__init__(f"Insufficient stock for product {product_id}: requested {requested}")


class Unauthorized(StorefrontError):
    """Raised when a webhook signature or admin credential doesn't check out."""

    status_code = 401


class UpstreamError(StorefrontError):
    """Raised when the payment provider is unreachable or rejects a call."""

    status_code = 502

    def __init__(self, message: str, details: Optional[dict] = None):
        self.details = details or {}
        super().__init__(message)
