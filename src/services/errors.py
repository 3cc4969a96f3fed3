# -*- coding: utf-8 -*-
"""Exception classes for the storefront entitlement core."""
from typing import Optional, Dict, Any


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    code = 'store_error'

    def __init__(self, message: str, status_code: int = None, code: str = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.code, 'message': self.message}


class ValidationError(StoreError):
    """Raised when caller input is malformed (400)."""
    status_code = 400
    code = 'validation_error'

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data['field'] = self.field
        return data


class InvalidQuantity(ValidationError):
    """Raised when a cart quantity is not a positive integer."""
    code = 'invalid_quantity'

    def __init__(self, quantity: Any):
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}", field='quantity')
        self.quantity = quantity


class NotFoundError(StoreError):
    """Raised when an entity does not exist (404)."""
    status_code = 404
    code = 'not_found'


class ProductNotFound(NotFoundError):
    code = 'product_not_found'

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class EntitlementDenied(StoreError):
    """
    Raised when a download is not allowed.

    Always carries a machine-readable reason so callers can render the
    right upsell. ``noLicense`` maps to 402, every other reason to 403.
    """
    code = 'entitlement_denied'

    def __init__(self, reason: str, message: Optional[str] = None):
        status = 402 if reason == 'noLicense' else 403
        super().__init__(message or f"Download not allowed: {reason}", status_code=status)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'reason': self.reason,
            'canDownload': False,
        }


class ProviderUnavailable(StoreError):
    """Raised when the payment or persistence backend is down (retryable)."""
    status_code = 503
    code = 'provider_unavailable'


class PaymentError(StoreError):
    """Raised when the payment provider rejects a request."""
    status_code = 502
    code = 'payment_error'


class PaymentDeclined(PaymentError):
    """Raised when the provider declines a payment; message is the decline reason."""
    status_code = 402
    code = 'payment_declined'

    def __init__(self, message: str = 'Your card was declined.', decline_code: Optional[str] = None):
        super().__init__(message)
        self.decline_code = decline_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.decline_code:
            data['decline_code'] = self.decline_code
        return data


class DuplicateOperation(StoreError):
    """
    Raised when an idempotent operation was already applied.

    Callers treat this as success.
    """
    status_code = 200
    code = 'duplicate_operation'

    def __init__(self, message: str = 'Operation already applied', existing: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.existing = existing


class DuplicateSubscription(DuplicateOperation):
    """Raised when a user already holds an active access pass (409)."""
    status_code = 409
    code = 'duplicate_subscription'


class AuthRequired(StoreError):
    """Raised when a request carries no usable caller identity (401)."""
    status_code = 401
    code = 'auth_required'

    def __init__(self, message: str = 'Authentication required'):
        super().__init__(message)
