# -*- coding: utf-8 -*-
"""
Payment backend abstraction.

The checkout orchestrator only talks to a PaymentBackend. The real Stripe
backend and the in-memory mock return the same pydantic shapes, so callers
never know which one is wired in.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field

# Payment intent statuses (Stripe vocabulary)
REQUIRES_PAYMENT_METHOD = 'requires_payment_method'
REQUIRES_CONFIRMATION = 'requires_confirmation'
PROCESSING = 'processing'
SUCCEEDED = 'succeeded'
CANCELED = 'canceled'


class CustomerInfo(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentIntentInfo(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    client_secret: Optional[str] = None
    customer_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


class SubscriptionInfo(BaseModel):
    id: str
    customer_id: str
    status: str
    client_secret: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    metadata: Dict[str, str] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """A verified provider event; ``data`` is the event's data.object as a plain dict."""
    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class PaymentBackend(ABC):
    """
    Capability set every payment processor implementation provides.

    Implementations raise ProviderUnavailable for timeouts and connection
    failures, PaymentDeclined for card declines and PaymentError for any
    other provider rejection.
    """

    name = 'base'
    mock_mode = False

    @abstractmethod
    def create_customer(self, user_id: str, email: Optional[str] = None,
                        name: Optional[str] = None) -> CustomerInfo:
        ...

    @abstractmethod
    def retrieve_customer(self, customer_id: str) -> Optional[CustomerInfo]:
        """Return the customer, or None when the provider no longer knows it."""

    def retrieve_or_create_customer(self, user_id: str, email: Optional[str] = None,
                                    name: Optional[str] = None,
                                    customer_id: Optional[str] = None) -> CustomerInfo:
        """Reuse a known customer id when the provider still has it."""
        if customer_id:
            existing = self.retrieve_customer(customer_id)
            if existing is not None:
                return existing
        return self.create_customer(user_id, email=email, name=name)

    @abstractmethod
    def create_payment_intent(self, amount: int, currency: str, customer_id: Optional[str],
                              metadata: Dict[str, str],
                              idempotency_key: Optional[str] = None) -> PaymentIntentInfo:
        """Create an intent for ``amount`` minor units."""

    @abstractmethod
    def create_subscription(self, customer_id: str, pass_type: str, price_config: Dict[str, Any],
                            metadata: Dict[str, str]) -> SubscriptionInfo:
        """Start a subscription; it stays ``incomplete`` until its first invoice is paid."""

    @abstractmethod
    def cancel_subscription(self, subscription_id: str) -> SubscriptionInfo:
        """Cancel a subscription immediately."""

    @abstractmethod
    def confirm_payment_intent(self, intent_id: str,
                               payment_method: Optional[str] = None) -> PaymentIntentInfo:
        ...

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentInfo:
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify and parse a webhook payload. Raises ValidationError when invalid."""
