# -*- coding: utf-8 -*-
"""
Stripe payment backend.

Calls are bounded by a RequestsClient timeout and never retried by the SDK;
retry policy belongs to the checkout orchestrator.
"""
from contextlib import contextmanager
from typing import Dict, Any, Optional

import stripe

from src.infra.log import get_logger
from src.services.errors import (
    PaymentDeclined, PaymentError, ProviderUnavailable, ValidationError,
)
from src.services.payments.base import (
    PaymentBackend, CustomerInfo, PaymentIntentInfo, SubscriptionInfo, WebhookEvent,
)
from src.utils.timeutil import from_timestamp

logger = get_logger('storefront.checkout')


def _field(obj, name: str, default=None):
    """Read a field from a StripeObject (or dict) that may not carry it."""
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, name, default)
    return default if value is None else value


def _as_dict(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    return dict(obj)


def _subscription_period(subscription):
    """Billing period bounds; newer API versions keep them on the subscription item."""
    start = _field(subscription, 'current_period_start')
    end = _field(subscription, 'current_period_end')
    if start is None or end is None:
        items = _field(_field(subscription, 'items'), 'data', [])
        if items:
            start = start or _field(items[0], 'current_period_start')
            end = end or _field(items[0], 'current_period_end')
    return from_timestamp(start), from_timestamp(end)


@contextmanager
def translate_stripe_errors(operation: str):
    """Map stripe exceptions onto the storefront error taxonomy."""
    try:
        yield
    except stripe.CardError as e:
        error = getattr(e, 'error', None)
        decline_code = _field(error, 'decline_code') or getattr(e, 'code', None)
        logger.log_payment_event(operation, success=False, decline_code=decline_code)
        raise PaymentDeclined(e.user_message or 'Your card was declined.', decline_code=decline_code) from e
    except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
        logger.error("Stripe unavailable", operation=operation, error=str(e))
        raise ProviderUnavailable(f"Payment provider unavailable during {operation}") from e
    except stripe.StripeError as e:
        logger.error("Stripe error", operation=operation, error=str(e))
        raise PaymentError(e.user_message or f"Payment provider rejected {operation}") from e


class StripePaymentBackend(PaymentBackend):

    name = 'stripe'
    mock_mode = False

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, timeout: float = 10.0):
        stripe.api_key = api_key
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    # Customers

    def create_customer(self, user_id, email=None, name=None) -> CustomerInfo:
        with translate_stripe_errors('customer_create'):
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={'userId': user_id},
            )
        return self._customer(customer)

    def retrieve_customer(self, customer_id) -> Optional[CustomerInfo]:
        try:
            with translate_stripe_errors('customer_retrieve'):
                customer = stripe.Customer.retrieve(customer_id)
        except PaymentError as e:
            # A deleted or unknown customer is recreated by the caller
            if isinstance(e.__cause__, stripe.InvalidRequestError):
                return None
            raise
        if _field(customer, 'deleted', False):
            return None
        return self._customer(customer)

    # Payment intents

    def create_payment_intent(self, amount, currency, customer_id, metadata,
                              idempotency_key=None) -> PaymentIntentInfo:
        params = {
            'amount': int(amount),
            'currency': currency.lower(),
            'metadata': metadata,
            'automatic_payment_methods': {'enabled': True},
        }
        if customer_id:
            params['customer'] = customer_id
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        with translate_stripe_errors('payment_intent_create'):
            intent = stripe.PaymentIntent.create(**params)
        return self._intent(intent)

    def confirm_payment_intent(self, intent_id, payment_method=None) -> PaymentIntentInfo:
        params = {}
        if payment_method:
            params['payment_method'] = payment_method
        with translate_stripe_errors('payment_intent_confirm'):
            intent = stripe.PaymentIntent.confirm(intent_id, **params)
        return self._intent(intent)

    def retrieve_payment_intent(self, intent_id) -> PaymentIntentInfo:
        with translate_stripe_errors('payment_intent_retrieve'):
            intent = stripe.PaymentIntent.retrieve(intent_id)
        return self._intent(intent)

    # Subscriptions

    def create_subscription(self, customer_id, pass_type, price_config, metadata) -> SubscriptionInfo:
        with translate_stripe_errors('subscription_create'):
            price = stripe.Price.create(
                currency=price_config.get('currency', 'usd').lower(),
                unit_amount=int(price_config['price']),
                recurring={'interval': price_config['interval']},
                product_data={'name': price_config['name']},
            )
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{'price': price.id}],
                payment_behavior='default_incomplete',
                payment_settings={'save_default_payment_method': 'on_subscription'},
                expand=['latest_invoice.confirmation_secret'],
                metadata=metadata,
            )

        return self._subscription(subscription, customer_id)

    def cancel_subscription(self, subscription_id) -> SubscriptionInfo:
        with translate_stripe_errors('subscription_cancel'):
            subscription = stripe.Subscription.cancel(subscription_id)
        return self._subscription(subscription)

    # Webhooks

    def construct_event(self, payload, signature) -> WebhookEvent:
        if not self.webhook_secret:
            raise ValidationError('Webhook signing secret is not configured')
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise ValidationError('Invalid payload')
        except stripe.SignatureVerificationError:
            raise ValidationError('Invalid signature')

        data_object = _field(_field(event, 'data'), 'object')
        return WebhookEvent(id=event.id, type=event.type, data=_as_dict(data_object))

    # Conversion

    def _customer(self, customer) -> CustomerInfo:
        return CustomerInfo(
            id=customer.id,
            email=_field(customer, 'email'),
            name=_field(customer, 'name'),
            metadata=_as_dict(_field(customer, 'metadata')),
        )

    def _intent(self, intent) -> PaymentIntentInfo:
        last_error = _field(intent, 'last_payment_error')
        return PaymentIntentInfo(
            id=intent.id,
            amount=int(_field(intent, 'amount', 0)),
            currency=_field(intent, 'currency', 'usd'),
            status=_field(intent, 'status', 'requires_payment_method'),
            client_secret=_field(intent, 'client_secret'),
            customer_id=_field(intent, 'customer'),
            metadata=_as_dict(_field(intent, 'metadata')),
            last_error=_field(last_error, 'message'),
        )

    def _subscription(self, subscription, customer_id='') -> SubscriptionInfo:
        invoice = _field(subscription, 'latest_invoice')
        secret = _field(_field(invoice, 'confirmation_secret'), 'client_secret')
        start, end = _subscription_period(subscription)
        return SubscriptionInfo(
            id=subscription.id,
            customer_id=_field(subscription, 'customer', customer_id),
            status=_field(subscription, 'status', 'incomplete'),
            client_secret=secret,
            current_period_start=start,
            current_period_end=end,
            cancel_at_period_end=bool(_field(subscription, 'cancel_at_period_end', False)),
            metadata=_as_dict(_field(subscription, 'metadata')),
        )
