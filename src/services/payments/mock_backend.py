# -*- coding: utf-8 -*-
"""
Deterministic in-memory payment backend for tests and local development.

Ids are sequential per instance (pi_mock_000001, cus_mock_000001, ...).
Stripe's public test card numbers select the outcome of a confirmation,
and ``unavailable = True`` makes every call fail as a provider outage.
Like Stripe, a repeated idempotency key returns the intent first created
for it, and subscriptions start ``incomplete`` until a webhook activates
them.
"""
import itertools
import json
import threading
from datetime import timedelta
from typing import Dict, Any, Optional

from src.infra.log import get_logger
from src.services.errors import PaymentDeclined, NotFoundError, ProviderUnavailable, ValidationError
from src.services.payments.base import (
    PaymentBackend, CustomerInfo, PaymentIntentInfo, SubscriptionInfo, WebhookEvent,
    REQUIRES_PAYMENT_METHOD, SUCCEEDED,
)
from src.utils.timeutil import utcnow

logger = get_logger('storefront.checkout')

SUCCESS_CARD = '4242424242424242'

# card number -> (decline code, message shown to the buyer)
DECLINE_CARDS = {
    '4000000000000002': ('card_declined', 'Your card was declined.'),
    '4000000000009995': ('insufficient_funds', 'Your card has insufficient funds.'),
    '4000000000009987': ('lost_card', 'Your card was declined.'),
    '4000000000009979': ('stolen_card', 'Your card was declined.'),
    '4000000000000119': ('processing_error', 'An error occurred while processing your card.'),
    '4000002760003184': ('authentication_required', 'Your card requires authentication.'),
}

# Stripe test payment method ids map onto the same outcomes
PAYMENT_METHOD_ALIASES = {
    'pm_card_visa': SUCCESS_CARD,
    'pm_card_chargeDeclined': '4000000000000002',
    'pm_card_chargeDeclinedInsufficientFunds': '4000000000009995',
    'pm_card_chargeDeclinedLostCard': '4000000000009987',
    'pm_card_chargeDeclinedStolenCard': '4000000000009979',
    'pm_card_chargeDeclinedProcessingError': '4000000000000119',
}

PERIOD_DAYS = {'month': 30, 'year': 365}


class MockPaymentBackend(PaymentBackend):

    name = 'mock'
    mock_mode = True

    def __init__(self):
        self.unavailable = False
        self.customers: Dict[str, CustomerInfo] = {}
        self.intents: Dict[str, PaymentIntentInfo] = {}
        self.subscriptions: Dict[str, SubscriptionInfo] = {}
        self.idempotency_keys: Dict[str, str] = {}
        self.calls = []
        self._lock = threading.Lock()
        self._sequences = {}

    def _next_id(self, prefix: str) -> str:
        counter = self._sequences.setdefault(prefix, itertools.count(1))
        return f"{prefix}_mock_{next(counter):06d}"

    def _call(self, operation: str):
        if self.unavailable:
            raise ProviderUnavailable(f"Payment provider unavailable during {operation}")
        self.calls.append(operation)

    def reset(self):
        with self._lock:
            self.customers.clear()
            self.intents.clear()
            self.subscriptions.clear()
            self.idempotency_keys.clear()
            self.calls.clear()
            self._sequences.clear()

    # Customers

    def create_customer(self, user_id, email=None, name=None) -> CustomerInfo:
        self._call('create_customer')
        with self._lock:
            customer = CustomerInfo(
                id=self._next_id('cus'),
                email=email,
                name=name,
                metadata={'userId': user_id},
            )
            self.customers[customer.id] = customer
        return customer

    def retrieve_customer(self, customer_id) -> Optional[CustomerInfo]:
        self._call('retrieve_customer')
        return self.customers.get(customer_id)

    # Payment intents

    def create_payment_intent(self, amount, currency, customer_id, metadata,
                              idempotency_key=None) -> PaymentIntentInfo:
        self._call('create_payment_intent')
        with self._lock:
            if idempotency_key in self.idempotency_keys:
                return self.intents[self.idempotency_keys[idempotency_key]]
            intent_id = self._next_id('pi')
            intent = PaymentIntentInfo(
                id=intent_id,
                amount=int(amount),
                currency=currency.lower(),
                status=REQUIRES_PAYMENT_METHOD,
                client_secret=f"{intent_id}_secret_mock",
                customer_id=customer_id,
                metadata=dict(metadata or {}),
            )
            self.intents[intent_id] = intent
            if idempotency_key:
                self.idempotency_keys[idempotency_key] = intent_id
        logger.debug("Mock payment intent created", payment_intent_id=intent_id, amount=amount)
        return intent

    def confirm_payment_intent(self, intent_id, payment_method=None) -> PaymentIntentInfo:
        self._call('confirm_payment_intent')
        with self._lock:
            intent = self.intents.get(intent_id)
            if intent is None:
                raise NotFoundError(f"Payment intent not found: {intent_id}")
            if intent.succeeded:
                return intent

            card = PAYMENT_METHOD_ALIASES.get(payment_method, payment_method)
            card = (card or SUCCESS_CARD).replace(' ', '')
            if card in DECLINE_CARDS:
                decline_code, message = DECLINE_CARDS[card]
                self.intents[intent_id] = intent.model_copy(
                    update={'status': REQUIRES_PAYMENT_METHOD, 'last_error': message})
                raise PaymentDeclined(message, decline_code=decline_code)

            intent = intent.model_copy(update={'status': SUCCEEDED, 'last_error': None})
            self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id) -> PaymentIntentInfo:
        self._call('retrieve_payment_intent')
        intent = self.intents.get(intent_id)
        if intent is None:
            raise NotFoundError(f"Payment intent not found: {intent_id}")
        return intent

    # Subscriptions

    def create_subscription(self, customer_id, pass_type, price_config, metadata) -> SubscriptionInfo:
        self._call('create_subscription')
        now = utcnow()
        days = PERIOD_DAYS.get(price_config.get('interval'), 30)
        with self._lock:
            subscription_id = self._next_id('sub')
            subscription = SubscriptionInfo(
                id=subscription_id,
                customer_id=customer_id,
                status='incomplete',
                client_secret=f"{subscription_id}_secret_mock",
                current_period_start=now,
                current_period_end=now + timedelta(days=days),
                metadata=dict(metadata or {}),
            )
            self.subscriptions[subscription.id] = subscription
        return subscription

    def cancel_subscription(self, subscription_id) -> SubscriptionInfo:
        self._call('cancel_subscription')
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFoundError(f"Subscription not found: {subscription_id}")
            subscription = subscription.model_copy(update={'status': 'canceled'})
            self.subscriptions[subscription_id] = subscription
        return subscription

    # Webhooks

    def construct_event(self, payload, signature) -> WebhookEvent:
        """Accept unsigned JSON events."""
        try:
            body = json.loads(payload)
        except (TypeError, ValueError):
            raise ValidationError('Invalid payload')
        if not isinstance(body, dict) or not body.get('id') or not body.get('type'):
            raise ValidationError('Invalid payload')

        data = body.get('data') or {}
        data_object = data.get('object', data) if isinstance(data, dict) else {}
        return WebhookEvent(id=body['id'], type=body['type'], data=data_object)

    def build_event(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """An event body in the provider's envelope, as the mock webhook route receives it."""
        return {'id': self._next_id('evt'), 'type': event_type, 'data': {'object': data}}
