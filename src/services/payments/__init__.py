# -*- coding: utf-8 -*-
"""
Payment backend wiring.

The backend is chosen once, when the app is created, from STRIPE_MOCK_MODE.
Everything else asks get_payment_backend() and never checks the mode.
"""
from flask import Flask, current_app

from src.infra.log import get_logger
from src.services.payments.base import (
    PaymentBackend, CustomerInfo, PaymentIntentInfo, SubscriptionInfo, WebhookEvent,
)
from src.services.payments.mock_backend import MockPaymentBackend
from src.services.payments.stripe_backend import StripePaymentBackend

logger = get_logger('storefront.checkout')


def init_payment_backend(app: Flask, backend: PaymentBackend = None) -> PaymentBackend:
    if backend is None:
        if app.config.get('STRIPE_MOCK_MODE') or not app.config.get('STRIPE_SECRET_KEY'):
            backend = MockPaymentBackend()
        else:
            backend = StripePaymentBackend(
                api_key=app.config['STRIPE_SECRET_KEY'],
                webhook_secret=app.config.get('STRIPE_WEBHOOK_SECRET'),
                timeout=float(app.config.get('PAYMENT_PROVIDER_TIMEOUT', 10)),
            )

    app.extensions['payment_backend'] = backend
    logger.info("Payment backend configured", backend=backend.name, mock_mode=backend.mock_mode)
    return backend


def get_payment_backend() -> PaymentBackend:
    return current_app.extensions['payment_backend']


__all__ = [
    'PaymentBackend',
    'CustomerInfo',
    'PaymentIntentInfo',
    'SubscriptionInfo',
    'WebhookEvent',
    'MockPaymentBackend',
    'StripePaymentBackend',
    'init_payment_backend',
    'get_payment_backend',
]
