# -*- coding: utf-8 -*-
"""
Stripe Webhook Handler.

Verifies provider events through the configured payment backend and hands
them to the WebhookProcessor, which applies each event id at most once.
"""
from flask import Blueprint, request, jsonify, abort

from src.infra.log import get_logger
from src.services.payments import get_payment_backend
from src.services.webhook_processor import WebhookProcessor

logger = get_logger('storefront.webhooks')
stripe_webhooks_bp = Blueprint('stripe_webhooks', __name__)


@stripe_webhooks_bp.route('/webhooks/stripe', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe webhook events.

    Events handled:
    - payment_intent.succeeded: Complete the order and create licenses
    - payment_intent.payment_failed: Mark the pending order failed
    - customer.subscription.created / updated / deleted: Access pass lifecycle
    - invoice.payment_succeeded: Keep the access pass active

    400 for an invalid payload or signature; replays answer
    {"received": true, "duplicate": true}.
    """
    event = get_payment_backend().construct_event(
        request.get_data(), request.headers.get('Stripe-Signature'))
    logger.info(f"Received Stripe webhook: {event.type}", event_id=event.id)
    return jsonify(WebhookProcessor().process(event)), 200


@stripe_webhooks_bp.route('/webhooks/mock-stripe', methods=['POST'])
def mock_stripe_webhook():
    """Unsigned events for local development; only exists in mock mode."""
    backend = get_payment_backend()
    if not backend.mock_mode:
        abort(404)
    event = backend.construct_event(request.get_data(), None)
    logger.info(f"Received mock webhook: {event.type}", event_id=event.id)
    return jsonify(WebhookProcessor().process(event)), 200
