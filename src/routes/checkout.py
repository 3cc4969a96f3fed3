"""
Checkout routes
Payment intents, access pass subscriptions and confirmation
"""
import hashlib
import json

from flask import Blueprint, request, jsonify, current_app

from src.middleware.auth import require_user, get_current_user
from src.schemas.checkout import CheckoutIntentSchema, SubscriptionSchema, ConfirmPaymentSchema
from src.services import metrics
from src.services.checkout_service import CheckoutService
from src.services.idempotency import IdempotencyService

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api/checkout')


def get_idempotency_service() -> IdempotencyService:
    service = current_app.extensions.get('idempotency')
    if service is None:
        service = IdempotencyService()
        current_app.extensions['idempotency'] = service
    return service


def _body_hash(data) -> str:
    return hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


@checkout_bp.route('/intent', methods=['POST'])
@require_user
def create_intent():
    """
    Create a payment intent for the requested items

    Body: {"items": [{"productId": "...", "quantity": 1}], "licenseType": "basic"}
    Returns {clientSecret, paymentIntentId, ...} or {isFree: true} when nothing is owed.
    Honours the Idempotency-Key header.
    """
    user = get_current_user()
    data = CheckoutIntentSchema().load(request.get_json(silent=True) or {})

    idempotency_key = request.headers.get('Idempotency-Key')
    body_hash = _body_hash(data)
    if idempotency_key:
        proceed, cached, status_code = get_idempotency_service().process_request_idempotency(
            user['user_id'], body_hash, idempotency_key)
        if not proceed:
            if status_code != 409:
                metrics.record('record_idempotency_replay')
            return jsonify(cached), status_code

    result = CheckoutService().create_payment_intent(
        user['user_id'],
        data['items'],
        license_type=data['licenseType'],
        email=user.get('email'),
        name=user.get('name'),
        idempotency_key=idempotency_key,
    )
    body = result.to_dict()

    if idempotency_key:
        service = get_idempotency_service()
        service.store_response(
            service.generate_idempotency_key(user['user_id'], idempotency_key),
            body_hash, body, 200)
    return jsonify(body), 200


@checkout_bp.route('/subscription', methods=['POST'])
@require_user
def create_subscription():
    """
    Start an access pass purchase

    Body: {"passType": "monthly" | "yearly" | "lifetime"}
    409 when the caller already holds an active pass
    """
    user = get_current_user()
    data = SubscriptionSchema().load(request.get_json(silent=True) or {})
    result = CheckoutService().create_subscription(
        user['user_id'], data['passType'], email=user.get('email'), name=user.get('name'))
    return jsonify(result), 200


@checkout_bp.route('/confirm', methods=['POST'])
@require_user
def confirm():
    """
    Confirm a payment intent

    Body: {"paymentIntentId": "...", "paymentMethod": "pm_... or test card"}
    402 with the decline reason when the card is declined
    """
    user = get_current_user()
    data = ConfirmPaymentSchema().load(request.get_json(silent=True) or {})
    order = CheckoutService().confirm_payment(
        user['user_id'], data['paymentIntentId'], data['paymentMethod'])
    return jsonify({'order': order.to_dict(), 'status': order.status}), 200
