"""
Account routes
The caller's licenses, orders, access pass and download history
"""
from flask import Blueprint, request, jsonify

from src.middleware.auth import require_user, get_current_user_id
from src.models.download_activity import DownloadActivity
from src.models.order import Order
from src.services.checkout_service import CheckoutService
from src.services.entitlements import EntitlementChecker
from src.services.license_store import LicenseStore

account_bp = Blueprint('account', __name__, url_prefix='/api')


@account_bp.route('/user/licenses', methods=['GET'])
@require_user
def list_licenses():
    licenses = LicenseStore().list_for_user(get_current_user_id())
    return jsonify({
        'licenses': [lic.to_dict() for lic in licenses],
        'total': len(licenses),
    }), 200


@account_bp.route('/user/orders', methods=['GET'])
@require_user
def list_orders():
    """Orders newest first; ?status= filters by status"""
    query = Order.query.filter_by(user_id=get_current_user_id())
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    orders = query.order_by(Order.created_at.desc()).all()
    return jsonify({
        'orders': [order.to_dict() for order in orders],
        'total': len(orders),
    }), 200


@account_bp.route('/user/access-pass', methods=['GET'])
@require_user
def get_access_pass():
    access_pass = EntitlementChecker().has_active_access_pass(get_current_user_id())
    return jsonify({
        'hasAccessPass': access_pass is not None,
        'accessPass': access_pass.to_dict() if access_pass is not None else None,
    }), 200


@account_bp.route('/user/download-history', methods=['GET'])
@require_user
def download_history():
    """Most recent download attempts; ?limit= (default 50, max 200)"""
    limit = min(max(request.args.get('limit', 50, type=int) or 50, 1), 200)
    activity = (DownloadActivity.query
                .filter_by(user_id=get_current_user_id())
                .order_by(DownloadActivity.downloaded_at.desc())
                .limit(limit)
                .all())
    return jsonify({'downloads': [a.to_dict() for a in activity]}), 200


@account_bp.route('/orders/by-payment-intent/<payment_intent_id>', methods=['GET'])
@require_user
def order_by_payment_intent(payment_intent_id):
    """
    Order for a payment intent the caller owns

    A pending order is reconciled with the payment provider first, so a
    client polling after payment sees the completed order even when the
    webhook has not arrived yet.
    """
    order = CheckoutService().reconcile_payment(get_current_user_id(), payment_intent_id)
    return jsonify({'order': order.to_dict()}), 200
