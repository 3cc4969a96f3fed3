"""
Cart routes
One cart per caller; quantities merge by product
"""
from flask import Blueprint, request, jsonify

from src.middleware.auth import require_user, get_current_user_id
from src.schemas.cart import AddCartItemSchema, UpdateQuantitySchema
from src.services.cart_service import CartService

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


@cart_bp.route('', methods=['GET'])
@require_user
def get_cart():
    """Current cart with product summaries and subtotal"""
    return jsonify(CartService().get_cart(get_current_user_id())), 200


@cart_bp.route('/items', methods=['POST'])
@require_user
def add_item():
    """
    Add a product to the cart

    Body: {"productId": "...", "quantity": 1}
    400 for a bad quantity, 404 when the product does not exist
    """
    data = AddCartItemSchema().load(request.get_json(silent=True) or {})
    cart = CartService().add_item(get_current_user_id(), data['productId'], data['quantity'])
    return jsonify(cart), 200


@cart_bp.route('/items/<product_id>', methods=['PATCH'])
@require_user
def update_item(product_id):
    """Set a line's quantity; 0 removes the line"""
    data = UpdateQuantitySchema().load(request.get_json(silent=True) or {})
    cart = CartService().update_quantity(get_current_user_id(), product_id, data['quantity'])
    return jsonify(cart), 200


@cart_bp.route('/items/<product_id>', methods=['DELETE'])
@require_user
def remove_item(product_id):
    return jsonify(CartService().remove_item(get_current_user_id(), product_id)), 200


@cart_bp.route('', methods=['DELETE'])
@require_user
def clear_cart():
    user_id = get_current_user_id()
    service = CartService()
    service.clear(user_id)
    return jsonify(service.get_cart(user_id)), 200
