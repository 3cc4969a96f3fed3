"""
Cart Service

Keeps one cart per user with at most one line per product. Quantity
changes are single UPDATE statements (quantity = quantity + n), and the
(cart_id, product_id) unique constraint turns a lost insert race into an
increment, so concurrent adds neither duplicate lines nor lose units.
"""
from decimal import Decimal
from typing import Dict, Any, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import update, delete
from sqlalchemy.exc import IntegrityError

from src.infra.db import db
from src.infra.log import get_logger
from src.models.cart import Cart, CartItem
from src.services.catalog import CatalogService
from src.services.errors import InvalidQuantity, NotFoundError
from src.utils.timeutil import isoformat

logger = get_logger('storefront.cart')

DEFAULT_CART_TTL_DAYS = 30


def validate_quantity(quantity: Any, allow_zero: bool = False) -> int:
    """Return quantity as int or raise InvalidQuantity."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(quantity)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise InvalidQuantity(quantity)
    return quantity


class CartService:

    def __init__(self, catalog: Optional[CatalogService] = None, ttl_days: Optional[int] = None):
        self.catalog = catalog or CatalogService()
        self._ttl_days = ttl_days

    @property
    def ttl_days(self) -> int:
        if self._ttl_days is not None:
            return self._ttl_days
        if has_app_context():
            return int(current_app.config.get('CART_TTL_DAYS', DEFAULT_CART_TTL_DAYS))
        return DEFAULT_CART_TTL_DAYS

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        """Add quantity units of a product, merging into an existing line."""
        quantity = validate_quantity(quantity)
        self.catalog.get_product(product_id)

        for attempt in range(2):
            cart = self._get_or_create_cart(user_id)
            result = db.session.execute(
                update(CartItem)
                .where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
                .values(quantity=CartItem.quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.session.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))
            cart.touch(self.ttl_days)
            try:
                db.session.commit()
                break
            except IntegrityError:
                # Another request inserted the same line first; retry as an increment.
                db.session.rollback()
                if attempt:
                    raise

        logger.info("Cart item added", user_id=user_id, product_id=product_id, quantity=quantity)
        return self.get_cart(user_id)

    def update_quantity(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        """Set the quantity of a line. Zero removes the line."""
        quantity = validate_quantity(quantity, allow_zero=True)
        if quantity == 0:
            return self.remove_item(user_id, product_id)

        cart = self._get_live_cart(user_id)
        if cart is None:
            raise NotFoundError(f"Product {product_id} is not in the cart")

        result = db.session.execute(
            update(CartItem)
            .where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.session.rollback()
            raise NotFoundError(f"Product {product_id} is not in the cart")

        cart.touch(self.ttl_days)
        db.session.commit()
        logger.info("Cart quantity updated", user_id=user_id, product_id=product_id, quantity=quantity)
        return self.get_cart(user_id)

    def remove_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        """Remove a product line. Removing an absent product is a no-op."""
        cart = self._get_live_cart(user_id)
        if cart is not None:
            db.session.execute(
                delete(CartItem)
                .where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
                .execution_options(synchronize_session=False)
            )
            cart.touch(self.ttl_days)
            db.session.commit()
            logger.info("Cart item removed", user_id=user_id, product_id=product_id)
        return self.get_cart(user_id)

    def clear(self, user_id: str, commit: bool = True) -> None:
        """Delete the user's cart and all its lines."""
        cart = Cart.query.filter_by(user_id=user_id).first()
        if cart is not None:
            db.session.delete(cart)
            if commit:
                db.session.commit()
            logger.info("Cart cleared", user_id=user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_cart(self, user_id: str) -> Dict[str, Any]:
        cart = self._get_live_cart(user_id)
        if cart is None:
            return {
                'user_id': user_id,
                'items': [],
                'item_count': 0,
                'subtotal': 0.0,
                'updated_at': None,
                'expires_at': None,
            }

        items = self.get_items(cart)
        subtotal = sum(
            (item.product.effective_price * item.quantity for item in items if item.product is not None),
            Decimal('0'),
        )
        return {
            'id': cart.id,
            'user_id': user_id,
            'items': [item.to_dict() for item in items],
            'item_count': sum(item.quantity for item in items),
            'subtotal': float(subtotal),
            'updated_at': isoformat(cart.updated_at),
            'expires_at': isoformat(cart.expires_at),
        }

    def get_items(self, cart: Cart) -> List[CartItem]:
        return CartItem.query.filter_by(cart_id=cart.id).order_by(CartItem.added_at).all()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_live_cart(self, user_id: str) -> Optional[Cart]:
        """Return the user's cart, purging it first if it has expired."""
        cart = Cart.query.filter_by(user_id=user_id).first()
        if cart is not None and cart.is_expired():
            logger.info("Expired cart purged", user_id=user_id, cart_id=cart.id)
            db.session.delete(cart)
            db.session.commit()
            return None
        return cart

    def _get_or_create_cart(self, user_id: str) -> Cart:
        cart = self._get_live_cart(user_id)
        if cart is not None:
            return cart

        cart = Cart(user_id=user_id)
        cart.touch(self.ttl_days)
        db.session.add(cart)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            cart = Cart.query.filter_by(user_id=user_id).one()
        return cart
