"""
Test suite for the cart service and cart routes.
"""
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from src.database import db
from src.models.cart import Cart, CartItem
from src.services.cart_service import CartService, validate_quantity
from src.services.errors import InvalidQuantity, NotFoundError, ProductNotFound
from src.utils.timeutil import utcnow

USER_ID = "user-1"


@pytest.fixture
def carts(app):
    return CartService()


class TestValidateQuantity:

    def test_accepts_positive_integers(self):
        assert validate_quantity(1) == 1
        assert validate_quantity(99) == 99

    @pytest.mark.parametrize("value", [0, -1, True, "2", 1.5, None])
    def test_rejects_invalid_values(self, value):
        with pytest.raises(InvalidQuantity):
            validate_quantity(value)

    def test_zero_allowed_for_updates(self):
        assert validate_quantity(0, allow_zero=True) == 0


class TestCartService:

    def test_add_item_creates_cart(self, carts, product):
        cart = carts.add_item(USER_ID, product.id, 2)

        assert cart['item_count'] == 2
        assert len(cart['items']) == 1
        assert cart['items'][0]['product_id'] == product.id
        assert cart['subtotal'] == 40.0
        assert cart['expires_at'] is not None

    def test_adding_same_product_merges_lines(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        cart = carts.add_item(USER_ID, product.id, 2)

        assert len(cart['items']) == 1
        assert cart['items'][0]['quantity'] == 3
        assert CartItem.query.count() == 1

    def test_subtotal_uses_sale_price(self, carts, make_product):
        product = make_product(title="Fonts", price="20.00", sale_price=15)
        cart = carts.add_item(USER_ID, product.id, 2)
        assert cart['subtotal'] == 30.0

    def test_add_unknown_product(self, carts):
        with pytest.raises(ProductNotFound):
            carts.add_item(USER_ID, "missing-product", 1)

    def test_add_invalid_quantity_leaves_cart_untouched(self, carts, product):
        with pytest.raises(InvalidQuantity):
            carts.add_item(USER_ID, product.id, 0)
        assert Cart.query.count() == 0

    def test_update_quantity(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        cart = carts.update_quantity(USER_ID, product.id, 5)
        assert cart['items'][0]['quantity'] == 5

    def test_update_to_zero_removes_line(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        cart = carts.update_quantity(USER_ID, product.id, 0)
        assert cart['items'] == []

    def test_update_missing_line(self, carts, product, make_product):
        other = make_product(title="Other")
        carts.add_item(USER_ID, product.id, 1)
        with pytest.raises(NotFoundError):
            carts.update_quantity(USER_ID, other.id, 3)

    def test_update_without_cart(self, carts, product):
        with pytest.raises(NotFoundError):
            carts.update_quantity(USER_ID, product.id, 3)

    def test_remove_absent_product_is_noop(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        cart = carts.remove_item(USER_ID, "not-in-cart")
        assert cart['item_count'] == 1

    def test_clear(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        carts.clear(USER_ID)
        assert Cart.query.filter_by(user_id=USER_ID).first() is None
        assert CartItem.query.count() == 0

    def test_expired_cart_is_purged(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        cart = Cart.query.filter_by(user_id=USER_ID).one()
        cart.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        result = carts.get_cart(USER_ID)
        assert result['items'] == []
        assert Cart.query.count() == 0

    def test_add_after_expiry_starts_fresh(self, carts, product):
        carts.add_item(USER_ID, product.id, 4)
        cart = Cart.query.filter_by(user_id=USER_ID).one()
        cart.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        result = carts.add_item(USER_ID, product.id, 1)
        assert result['item_count'] == 1

    def test_carts_are_per_user(self, carts, product):
        carts.add_item(USER_ID, product.id, 1)
        assert carts.get_cart("someone-else")['items'] == []


class TestConcurrentAdds:

    def test_lost_insert_becomes_increment(self, carts, product, make_product):
        carts.add_item(USER_ID, make_product(title="Other").id)
        cart_id = Cart.query.filter_by(user_id=USER_ID).one().id
        session = db.session()
        real_commit = session.commit
        commits = []

        def commit_after_competing_insert():
            commits.append(1)
            if len(commits) == 1:
                db.session.rollback()
                with db.engine.begin() as conn:
                    conn.execute(CartItem.__table__.insert().values(
                        cart_id=cart_id, product_id=product.id, quantity=3))
                raise IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed'))
            return real_commit()

        with patch.object(session, 'commit', side_effect=commit_after_competing_insert):
            cart = carts.add_item(USER_ID, product.id, 2)

        line = next(i for i in cart['items'] if i['product_id'] == product.id)
        assert line['quantity'] == 5
        assert len(commits) == 2

    def test_parallel_adds_merge_into_one_line(self, app, product):
        product_id = product.id
        racers = 8
        barrier = threading.Barrier(racers)
        errors = []

        def add_one():
            with app.app_context():
                barrier.wait()
                try:
                    CartService().add_item(USER_ID, product_id, 1)
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=add_one) for _ in range(racers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        db.session.expire_all()
        assert errors == []
        lines = CartItem.query.filter_by(product_id=product_id).all()
        assert [line.quantity for line in lines] == [racers]


class TestCartRoutes:

    def test_requires_identity(self, client):
        response = client.get('/api/cart')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'auth_required'

    def test_add_and_get(self, client, auth_headers, product):
        response = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 2},
                               headers=auth_headers)
        assert response.status_code == 200

        data = client.get('/api/cart', headers=auth_headers).get_json()
        assert data['item_count'] == 2
        assert data['items'][0]['product']['title'] == product.title

    def test_quantity_defaults_to_one(self, client, auth_headers, product):
        data = client.post('/api/cart/items', json={'productId': product.id},
                           headers=auth_headers).get_json()
        assert data['item_count'] == 1

    def test_zero_quantity_rejected(self, client, auth_headers, product):
        response = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 0},
                               headers=auth_headers)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'invalid_quantity'

    def test_string_quantity_rejected(self, client, auth_headers, product):
        response = client.post('/api/cart/items', json={'productId': product.id, 'quantity': '2'},
                               headers=auth_headers)
        assert response.status_code == 400
        assert 'quantity' in response.get_json()['details']

    def test_unknown_product(self, client, auth_headers):
        response = client.post('/api/cart/items', json={'productId': 'nope'}, headers=auth_headers)
        assert response.status_code == 404
        assert response.get_json()['error'] == 'product_not_found'

    def test_patch_and_delete(self, client, auth_headers, product):
        client.post('/api/cart/items', json={'productId': product.id}, headers=auth_headers)

        data = client.patch(f'/api/cart/items/{product.id}', json={'quantity': 3},
                            headers=auth_headers).get_json()
        assert data['item_count'] == 3

        data = client.delete(f'/api/cart/items/{product.id}', headers=auth_headers).get_json()
        assert data['items'] == []

    def test_clear_cart(self, client, auth_headers, product):
        client.post('/api/cart/items', json={'productId': product.id}, headers=auth_headers)
        data = client.delete('/api/cart', headers=auth_headers).get_json()
        assert data['item_count'] == 0
