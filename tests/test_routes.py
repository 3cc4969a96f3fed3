"""
HTTP route tests for downloads, checkout, account, catalog and admin endpoints.
"""
from unittest.mock import MagicMock

import pytest
import redis
from flask_jwt_extended import create_access_token

from src.database import db
from src.models.access_pass import AccessPass, ACTIVE, INCOMPLETE
from src.models.download_activity import DownloadActivity, SOURCE_ACCESS_PASS
from src.models.license import License
from src.models.order import Order, COMPLETED
from src.services.idempotency import IdempotencyService
from src.services.license_store import LicenseStore
from src.utils.timeutil import utcnow

USER_ID = "user-1"
DECLINED_CARD = "4000000000000002"


def token_from(url):
    return url.rsplit('/', 1)[1]


@pytest.fixture
def license(app, product):
    return LicenseStore().create(USER_ID, product.id, "ORD-1", "basic")


class TestDownloadRoutes:

    def test_requires_identity(self, client, product):
        response = client.get(f'/api/download/{product.id}')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'auth_required'

    def test_licensed_download(self, client, auth_headers, product, license):
        response = client.get(f'/api/download/{product.id}', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['url'].startswith('http://localhost:5000/api/download/secure/')
        assert data['expiresIn'] == 300
        assert data['reason'] == 'licensed'
        assert data['remainingDownloads'] == 9
        assert data['files'][0]['name'] == 'main.zip'

    def test_no_license_is_payment_required(self, client, auth_headers, product):
        response = client.get(f'/api/download/{product.id}', headers=auth_headers)

        assert response.status_code == 402
        data = response.get_json()
        assert data['reason'] == 'noLicense'
        assert data['canDownload'] is False

    def test_limit_reached_is_forbidden(self, client, auth_headers, product, license):
        license.download_count = license.download_limit
        db.session.commit()

        response = client.get(f'/api/download/{product.id}', headers=auth_headers)
        assert response.status_code == 403
        assert response.get_json()['reason'] == 'downloadLimitExceeded'

    def test_freebie(self, client, auth_headers, freebie):
        response = client.get(f'/api/download/{freebie.id}', headers=auth_headers)
        assert response.status_code == 200
        assert 'remainingDownloads' not in response.get_json()

    def test_unknown_product(self, client, auth_headers):
        response = client.get('/api/download/missing', headers=auth_headers)
        assert response.status_code == 404
        assert response.get_json()['error'] == 'product_not_found'

    def test_access_pass_route(self, client, auth_headers, product):
        db.session.add(AccessPass(user_id=USER_ID, pass_type='lifetime', status=ACTIVE,
                                  current_period_start=utcnow()))
        db.session.commit()

        response = client.get(f'/api/download/access-pass/{product.id}', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['reason'] == 'accessPass'
        assert AccessPass.query.one().total_downloads == 1

    def test_access_pass_route_without_pass(self, client, auth_headers, product):
        response = client.get(f'/api/download/access-pass/{product.id}', headers=auth_headers)
        assert response.status_code == 403
        assert response.get_json()['reason'] == 'noAccessPass'

        activity = DownloadActivity.query.one()
        assert activity.success is False
        assert activity.source == SOURCE_ACCESS_PASS
        assert activity.error_message == 'noAccessPass'

    def test_redeem_secure_link(self, client, auth_headers, product, license):
        url = client.get(f'/api/download/{product.id}', headers=auth_headers).get_json()['url']
        token = token_from(url)

        response = client.get(f'/api/download/secure/{token}', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['url'] == 'https://files.test/storage/products/ui-kit/main.zip?dl=main.zip'

        again = client.get(f'/api/download/secure/{token}', headers=auth_headers)
        assert again.status_code == 403
        assert again.get_json()['reason'] == 'invalidToken'

    def test_redeem_with_redirect(self, client, auth_headers, freebie):
        url = client.get(f'/api/download/{freebie.id}', headers=auth_headers).get_json()['url']

        response = client.get(f'/api/download/secure/{token_from(url)}?redirect=true')
        assert response.status_code == 302
        assert response.headers['Location'].startswith('https://files.test/storage/products/free-icons/')

    def test_garbage_token(self, client):
        response = client.get('/api/download/secure/not-a-token')
        assert response.status_code == 403


class TestCheckoutRoutes:

    def intent_body(self, product, quantity=1):
        return {"items": [{"productId": product.id, "quantity": quantity}], "licenseType": "basic"}

    def test_create_intent(self, client, auth_headers, product):
        response = client.post('/api/checkout/intent', json=self.intent_body(product), headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['isFree'] is False
        assert data['amount'] == 2000
        assert data['clientSecret']
        assert data['mockMode'] is True

    def test_free_checkout(self, client, auth_headers, freebie):
        response = client.post('/api/checkout/intent', json=self.intent_body(freebie), headers=auth_headers)

        data = response.get_json()
        assert data['isFree'] is True
        assert data['freeOrder']['status'] == COMPLETED
        assert 'clientSecret' not in data

    def test_missing_items(self, client, auth_headers):
        response = client.post('/api/checkout/intent', json={}, headers=auth_headers)
        assert response.status_code == 400
        assert 'items' in response.get_json()['details']

    def test_idempotency_key_replays(self, client, auth_headers, backend, product):
        headers = dict(auth_headers, **{'Idempotency-Key': 'checkout-1'})
        first = client.post('/api/checkout/intent', json=self.intent_body(product), headers=headers)
        second = client.post('/api/checkout/intent', json=self.intent_body(product), headers=headers)

        assert second.status_code == 200
        assert second.get_json()['paymentIntentId'] == first.get_json()['paymentIntentId']
        assert backend.calls.count('create_payment_intent') == 1
        assert Order.query.count() == 1

    def test_idempotency_key_replays_with_redis_down(self, app, client, auth_headers, product):
        unreachable = MagicMock()
        unreachable.get.side_effect = redis.ConnectionError("connection refused")
        unreachable.setex.side_effect = redis.ConnectionError("connection refused")
        app.extensions['idempotency'] = IdempotencyService(unreachable)
        headers = dict(auth_headers, **{'Idempotency-Key': 'checkout-3'})

        first = client.post('/api/checkout/intent', json=self.intent_body(product), headers=headers)
        second = client.post('/api/checkout/intent', json=self.intent_body(product), headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json()['paymentIntentId'] == first.get_json()['paymentIntentId']
        assert second.get_json()['orderId'] == first.get_json()['orderId']
        assert Order.query.count() == 1

    def test_idempotency_key_conflict(self, client, auth_headers, product):
        headers = dict(auth_headers, **{'Idempotency-Key': 'checkout-2'})
        client.post('/api/checkout/intent', json=self.intent_body(product), headers=headers)
        response = client.post('/api/checkout/intent', json=self.intent_body(product, 2), headers=headers)

        assert response.status_code == 409
        assert response.get_json()['error'] == 'idempotency_conflict'

    def test_confirm(self, client, auth_headers, product):
        intent_id = client.post('/api/checkout/intent', json=self.intent_body(product),
                                headers=auth_headers).get_json()['paymentIntentId']

        response = client.post('/api/checkout/confirm', headers=auth_headers,
                               json={'paymentIntentId': intent_id, 'paymentMethod': 'pm_card_visa'})
        assert response.status_code == 200
        assert response.get_json()['status'] == COMPLETED
        assert License.query.filter_by(user_id=USER_ID).count() == 1

    def test_confirm_declined(self, client, auth_headers, product):
        intent_id = client.post('/api/checkout/intent', json=self.intent_body(product),
                                headers=auth_headers).get_json()['paymentIntentId']

        response = client.post('/api/checkout/confirm', headers=auth_headers,
                               json={'paymentIntentId': intent_id, 'paymentMethod': DECLINED_CARD})
        assert response.status_code == 402
        data = response.get_json()
        assert data['error'] == 'payment_declined'
        assert data['decline_code'] == 'card_declined'

    def test_provider_outage(self, client, auth_headers, backend, product):
        backend.unavailable = True
        response = client.post('/api/checkout/intent', json=self.intent_body(product), headers=auth_headers)
        assert response.status_code == 503

    def test_subscription(self, client, auth_headers):
        response = client.post('/api/checkout/subscription', json={'passType': 'yearly'}, headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['status'] == INCOMPLETE

        again = client.post('/api/checkout/subscription', json={'passType': 'monthly'}, headers=auth_headers)
        assert again.status_code == 409


class TestAccountRoutes:

    def test_licenses(self, client, auth_headers, license):
        data = client.get('/api/user/licenses', headers=auth_headers).get_json()
        assert data['total'] == 1
        assert data['licenses'][0]['license_key'] == license.license_key

    def test_orders_filtered_by_status(self, client, auth_headers, freebie, product):
        client.post('/api/checkout/intent', json={"items": [{"productId": freebie.id}]}, headers=auth_headers)
        client.post('/api/checkout/intent', json={"items": [{"productId": product.id}]}, headers=auth_headers)

        assert client.get('/api/user/orders', headers=auth_headers).get_json()['total'] == 2
        completed = client.get('/api/user/orders?status=completed', headers=auth_headers).get_json()
        assert [o['status'] for o in completed['orders']] == [COMPLETED]

    def test_access_pass(self, client, auth_headers):
        assert client.get('/api/user/access-pass', headers=auth_headers).get_json() == {
            'hasAccessPass': False, 'accessPass': None,
        }

    def test_download_history(self, client, auth_headers, product):
        client.get(f'/api/download/{product.id}', headers=auth_headers)

        data = client.get('/api/user/download-history', headers=auth_headers).get_json()
        assert len(data['downloads']) == 1
        assert data['downloads'][0]['success'] is False
        assert data['downloads'][0]['error_message'] == 'noLicense'

    def test_order_by_payment_intent_reconciles(self, client, auth_headers, backend, product):
        intent_id = client.post('/api/checkout/intent', json={"items": [{"productId": product.id}]},
                                headers=auth_headers).get_json()['paymentIntentId']
        backend.confirm_payment_intent(intent_id, 'pm_card_visa')

        response = client.get(f'/api/orders/by-payment-intent/{intent_id}', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['order']['status'] == COMPLETED

    def test_order_of_another_user(self, client, auth_headers, product):
        intent_id = client.post('/api/checkout/intent', json={"items": [{"productId": product.id}]},
                                headers=auth_headers).get_json()['paymentIntentId']

        response = client.get(f'/api/orders/by-payment-intent/{intent_id}', headers={'X-User-ID': 'user-2'})
        assert response.status_code == 404


class TestProductRoutes:

    def test_search(self, client, make_product):
        make_product(title="Icon Pack", price="5.00")
        make_product(title="Font Bundle", price="25.00")
        make_product(title="Hidden Pack", is_published=False)

        data = client.get('/api/products?q=pack').get_json()
        assert [p['title'] for p in data['products']] == ['Icon Pack']
        assert data['pagination']['total'] == 1

    def test_price_sort(self, client, make_product):
        make_product(title="B", price="25.00")
        make_product(title="A", price="5.00")

        data = client.get('/api/products?sort=price_asc').get_json()
        assert [p['title'] for p in data['products']] == ['A', 'B']

    def test_invalid_sort(self, client):
        response = client.get('/api/products?sort=random')
        assert response.status_code == 400

    def test_detail_hides_storage_keys(self, client, product):
        data = client.get(f'/api/products/{product.id}').get_json()
        assert data['title'] == 'UI Kit'
        assert data['files'] == [{'name': 'main.zip', 'size': 2048, 'content_type': 'application/zip'}]


class TestAdminRoutes:

    def test_grant(self, client, admin_headers, product):
        body = {'user_id': USER_ID, 'product_id': product.id, 'license_type': 'extended', 'order_id': 'COMP-1'}
        response = client.post('/api/admin/licenses', json=body, headers=admin_headers)

        assert response.status_code == 201
        license = response.get_json()['license']
        assert license['download_limit'] == 50
        assert license['order_id'] == 'COMP-1'

        again = client.post('/api/admin/licenses', json=body, headers=admin_headers)
        assert again.get_json()['license']['id'] == license['id']

    def test_grant_without_token(self, client, product):
        response = client.post('/api/admin/licenses', json={'user_id': USER_ID, 'product_id': product.id})
        assert response.status_code == 401

    def test_grant_with_wrong_token(self, client, product):
        response = client.post('/api/admin/licenses', json={'user_id': USER_ID, 'product_id': product.id},
                               headers={'Authorization': 'Bearer nope'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'invalid_admin_token'

    def test_grant_invalid_body(self, client, admin_headers, product):
        response = client.post('/api/admin/licenses', headers=admin_headers,
                               json={'user_id': USER_ID, 'product_id': product.id, 'license_type': 'gold'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'

    def test_grant_unknown_product(self, client, admin_headers):
        response = client.post('/api/admin/licenses', json={'user_id': USER_ID, 'product_id': 'missing'},
                               headers=admin_headers)
        assert response.status_code == 404

    def test_deactivate(self, client, admin_headers, license):
        response = client.post(f'/api/admin/licenses/{license.id}/deactivate',
                               json={'reason': 'chargeback'}, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['license']['is_active'] is False


class TestJWTIdentity:

    def test_bearer_token_identifies_caller(self, app, client, license):
        token = create_access_token(identity=USER_ID, additional_claims={'email': 'jwt@example.com'})
        response = client.get('/api/user/licenses', headers={'Authorization': f'Bearer {token}'})

        assert response.status_code == 200
        assert response.get_json()['total'] == 1

    def test_invalid_bearer_token(self, client):
        response = client.get('/api/user/licenses', headers={'Authorization': 'Bearer not.a.jwt'})
        assert response.status_code == 401
