import os
import tempfile
from decimal import Decimal

import pytest
from prometheus_client import CollectorRegistry

# Set test environment variables
os.environ["TESTING"] = "true"
os.environ["STRIPE_MOCK_MODE"] = "true"
os.environ["STOREFRONT_LOG_JSON"] = "false"

from src.database import db  # noqa: E402
from src.models.product import Product  # noqa: E402
from src.services.idempotency import IdempotencyService  # noqa: E402
from src.services.payments.mock_backend import MockPaymentBackend  # noqa: E402
from src.services.token_store import TokenStore  # noqa: E402

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ADMIN_TOKEN = "test-admin-token"


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the stores call."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def get(self, key):
        return self.data.get(key)

    def ping(self):
        return True


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()
    from src.factory import create_app
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SECRET_KEY": "test-secret-key",
        "JWT_SECRET_KEY": "test-jwt-secret",
        "DOWNLOAD_TOKEN_SECRET": "test-download-secret",
        "DOWNLOAD_TOKEN_TTL_SECONDS": 300,
        "PUBLIC_BASE_URL": "http://localhost:5000",
        "STORAGE_BASE_URL": "https://files.test/storage",
        "STOREFRONT_ADMIN_TOKEN": ADMIN_TOKEN,
        "METRICS_REGISTRY": CollectorRegistry(),
        "PAYMENT_BACKEND": MockPaymentBackend(),
        "TOKEN_STORE": TokenStore(FakeRedis()),
        "IDEMPOTENCY_SERVICE": IdempotencyService(FakeRedis()),
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def backend(app):
    return app.extensions["payment_backend"]


@pytest.fixture
def auth_headers():
    return {"X-User-ID": USER_ID, "X-User-Email": "buyer@example.com", "X-User-Name": "Test Buyer"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def make_product(app):
    """Factory for catalog products; one zip file unless files= is given."""
    def _make(title="UI Kit", price="20.00", files=None, **kwargs):
        product = Product(
            title=title,
            price=Decimal(price),
            file_manifest=files if files is not None else [{
                "key": f"products/{title.lower().replace(' ', '-')}/main.zip",
                "name": "main.zip",
                "content_type": "application/zip",
                "size": 2048,
            }],
            **kwargs
        )
        db.session.add(product)
        db.session.commit()
        return product
    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def freebie(make_product):
    return make_product(title="Free Icons", price="0", freebie=True)
