"""
Test suite for Prometheus metrics functionality.

Tests metrics collection, labels, the /metrics endpoint and the
STOREFRONT_METRICS_ENABLED switch.
"""

import pytest
import os
from unittest.mock import patch
from flask import Flask
from prometheus_client import CollectorRegistry

from src.services import metrics as metrics_module
from src.services.metrics import (
    MetricsService, get_metrics_service, init_metrics,
)


@pytest.fixture
def app():
    """Create test Flask app."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["METRICS_REGISTRY"] = CollectorRegistry()
    with app.app_context():
        init_metrics(app)
        yield app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def sample(service, name, labels=None):
    return service.registry.get_sample_value(name, labels or {})


class TestMetricsService:
    """Test MetricsService functionality."""

    def test_metrics_service_initialization(self, app):
        service = get_metrics_service()
        assert service.enabled is True
        assert service.registry is app.config["METRICS_REGISTRY"]
        assert hasattr(service, "checkout_total")
        assert hasattr(service, "downloads_total")
        assert hasattr(service, "webhook_events_total")

    def test_metrics_disabled(self):
        with patch.dict(os.environ, {"STOREFRONT_METRICS_ENABLED": "false"}):
            service = MetricsService(registry=CollectorRegistry())
        assert service.enabled is False
        service.record_checkout("completed")

    def test_domain_counters(self, app):
        service = get_metrics_service()
        service.record_checkout("completed")
        service.record_download("license")
        service.record_entitlement_denial("noLicense")
        service.record_webhook_event("payment_intent.succeeded", "applied")
        service.record_idempotency_replay()

        assert sample(service, "storefront_checkout_total", {"result": "completed"}) == 1
        assert sample(service, "storefront_downloads_total", {"source": "license"}) == 1
        assert sample(service, "storefront_entitlement_denials_total", {"reason": "noLicense"}) == 1
        assert sample(service, "storefront_webhook_events_total",
                      {"type": "payment_intent.succeeded", "outcome": "applied"}) == 1
        assert sample(service, "storefront_idempotency_replays_total") == 1

    def test_record_helper_uses_current_app(self, app):
        metrics_module.record("record_download", "free")
        assert sample(get_metrics_service(), "storefront_downloads_total", {"source": "free"}) == 1

    def test_record_helper_outside_app_context(self):
        metrics_module.record("record_download", "free")


class TestMetricsEndpoint:
    """Test the /metrics endpoint and request middleware."""

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.content_type.startswith("text/plain")
        assert b"storefront_http_requests_total" in response.data

    def test_metrics_endpoint_disabled(self):
        with patch.dict(os.environ, {"STOREFRONT_METRICS_ENABLED": "false"}):
            app = Flask(__name__)
            app.config["METRICS_REGISTRY"] = CollectorRegistry()
            init_metrics(app)
        assert app.test_client().get("/metrics").status_code == 404

    def test_requests_are_recorded_by_rule(self, app, client):
        @app.route("/items/<item_id>")
        def item(item_id):
            return {"id": item_id}

        client.get("/items/1")
        client.get("/items/2")

        service = get_metrics_service()
        assert sample(service, "storefront_http_requests_total",
                      {"route": "/items/<item_id>", "method": "GET", "status": "200"}) == 2
        assert sample(service, "storefront_http_request_duration_seconds_count",
                      {"route": "/items/<item_id>", "method": "GET"}) == 2

    def test_unmatched_route(self, client):
        client.get("/nowhere")
        service = get_metrics_service()
        assert sample(service, "storefront_http_requests_total",
                      {"route": "unmatched", "method": "GET", "status": "404"}) == 1
