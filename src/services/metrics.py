# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Provides a centralized service for creating, registering, and collecting metrics.
Also includes middleware for automatically recording HTTP request metrics.
"""

import os
import time
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest


def init_metrics(app: Flask) -> None:
    """Initialize metrics service and endpoints."""
    service = MetricsService(registry=app.config.get('METRICS_REGISTRY'))
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def before_request():
            g.metrics_start_time = time.time()

        @app.after_request
        def after_request(response):
            started = getattr(g, 'metrics_start_time', None)
            duration = time.time() - started if started else 0.0
            rule = request.url_rule.rule if request.url_rule is not None else 'unmatched'
            service.record_http_request(
                route=rule,
                method=request.method,
                status_code=response.status_code,
                duration_seconds=duration
            )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.enabled = os.environ.get(
            "STOREFRONT_METRICS_ENABLED",
            "true").lower() == "true"
        self.registry = registry if registry is not None else REGISTRY

        if self.enabled:
            self.http_requests_total = Counter(
                "storefront_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "storefront_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.checkout_total = Counter(
                "storefront_checkout_total",
                "Checkout attempts by outcome.",
                ["result"],
                registry=self.registry
            )
            self.downloads_total = Counter(
                "storefront_downloads_total",
                "Download URLs issued by entitlement source.",
                ["source"],
                registry=self.registry
            )
            self.entitlement_denials_total = Counter(
                "storefront_entitlement_denials_total",
                "Denied download attempts by reason.",
                ["reason"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "storefront_webhook_events_total",
                "Provider webhook events by type and outcome.",
                ["type", "outcome"],
                registry=self.registry
            )
            self.idempotency_replays_total = Counter(
                "storefront_idempotency_replays_total",
                "Total number of idempotency replays.",
                registry=self.registry
            )

    def record_http_request(
            self,
            route: str,
            method: str,
            status_code: int,
            duration_seconds: float):
        """Record an HTTP request."""
        if self.enabled:
            self.http_requests_total.labels(
                route=route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=route, method=method).observe(duration_seconds)

    def record_checkout(self, result: str):
        if self.enabled:
            self.checkout_total.labels(result=result).inc()

    def record_download(self, source: str):
        if self.enabled:
            self.downloads_total.labels(source=source).inc()

    def record_entitlement_denial(self, reason: str):
        if self.enabled:
            self.entitlement_denials_total.labels(reason=reason).inc()

    def record_webhook_event(self, event_type: str, outcome: str):
        if self.enabled:
            self.webhook_events_total.labels(type=event_type, outcome=outcome).inc()

    def record_idempotency_replay(self):
        if self.enabled:
            self.idempotency_replays_total.inc()


def record(method_name: str, *args):
    """Call a MetricsService recorder if metrics are initialised for the current app."""
    service = get_metrics_service()
    if service is not None:
        getattr(service, method_name)(*args)
