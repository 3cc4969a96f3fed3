"""
Structured JSON logging service for the storefront API.

Provides structured logging with:
- JSON format output when enabled (STOREFRONT_LOG_JSON)
- Request context integration (request_id, user_id)
- Typed helpers for checkout, entitlement, download and webhook events

Logs include: timestamp, level, message, request_id, method, path, status,
user_id, duration_ms, and other contextual information.
"""

import os
import json
import logging
from datetime import datetime, timezone
from flask import Flask, has_request_context
from src.services.request_context import get_request_context, get_request_id, elapsed_ms


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def __init__(self, json_enabled: bool = True):
        super().__init__()
        self.json_enabled = json_enabled

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON or plain text."""
        if not self.json_enabled:
            return super().format(record)

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if has_request_context():
            log_entry.update(get_request_context())

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured logger with request context integration."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_context(self, level: int, message: str, exc_info=None, **kwargs):
        """Log message with additional context."""
        extra_fields = kwargs.copy()

        if 'request_id' not in extra_fields and has_request_context():
            extra_fields['request_id'] = get_request_id()

        self.logger.log(level, message, exc_info=exc_info, extra={'extra_fields': extra_fields})

    def debug(self, message: str, **kwargs):
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_context(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log_with_context(logging.CRITICAL, message, **kwargs)

    # Convenience methods for common log types
    def log_request_start(self, method: str, path: str, **kwargs):
        """Log request start."""
        self.info(
            f"Request started: {method} {path}",
            event_type='request_start',
            method=method,
            path=path,
            **kwargs
        )

    def log_request_end(self, method: str, path: str, status_code: int, duration_ms: float, **kwargs):
        """Log request completion."""
        self.info(
            f"Request completed: {method} {path} - {status_code} ({duration_ms}ms)",
            event_type='request_end',
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs
        )

    def log_entitlement_event(self, user_id: str, product_id: str, allowed: bool, reason: str, **kwargs):
        """Log a download entitlement decision."""
        level = logging.INFO if allowed else logging.WARNING
        self._log_with_context(
            level,
            f"Entitlement {'granted' if allowed else 'denied'}: {reason}",
            event_type='entitlement',
            user_id=user_id,
            product_id=product_id,
            allowed=allowed,
            reason=reason,
            **kwargs
        )

    def log_payment_event(self, event: str, success: bool = True, **kwargs):
        """Log a checkout / payment event."""
        level = logging.INFO if success else logging.WARNING
        self._log_with_context(
            level,
            f"Payment {event}",
            event_type='payment',
            payment_event=event,
            success=success,
            **kwargs
        )

    def log_webhook_event(self, event_type: str, event_id: str, outcome: str, **kwargs):
        """Log a processed provider webhook."""
        self.info(
            f"Webhook {event_type} {outcome}",
            event_type='webhook',
            webhook_type=event_type,
            event_id=event_id,
            outcome=outcome,
            **kwargs
        )

    def log_idempotency_event(self, event: str, **kwargs):
        """Log idempotency event."""
        self.info(
            f"Idempotency {event}",
            event_type='idempotency',
            idempotency_event=event,
            **kwargs
        )


def get_logger(name: str) -> StructuredLogger:
    """Get structured logger instance."""
    return StructuredLogger(name)


def configure_logging(app: Flask):
    """Configure structured logging for Flask application."""
    json_enabled = os.environ.get('STOREFRONT_LOG_JSON', 'true').lower() == 'true'
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(StructuredFormatter(json_enabled=json_enabled))
    root_logger.addHandler(console_handler)

    app.logger.setLevel(getattr(logging, log_level, logging.INFO))

    loggers_to_configure = [
        'storefront.cart',
        'storefront.checkout',
        'storefront.entitlements',
        'storefront.downloads',
        'storefront.webhooks',
        'storefront.idempotency',
    ]

    for logger_name in loggers_to_configure:
        logging.getLogger(logger_name).setLevel(getattr(logging, log_level, logging.INFO))

    get_logger('storefront.config').info(
        "Logging configured",
        json_enabled=json_enabled,
        log_level=log_level,
        loggers_configured=loggers_to_configure
    )


class LoggingMiddleware:
    """Middleware for automatic request/response logging."""

    SKIP_PATHS = ('/health', '/healthz', '/readyz', '/metrics')

    def __init__(self, app: Flask):
        self.app = app
        self.logger = get_logger('storefront.requests')

        app.before_request(self._before_request)
        app.after_request(self._after_request)

    def _before_request(self):
        from flask import request

        if request.path in self.SKIP_PATHS:
            return

        self.logger.log_request_start(
            method=request.method,
            path=request.path,
            remote_addr=request.remote_addr,
            content_length=request.content_length
        )

    def _after_request(self, response):
        from flask import request

        if request.path in self.SKIP_PATHS:
            return response

        self.logger.log_request_end(
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=elapsed_ms(),
            content_length=response.content_length,
        )

        return response


def init_logging(app: Flask):
    """Initialize structured logging for Flask application."""
    configure_logging(app)
    LoggingMiddleware(app)

    get_logger('storefront.startup').info(
        "Application starting",
        debug=app.debug,
        testing=app.testing,
        mock_payments=app.config.get('STRIPE_MOCK_MODE'),
    )
