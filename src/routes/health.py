# -*- coding: utf-8 -*-

from flask import Blueprint, jsonify, current_app
import time
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.infra.db import db
from src.infra.log import get_logger

logger = get_logger('storefront.health')
health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Liveness check endpoint (available at both /health and /healthz)."""
    return jsonify({
        'status': 'healthy',
        'service': 'storefront-api',
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """
    Readiness check: the database answers and a payment backend is wired.

    Redis is reported too. The idempotency and token stores fail open, so
    an unreachable Redis degrades the service without making it unready.
    """
    checks = {'database': True, 'payment_backend': 'payment_backend' in current_app.extensions}
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Readiness database check failed", error=str(e))
        checks['database'] = False

    ready = all(checks.values())
    status = 'ready' if ready else 'not_ready'

    idempotency = current_app.extensions.get('idempotency')
    if idempotency is not None:
        redis_health = idempotency.health_check()
        checks['redis'] = redis_health['status'] == 'healthy'
        if not checks['redis']:
            logger.warning("Readiness redis check failed", error=redis_health.get('error'))
            if ready:
                status = 'degraded'

    return jsonify({
        'status': status,
        'service': 'storefront-api',
        'timestamp': time.time(),
        'checks': checks
    }), 200 if ready else 503
