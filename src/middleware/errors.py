"""
Error Handling Middleware
Renders the storefront error taxonomy and database failures as consistent JSON
"""
from flask import jsonify
from marshmallow import ValidationError as SchemaValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import OperationalError, IntegrityError

from src.infra.db import db
from src.infra.log import get_logger
from src.services.errors import StoreError, EntitlementDenied

logger = get_logger('storefront.errors')


def register_error_handlers(app):
    """Register error handlers for the storefront API"""

    @app.errorhandler(StoreError)
    def handle_store_error(e):
        """Handle domain errors; status and body come from the exception"""
        if isinstance(e, EntitlementDenied):
            logger.info(f"Entitlement denied: {e.reason}", reason=e.reason, status_code=e.status_code)
        elif e.status_code >= 500:
            logger.error(f"{e.code}: {e.message}", error_code=e.code, status_code=e.status_code)
        else:
            logger.info(f"{e.code}: {e.message}", error_code=e.code, status_code=e.status_code)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SchemaValidationError)
    def handle_schema_error(e):
        """Handle request body validation failures"""
        return jsonify({
            'error': 'validation_error',
            'message': 'Invalid request body',
            'details': e.messages
        }), 400

    @app.errorhandler(PydanticValidationError)
    def handle_pydantic_error(e):
        return jsonify({
            'error': 'validation_error',
            'message': 'Invalid request body',
            'details': [
                {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
                for err in e.errors()
            ]
        }), 400

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        """Handle database operational errors (connection, table not found, etc.)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        if 'does not exist' in error_msg or 'no such table' in error_msg:
            logger.error(f"Database table not found: {error_msg}")
            return jsonify({
                'error': 'feature_not_ready',
                'message': 'This feature requires database migration. Please contact support.'
            }), 503

        logger.error(f"Database operational error: {error_msg}")
        return jsonify({
            'error': 'provider_unavailable',
            'message': 'Database operation failed. Please try again later.'
        }), 503

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        """Handle database integrity errors (foreign key, unique constraint)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database integrity error: {error_msg}")

        if 'foreign key' in error_msg.lower():
            return jsonify({
                'error': 'invalid_reference',
                'message': 'Referenced entity does not exist'
            }), 400

        return jsonify({
            'error': 'duplicate_entry',
            'message': 'This entry already exists'
        }), 409

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'error': 'not_found', 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'error': 'method_not_allowed', 'message': 'Method not allowed'}), 405
