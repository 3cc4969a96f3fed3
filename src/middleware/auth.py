# -*- coding: utf-8 -*-
"""
Caller identity and admin guards.

Authentication itself happens upstream. A request identifies its caller
either with a JWT (verified by flask_jwt_extended, identity = user id) or,
behind the trusted gateway, with the X-User-ID header. X-User-Email and
X-User-Name are passed on to payment customer creation.
"""
import hmac
import os
from functools import wraps
from typing import Optional, Dict

from flask import request, jsonify, g, current_app
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity, get_jwt
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from src.services.errors import AuthRequired
from src.services.request_context import set_user_context


def _jwt_identity() -> Optional[Dict[str, Optional[str]]]:
    """Identity from a bearer JWT, None when the request carries none."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    try:
        verify_jwt_in_request(optional=True)
    except (JWTExtendedException, PyJWTError) as e:
        raise AuthRequired(f'Invalid token: {e}')

    identity = get_jwt_identity()
    if not identity:
        return None
    claims = get_jwt()
    return {
        'user_id': str(identity),
        'email': claims.get('email'),
        'name': claims.get('name'),
    }


def get_current_user() -> Optional[Dict[str, Optional[str]]]:
    """Resolve the caller once per request: JWT first, then gateway headers."""
    if 'current_user' in g:
        return g.current_user

    user = _jwt_identity()
    if user is None:
        user_id = (request.headers.get('X-User-ID') or '').strip()
        if user_id:
            user = {
                'user_id': user_id,
                'email': request.headers.get('X-User-Email'),
                'name': request.headers.get('X-User-Name'),
            }

    g.current_user = user
    if user:
        set_user_context(user['user_id'])
    return user


def get_current_user_id() -> Optional[str]:
    user = get_current_user()
    return user['user_id'] if user else None


def require_user(f):
    """Decorator that rejects requests without a caller identity (401)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if get_current_user() is None:
            raise AuthRequired('Authentication required. Include X-User-ID or a bearer token.')
        return f(*args, **kwargs)
    return decorated_function


def require_admin_token(f):
    """Decorator to require STOREFRONT_ADMIN_TOKEN for admin endpoints."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_token = current_app.config.get('STOREFRONT_ADMIN_TOKEN') or os.environ.get('STOREFRONT_ADMIN_TOKEN')
        if not admin_token:
            return jsonify({
                'error': 'admin_not_configured',
                'message': 'Admin token not configured'
            }), 500

        provided_token = request.headers.get('Authorization')
        if not provided_token:
            return jsonify({
                'error': 'admin_token_required',
                'message': 'Authorization header required'
            }), 401

        # Support both "Bearer <token>" and direct token formats
        if provided_token.startswith('Bearer '):
            provided_token = provided_token[7:]

        if not hmac.compare_digest(provided_token.encode(), admin_token.encode()):
            return jsonify({
                'error': 'invalid_admin_token',
                'message': 'Invalid admin token'
            }), 401

        return f(*args, **kwargs)
    return decorated_function
