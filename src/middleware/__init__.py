# -*- coding: utf-8 -*-
"""
Middleware package for the storefront API
"""

from .auth import (
    get_current_user,
    get_current_user_id,
    require_user,
    require_admin_token
)
from .errors import register_error_handlers

__all__ = [
    'get_current_user',
    'get_current_user_id',
    'require_user',
    'require_admin_token',
    'register_error_handlers'
]
