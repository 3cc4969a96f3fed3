# -*- coding: utf-8 -*-
"""
Per-request context for the storefront API.

Every request gets a request id (a caller-supplied UUID in ``X-Request-ID``
is kept, anything else is replaced) which is echoed back on the response and
stamped on each log line. The resolved caller and the client address used
for download audit rows live here too.
"""
import time
import uuid
from typing import Optional, Tuple

from flask import Flask, request, g, Response

REQUEST_ID_HEADER = 'X-Request-ID'


def _incoming_request_id() -> Optional[str]:
    value = request.headers.get(REQUEST_ID_HEADER)
    if not value:
        return None
    try:
        uuid.UUID(value)
    except ValueError:
        return None
    return value


def _client_address() -> Optional[str]:
    # First hop of X-Forwarded-For is the buyer when behind the load balancer
    forwarded = request.headers.get('X-Forwarded-For', '')
    first_hop = forwarded.split(',')[0].strip()
    return first_hop or request.remote_addr


def _elapsed_ms() -> Optional[float]:
    started = g.get('request_started')
    if started is None:
        return None
    return round((time.time() - started) * 1000, 2)


class RequestContextMiddleware:

    def __init__(self, app: Flask):
        app.before_request(self._open)
        app.after_request(self._close)

    def _open(self):
        g.request_id = _incoming_request_id() or str(uuid.uuid4())
        g.request_started = time.time()
        g.client_address = _client_address()
        g.client_user_agent = request.headers.get('User-Agent')

        # set by src.middleware.auth once the caller is resolved
        g.user_id = None
        g.pop('current_user', None)

    def _close(self, response: Response) -> Response:
        if 'request_id' in g:
            response.headers[REQUEST_ID_HEADER] = g.request_id
        elapsed = _elapsed_ms()
        if elapsed is not None:
            response.headers['X-Response-Time'] = f"{elapsed}ms"
        return response


def get_request_id() -> Optional[str]:
    return g.get('request_id')


def elapsed_ms() -> float:
    """Milliseconds since the request started, 0 outside the middleware."""
    return _elapsed_ms() or 0


def get_client() -> Tuple[Optional[str], Optional[str]]:
    """(address, user agent) of the caller, read from the request if the middleware is off."""
    if 'request_started' in g:
        return g.get('client_address'), g.get('client_user_agent')
    return _client_address(), request.headers.get('User-Agent')


def get_request_context() -> dict:
    """Fields merged into every structured log line written during a request."""
    context = {
        'request_id': g.get('request_id'),
        'method': request.method,
        'path': request.path,
        'remote_addr': g.get('client_address', request.remote_addr),
    }
    elapsed = _elapsed_ms()
    if elapsed is not None:
        context['duration_ms'] = elapsed
    if g.get('user_id'):
        context['user_id'] = g.user_id
    return context


def set_user_context(user_id: Optional[str]):
    if user_id:
        g.user_id = user_id


def init_request_context(app: Flask):
    return RequestContextMiddleware(app)
