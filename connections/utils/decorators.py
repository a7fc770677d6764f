"""
Authentication Decorators

Contains decorators for HTTP and WebSocket authentication and for the
per-device instance identifier.
"""

from functools import wraps
from flask import request, jsonify
from flask_socketio import emit

from .helpers import INSTANCE_ID_HEADER, get_instance_id


def _bearer_token():
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        return None
    return auth_header.split(' ', 1)[1].strip() or None


def require_auth(f):
    """
    Decorator to require authentication for protected HTTP endpoints.

    Sets request.user to the verified account ({'id', 'username', ...}).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from ..services.auth_service import get_auth_service

        auth_service = get_auth_service()
        if not auth_service:
            return jsonify({
                'success': False,
                'error': 'Authentication service unavailable'
            }), 500

        token = _bearer_token()
        if not token:
            return jsonify({
                'success': False,
                'error': 'Authorization token required'
            }), 401

        result = auth_service.verify_token(token)
        if not result['success']:
            return jsonify({
                'success': False,
                'error': result['error']
            }), 401

        request.user = result['user']
        return f(*args, **kwargs)

    return decorated_function


def require_instance_id(f):
    """Decorator rejecting session requests without the device instance header."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not get_instance_id():
            return jsonify({
                'success': False,
                'error': f'{INSTANCE_ID_HEADER} header required'
            }), 400
        return f(*args, **kwargs)

    return decorated_function


def websocket_auth_required(f):
    """
    Decorator for WebSocket authentication.

    Event payloads carry 'token' and 'instance_id'; the handler receives
    user=... and instance_id=... keyword arguments.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from ..services.auth_service import get_auth_service

        auth_service = get_auth_service()
        if not auth_service or not args or not isinstance(args[0], dict) or 'token' not in args[0]:
            emit('error', {'error': 'Authentication required'})
            return

        result = auth_service.verify_token(args[0]['token'])
        if not result['success']:
            emit('error', {'error': result['error']})
            return

        instance_id = args[0].get('instance_id')
        if not instance_id:
            emit('error', {'error': 'instance_id is required'})
            return

        kwargs['user'] = result['user']
        kwargs['instance_id'] = instance_id
        return f(*args, **kwargs)

    return decorated_function
