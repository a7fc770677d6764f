"""
Authentication Controller

Handles guest account creation and token verification endpoints.
"""

from flask import Blueprint, request, jsonify
from ..services.auth_service import get_auth_service
from ..utils.decorators import require_auth
from ..utils.game_logger import game_logger

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/guest', methods=['POST'])
def create_guest():
    """Create a guest account and return its JWT token."""
    try:
        auth_service = get_auth_service()
        if not auth_service:
            return jsonify({
                'success': False,
                'error': 'Authentication service unavailable'
            }), 500

        data = request.get_json(silent=True) or {}
        username = data.get('username')

        game_logger.log_user_action(request, 'create_guest', extra_data={'username': username})

        result = auth_service.create_guest(username)

        if result['success']:
            game_logger.log_server_response(request, 'create_guest', True, {
                'success': True,
                'user': result['user']  # Don't log the token
            })
            return jsonify(result), 201
        else:
            game_logger.log_server_response(request, 'create_guest', False, result)
            return jsonify(result), 400

    except Exception as e:
        game_logger.log_error(request, e, 'create_guest')
        error_response = {
            'success': False,
            'error': str(e)
        }
        game_logger.log_server_response(request, 'create_guest', False, error_response)
        return jsonify(error_response), 500


@auth_bp.route('/verify', methods=['GET'])
@require_auth
def verify_token():
    """Verify JWT token and return user info."""
    try:
        # User data is already in request.user from the decorator
        response_data = {
            'success': True,
            'user': request.user
        }

        game_logger.log_server_response(request, 'verify_token', True, response_data)
        return jsonify(response_data)

    except Exception as e:
        game_logger.log_error(request, e, 'verify_token')
        error_response = {
            'success': False,
            'error': str(e)
        }
        game_logger.log_server_response(request, 'verify_token', False, error_response)
        return jsonify(error_response), 500
