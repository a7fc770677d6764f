"""
Game Controller

Handles all session-related HTTP endpoints. Every session route requires a
bearer token and the X-Instance-ID header identifying the device.
"""

from flask import Blueprint, request, jsonify, current_app
from ..services.game_service import get_game_service
from ..services.puzzle_service import get_puzzle_service
from ..services.rotation_service import RotationClockError, get_rotation_clock
from ..services.store import PersistenceError
from ..utils.decorators import require_auth, require_instance_id
from ..utils.game_logger import game_logger
from ..utils.helpers import get_instance_id

game_bp = Blueprint('game', __name__)


def _status_code(result: dict) -> int:
    """Map a service result to an HTTP status code."""
    if result.get('success'):
        return 200
    if result.get('retryable'):
        return 503
    if 'No active session' in result.get('error', ''):
        return 404
    if 'another device' in result.get('error', ''):
        return 409
    return 400


def _run_session_action(action: str, call, **log_details):
    """
    Shared request flow for session actions: log the action, call the game
    service with (account_id, instance_id), log and return the response.
    """
    try:
        game_service = get_game_service()
        if not game_service:
            return jsonify({
                'success': False,
                'error': 'Game service unavailable'
            }), 500

        account_id = request.user['id']
        instance_id = get_instance_id()

        game_logger.log_user_action(request, action, **log_details)

        result = call(game_service, account_id, instance_id)
        status_code = _status_code(result)

        game_logger.log_server_response(request, action, result['success'], result)
        return jsonify(result), status_code

    except Exception as e:
        game_logger.log_error(request, e, action)
        error_response = {
            'success': False,
            'error': str(e)
        }
        game_logger.log_server_response(request, action, False, error_response)
        return jsonify(error_response), 500


@game_bp.route('/session/enter', methods=['POST'])
@require_auth
@require_instance_id
def enter_session():
    """Enter today's game: blocked, resume, view results or fresh mode select."""
    return _run_session_action(
        'enter_session',
        lambda service, account_id, instance_id: service.enter(account_id, instance_id)
    )


@game_bp.route('/session/state', methods=['GET'])
@require_auth
@require_instance_id
def get_state():
    """Get current session state."""
    return _run_session_action(
        'get_state',
        lambda service, account_id, instance_id: service.get_state(account_id, instance_id)
    )


@game_bp.route('/session/mode', methods=['POST'])
@require_auth
@require_instance_id
def select_mode():
    """Choose classic or time trial."""
    data = request.get_json(silent=True) or {}
    game_type = data.get('game_type')
    if not game_type:
        return jsonify({
            'success': False,
            'error': 'game_type is required ("classic" or "time_trial")'
        }), 400

    return _run_session_action(
        'select_mode',
        lambda service, account_id, instance_id: service.select_mode(account_id, instance_id, game_type),
        game_type=game_type
    )


@game_bp.route('/session/countdown_done', methods=['POST'])
@require_auth
@require_instance_id
def countdown_done():
    """Start the time trial clock once the countdown has been shown."""
    return _run_session_action(
        'countdown_done',
        lambda service, account_id, instance_id: service.finish_countdown(account_id, instance_id)
    )


@game_bp.route('/session/select', methods=['POST'])
@require_auth
@require_instance_id
def toggle_select():
    """Select or deselect a word on the board."""
    data = request.get_json(silent=True) or {}
    word = data.get('word')
    if not word or not isinstance(word, str):
        return jsonify({
            'success': False,
            'error': 'Word is required'
        }), 400

    return _run_session_action(
        'toggle_select',
        lambda service, account_id, instance_id: service.toggle_select(account_id, instance_id, word),
        word=word
    )


@game_bp.route('/session/deselect', methods=['POST'])
@require_auth
@require_instance_id
def deselect_all():
    return _run_session_action(
        'deselect_all',
        lambda service, account_id, instance_id: service.deselect_all(account_id, instance_id)
    )


@game_bp.route('/session/shuffle', methods=['POST'])
@require_auth
@require_instance_id
def shuffle():
    return _run_session_action(
        'shuffle',
        lambda service, account_id, instance_id: service.shuffle(account_id, instance_id)
    )


@game_bp.route('/session/submit', methods=['POST'])
@require_auth
@require_instance_id
def submit_guess():
    """Submit the current selection as a guess."""
    return _run_session_action(
        'submit_guess',
        lambda service, account_id, instance_id: service.submit_guess(account_id, instance_id)
    )


@game_bp.route('/session/hint', methods=['POST'])
@require_auth
@require_instance_id
def use_hint():
    return _run_session_action(
        'use_hint',
        lambda service, account_id, instance_id: service.use_hint(account_id, instance_id)
    )


@game_bp.route('/session/heartbeat', methods=['POST'])
@require_auth
@require_instance_id
def heartbeat():
    """Keep this device's claim on the account alive."""
    return _run_session_action(
        'heartbeat',
        lambda service, account_id, instance_id: service.heartbeat(account_id, instance_id)
    )


@game_bp.route('/session/exit', methods=['POST'])
@require_auth
@require_instance_id
def exit_session():
    """Leave the game: final snapshot, then release the device claim."""
    return _run_session_action(
        'exit_session',
        lambda service, account_id, instance_id: service.exit_session(account_id, instance_id)
    )


@game_bp.route('/puzzle/today', methods=['GET'])
def puzzle_today():
    """Today's puzzle number and the time until the next rotation."""
    try:
        rotation_clock = get_rotation_clock()
        if not rotation_clock:
            return jsonify({
                'success': False,
                'error': 'Rotation clock unavailable'
            }), 500

        response_data = {
            'success': True,
            'puzzle_number': rotation_clock.increment_if_needed(),
            'seconds_until_midnight': int(rotation_clock.seconds_until_midnight())
        }
        return jsonify(response_data)

    except (RotationClockError, PersistenceError) as e:
        game_logger.log_error(request, e, 'puzzle_today')
        return jsonify({'success': False, 'retryable': True, 'error': str(e)}), 503


@game_bp.route('/debug/rewind_clock', methods=['POST'])
def rewind_clock():
    """Debug only: move the rotation clock back so the next check rotates."""
    if not current_app.config.get('DEBUG'):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    try:
        rotation_clock = get_rotation_clock()
        if not rotation_clock:
            return jsonify({
                'success': False,
                'error': 'Rotation clock unavailable'
            }), 500

        data = request.get_json(silent=True) or {}
        hours = float(data.get('hours', 24))

        game_logger.log_user_action(request, 'rewind_clock', hours=hours)
        status = rotation_clock.rewind_clock_hours(hours)
        return jsonify({'success': True, 'status': status})

    except (ValueError, TypeError) as e:
        return jsonify({'success': False, 'error': f'Invalid hours: {e}'}), 400
    except (RotationClockError, PersistenceError) as e:
        game_logger.log_error(request, e, 'rewind_clock')
        return jsonify({'success': False, 'retryable': True, 'error': str(e)}), 503


@game_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    game_service = get_game_service()
    rotation_clock = get_rotation_clock()

    return jsonify({
        'status': 'healthy',
        'services': {
            'game_service': game_service is not None,
            'puzzle_service': get_puzzle_service() is not None,
            'rotation_clock': rotation_clock is not None
        },
        'active_sessions': game_service.get_active_sessions_count() if game_service else 0,
        'log_stats': game_logger.get_log_stats()
    })
