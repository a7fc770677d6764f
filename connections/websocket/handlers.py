"""
WebSocket Event Handlers

Handles the WebSocket events of a running session: the per-second clock
tick (time trial expiry, snapshots, midnight notice), leaving the game, and
socket disconnects.
"""

from flask import request
from flask_socketio import emit, join_room, leave_room
from ..services.game_service import get_game_service
from ..utils.decorators import websocket_auth_required
from ..utils.game_logger import game_logger

# Simple tracking of connected sessions
connected_sessions = {}  # socket_id -> (user_id, instance_id)


def _account_room(user_id: str) -> str:
    return f"account_{user_id}"


def register_websocket_handlers(socketio):
    """Register all WebSocket event handlers."""

    @socketio.on('connect')
    def handle_connect():
        """Handle WebSocket connection."""
        pass

    @socketio.on('disconnect')
    def handle_disconnect():
        """Close the session of a dropped socket: final snapshot, release guard."""
        session_info = connected_sessions.pop(request.sid, None)
        if not session_info:
            return

        user_id, instance_id = session_info
        game_service = get_game_service()
        if not game_service:
            return

        result = game_service.exit_session(user_id, instance_id)
        if result['success']:
            game_logger.log_session_event(user_id, 'socket_disconnected', instance_id=instance_id)
        else:
            game_logger.log_session_event(user_id, 'socket_disconnect_exit_failed',
                                          instance_id=instance_id, error=result.get('error'))

    @socketio.on('join_session')
    @websocket_auth_required
    def handle_join_session(data, user=None, instance_id=None):
        """Attach this socket to the account's session for clock updates."""
        game_service = get_game_service()
        if not game_service:
            emit('error', {'error': 'Game service unavailable'})
            return

        result = game_service.get_state(user['id'], instance_id)
        if not result['success']:
            emit('error', {'error': result['error']})
            return

        connected_sessions[request.sid] = (user['id'], instance_id)
        join_room(_account_room(user['id']))
        emit('session_state', result)

    @socketio.on('tick')
    @websocket_auth_required
    def handle_tick(data, user=None, instance_id=None):
        """Per-second clock event from the client."""
        game_service = get_game_service()
        if not game_service:
            emit('error', {'error': 'Game service unavailable'})
            return

        result = game_service.tick(user['id'], instance_id)
        if not result['success']:
            emit('error', {'error': result['error'], 'retryable': result.get('retryable', False)})
            return

        emit('tick_update', result)
        if result['auto_solved']:
            game_logger.log_session_event(user['id'], 'time_trial_expired', instance_id=instance_id,
                                          puzzle_number=result['state']['puzzle_number'])
        if result['midnight_imminent']:
            emit('midnight_notice', {
                'message': 'A new puzzle is about to be released',
                'puzzle_number': result['state']['puzzle_number']
            })

    @socketio.on('leave_session')
    @websocket_auth_required
    def handle_leave_session(data, user=None, instance_id=None):
        """Explicit exit from the game."""
        game_service = get_game_service()
        if not game_service:
            emit('error', {'error': 'Game service unavailable'})
            return

        result = game_service.exit_session(user['id'], instance_id)
        if not result['success']:
            emit('error', {'error': result['error'], 'retryable': result.get('retryable', False)})
            return

        connected_sessions.pop(request.sid, None)
        leave_room(_account_room(user['id']))
        emit('session_closed', result)
