"""
Utilities Package

Contains utility functions, decorators, and helper modules.
"""

from .decorators import require_auth, require_instance_id, websocket_auth_required
from .helpers import get_user_identity, get_instance_id, utc_now
from .game_logger import game_logger

__all__ = [
    'require_auth', 'require_instance_id', 'websocket_auth_required',
    'get_user_identity', 'get_instance_id', 'utc_now', 'game_logger'
]
