"""
Game Logger Module for the Connections Server

One JSON object per line, written to logs/game_log_<date>.log. Four event
types share the format: USER_ACTION and SERVER_RESPONSE_* for HTTP traffic,
SESSION_EVENT for the engine (entries, endings, guard changes, rollbacks) and
ERROR for unexpected exceptions in request handlers.
"""

import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..config.app_config import Config

# State fields kept when a response is logged; the board itself is dropped
_LOGGED_STATE_FIELDS = (
    'phase', 'puzzle_number', 'game_type', 'mistakes_left',
    'hints_left', 'solved_row_count', 'won', 'ran_out_of_time'
)


class GameLogger:
    """Structured logger for the server and the session engine."""

    def __init__(self, log_dir: str = "logs", level: str = "INFO"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.level = getattr(logging, str(level).upper(), logging.INFO)
        self.logger = self._setup_logger()

    @property
    def log_file(self) -> Path:
        return self.log_dir / f"game_log_{datetime.now().strftime('%Y-%m-%d')}.log"

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger('connections_game')
        logger.setLevel(self.level)

        # Re-initialising must not stack handlers
        if logger.handlers:
            logger.handlers.clear()

        file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
        file_handler.setLevel(self.level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

        # Console only shows warnings and errors
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        return logger

    def _emit(self, level: int, event_type: str, action: str,
              who: Dict[str, Optional[str]], details: Dict[str, Any]) -> None:
        entry = {
            'timestamp': datetime.now().isoformat(),
            'event_type': event_type,
            'action': action,
            'user': who,
            'details': details
        }
        self.logger.log(level, json.dumps(entry, ensure_ascii=False, default=str))

    @staticmethod
    def _request_identity(request) -> Dict[str, Optional[str]]:
        from .helpers import get_user_identity
        return get_user_identity(request)

    def log_user_action(self, request, action: str, **kwargs):
        """
        Log an incoming request.

        Args:
            request: Flask request object
            action: Action name (e.g. 'enter_session', 'submit_guess')
            **kwargs: Request parameters worth keeping
        """
        details = {'endpoint': request.endpoint, 'method': request.method, **kwargs}
        self._emit(logging.INFO, 'USER_ACTION', action, self._request_identity(request), details)

    def log_server_response(self, request, action: str, success: bool,
                            response_data: Dict[str, Any], **kwargs):
        """
        Log the response sent for an action. Failures are logged at ERROR.

        Args:
            request: Flask request object
            action: Action that was performed
            success: Whether the action succeeded
            response_data: Body returned to the client
        """
        details = {
            'success': success,
            'response_data': self._sanitize_response_data(response_data),
            **kwargs
        }
        event_type = 'SERVER_RESPONSE_SUCCESS' if success else 'SERVER_RESPONSE_ERROR'
        level = logging.INFO if success else logging.ERROR
        self._emit(level, event_type, action, self._request_identity(request), details)

    def log_session_event(self, account_id: Optional[str], event: str,
                          level: int = logging.INFO, **kwargs):
        """
        Log an engine event that is not tied to a request.

        Args:
            account_id: Account the event concerns (None for server-wide events)
            event: Event name (e.g. 'game_won', 'save_state_discarded')
            level: Logging level
            **kwargs: Event details; instance_id is moved into the identity block
        """
        who = {'user_ip': None, 'user_id': account_id, 'instance_id': kwargs.pop('instance_id', None)}
        self._emit(level, 'SESSION_EVENT', event, who, kwargs)

    def log_error(self, request, error: Exception, action: str):
        details = {'error_type': type(error).__name__, 'error_message': str(error)}
        self._emit(logging.ERROR, 'ERROR', action, self._request_identity(request), details)

    def _sanitize_response_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask tokens and reduce session state to its counters."""
        if not isinstance(data, dict):
            return {'data_type': type(data).__name__}

        sanitized = dict(data)
        if 'token' in sanitized:
            sanitized['token'] = '***'

        state = sanitized.get('state')
        if isinstance(state, dict):
            summary = {name: state.get(name) for name in _LOGGED_STATE_FIELDS}
            summary['guesses_count'] = len(state.get('guesses', []))
            sanitized['state'] = summary

        return sanitized

    def get_log_stats(self) -> Dict[str, Any]:
        """
        Count today's entries by event type, plus the session events by name.

        Returns:
            dict: file info and counts, or {'error': ...} if unreadable
        """
        log_file = self.log_file
        if not log_file.exists():
            return {'error': 'No log file found for today'}

        by_type: Counter = Counter()
        session_events: Counter = Counter()
        try:
            with open(log_file, 'r', encoding='utf-8') as f:
                for line in f:
                    if not line.strip():
                        continue
                    # "<asctime> | <level> | <json>"
                    payload = line.strip().split(' | ', 2)[-1]
                    try:
                        entry = json.loads(payload)
                    except ValueError:
                        by_type['UNSTRUCTURED'] += 1
                        continue
                    by_type[entry.get('event_type', 'UNKNOWN')] += 1
                    if entry.get('event_type') == 'SESSION_EVENT':
                        session_events[entry.get('action')] += 1
        except OSError as e:
            return {'error': f'Failed to get stats: {str(e)}'}

        return {
            'log_file': str(log_file),
            'file_size_mb': round(log_file.stat().st_size / (1024 * 1024), 2),
            'total_entries': sum(by_type.values()),
            'by_event_type': dict(by_type),
            'session_events': dict(session_events)
        }


# Global logger instance
game_logger = GameLogger(Config.LOG_DIR, Config.LOG_LEVEL)
