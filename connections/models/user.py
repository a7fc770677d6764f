"""
Account Data Models

Contains the per-account document: archive of played games, the latest save
state, the active instance guard and the achievement counters.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .game import DifficultyColor
from .records import PlayedGameRecord, SessionSaveState
from ..config.game_settings import ACHIEVEMENT_THRESHOLDS
from ..utils.game_logger import game_logger
from ..utils.helpers import date_to_string, string_to_date

# Achievement kind -> persisted counter key
ACHIEVEMENT_COUNTERS: Dict[str, str] = {
    "regular": "regular_games_completed",
    "time_trial": "time_trials_completed",
    "no_mistakes": "no_mistakes_completed",
    "under_time": "time_trials_under_time_completed",
}


@dataclass
class AccountRecord:
    """Account document as read from, and written back to, the account store."""
    user_id: str
    username: str = ""
    is_guest: bool = True
    created_at: Optional[datetime] = None
    played_games: Dict[int, PlayedGameRecord] = field(default_factory=dict)
    latest_save_state: Optional[SessionSaveState] = None
    active_instance_id: Optional[str] = None
    active_instance_updated_at: Optional[datetime] = None
    counters: Dict[str, int] = field(default_factory=lambda: {key: 0 for key in ACHIEVEMENT_COUNTERS.values()})

    @property
    def has_latest_save_state(self) -> bool:
        return self.latest_save_state is not None

    def has_played(self, puzzle_number: int) -> bool:
        return puzzle_number in self.played_games

    def get_played(self, puzzle_number: int) -> Optional[PlayedGameRecord]:
        return self.played_games.get(puzzle_number)

    def counter(self, kind: str) -> int:
        return self.counters.get(ACHIEVEMENT_COUNTERS[kind], 0)

    def has_completed_achievement(self, kind: str, color: DifficultyColor) -> bool:
        """
        Whether the counter for an achievement kind reached the color's threshold.

        Args:
            kind: One of "regular", "time_trial", "no_mistakes", "under_time"
            color: Achievement tier

        Raises:
            KeyError: If kind is unknown
        """
        return self.counter(kind) >= ACHIEVEMENT_THRESHOLDS[color.to_db()]

    def achievements_summary(self) -> Dict[str, List[str]]:
        """Completed tiers per achievement kind."""
        return {
            kind: [color.to_db() for color in DifficultyColor.all_colors()
                   if self.has_completed_achievement(kind, color)]
            for kind in ACHIEVEMENT_COUNTERS
        }

    def to_document(self) -> Dict:
        doc = {
            "user_id": self.user_id,
            "username": self.username,
            "is_guest": self.is_guest,
            "created_at": date_to_string(self.created_at),
            "played_games": [self.played_games[n].to_document() for n in sorted(self.played_games)],
            "latest_game_save_state": self.latest_save_state.to_document() if self.latest_save_state else None,
            "has_latest_game_save_state": self.has_latest_save_state,
            "active_instance_id": self.active_instance_id,
            "active_instance_updated_at": date_to_string(self.active_instance_updated_at),
        }
        doc.update(self.counters)
        return doc

    @classmethod
    def from_document(cls, doc: Dict) -> "AccountRecord":
        """
        Parse an account document.

        Malformed save states and played-game entries are dropped with a
        warning instead of failing the whole account.

        Raises:
            ValueError: If the document has no user_id
        """
        if not isinstance(doc, dict) or not isinstance(doc.get("user_id"), str):
            raise ValueError(f"Malformed account document: {doc!r}")

        user_id = doc["user_id"]

        save_state = None
        if doc.get("has_latest_game_save_state") and doc.get("latest_game_save_state") is not None:
            try:
                save_state = SessionSaveState.from_document(doc["latest_game_save_state"])
            except ValueError as e:
                game_logger.log_session_event(user_id, 'malformed_save_state_ignored',
                                              level=logging.WARNING, error=str(e))

        played_games: Dict[int, PlayedGameRecord] = {}
        raw_played = doc.get("played_games") or []
        for raw_record in raw_played:
            try:
                record = PlayedGameRecord.from_document(raw_record)
            except ValueError as e:
                game_logger.log_session_event(user_id, 'malformed_played_game_ignored',
                                              level=logging.WARNING, error=str(e))
                continue
            played_games.setdefault(record.puzzle_number, record)

        counters = {}
        for key in ACHIEVEMENT_COUNTERS.values():
            value = doc.get(key, 0)
            counters[key] = value if isinstance(value, int) and not isinstance(value, bool) else 0

        try:
            created_at = string_to_date(doc.get("created_at"))
            guard_updated_at = string_to_date(doc.get("active_instance_updated_at"))
        except ValueError as e:
            game_logger.log_session_event(user_id, 'malformed_timestamps_ignored',
                                          level=logging.WARNING, error=str(e))
            created_at = None
            guard_updated_at = None

        return cls(
            user_id=user_id,
            username=doc.get("username") or "",
            is_guest=bool(doc.get("is_guest", True)),
            created_at=created_at,
            played_games=played_games,
            latest_save_state=save_state,
            active_instance_id=doc.get("active_instance_id") or None,
            active_instance_updated_at=guard_updated_at,
            counters=counters,
        )
