"""
Session Record Models

Contains the two persisted records of a play-through: the overwritable save
state of an in-progress session and the immutable archival record written
once a session ends.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .game import GameType, Guess, Word, sort_words
from ..utils.helpers import date_to_string, string_to_date


def _guesses_to_document(guesses: List[Guess]) -> List[List[Dict]]:
    return [[word.to_document() for word in sort_words(guess)] for guess in guesses]


def _guesses_from_document(raw) -> List[Guess]:
    if not isinstance(raw, list):
        raise ValueError(f"Guess list must be a list: {raw!r}")
    guesses = []
    for raw_guess in raw:
        if not isinstance(raw_guess, list):
            raise ValueError(f"Guess must be a list of words: {raw_guess!r}")
        guesses.append(frozenset(Word.from_document(doc) for doc in raw_guess))
    return guesses


def _require(doc: Dict, key: str, expected_type):
    value = doc.get(key)
    # bool is an int subclass; keep counters and flags apart
    if expected_type is int and isinstance(value, bool):
        raise ValueError(f"Field {key!r} must be an integer")
    if not isinstance(value, expected_type):
        raise ValueError(f"Field {key!r} missing or of wrong type: {value!r}")
    return value


@dataclass
class SessionSaveState:
    """
    Snapshot of an in-progress session, overwritten after every action.

    grid_words holds the board row by row; rows already solved are persisted
    as empty lists so the unsolved arrangement keeps its row positions.
    """
    puzzle_number: int
    game_type: GameType
    hints_left: int
    mistakes_left: int
    grid_words: List[List[Word]]
    guesses: List[Guess]
    game_start_time: datetime
    save_state_creation_time: datetime
    game_finished: bool = False

    def arrangement(self) -> List[Word]:
        """Unsolved words in row-major order."""
        return [word for row in self.grid_words for word in row]

    def elapsed_seconds(self) -> float:
        return max(0.0, (self.save_state_creation_time - self.game_start_time).total_seconds())

    def to_document(self) -> Dict:
        return {
            "puzzle_number": self.puzzle_number,
            "game_type": self.game_type.value,
            "hints_left_count": self.hints_left,
            "mistakes_left_count": self.mistakes_left,
            "grid_words": [[word.to_document() for word in row] for row in self.grid_words],
            "guesses": _guesses_to_document(self.guesses),
            "game_start_time": date_to_string(self.game_start_time),
            "save_state_creation_time": date_to_string(self.save_state_creation_time),
            "is_game_finished": self.game_finished,
        }

    @classmethod
    def from_document(cls, doc: Dict) -> "SessionSaveState":
        """
        Parse a persisted save state.

        Raises:
            ValueError: If any field is missing or malformed
        """
        if not isinstance(doc, dict):
            raise ValueError(f"Malformed save state: {doc!r}")

        raw_grid = doc.get("grid_words")
        if not isinstance(raw_grid, list) or not all(isinstance(row, list) for row in raw_grid):
            raise ValueError(f"Malformed grid_words: {raw_grid!r}")

        start = string_to_date(_require(doc, "game_start_time", str))
        created = string_to_date(_require(doc, "save_state_creation_time", str))

        return cls(
            puzzle_number=_require(doc, "puzzle_number", int),
            game_type=GameType.from_db(_require(doc, "game_type", str)),
            hints_left=_require(doc, "hints_left_count", int),
            mistakes_left=_require(doc, "mistakes_left_count", int),
            grid_words=[[Word.from_document(w) for w in row] for row in raw_grid],
            guesses=_guesses_from_document(doc.get("guesses")),
            game_start_time=start,
            save_state_creation_time=created,
            game_finished=bool(doc.get("is_game_finished", False)),
        )


@dataclass
class PlayedGameRecord:
    """
    Archival record of a finished session, one per account and puzzle number.

    game_type decides which optional fields exist: time_limit and
    completed_before_limit are present only for time trials.
    """
    puzzle_number: int
    game_type: GameType
    mistakes_made: int
    hints_used: int
    connection_count: int
    guesses: List[Guess]
    won: bool
    game_start_time: datetime
    game_end_time: datetime
    time_limit: Optional[int] = None
    completed_before_limit: Optional[bool] = None

    def __post_init__(self):
        if self.game_type is GameType.TIME_TRIAL:
            if self.time_limit is None:
                raise ValueError("Time trial records require a time_limit")
            if self.completed_before_limit is None:
                self.completed_before_limit = False
        else:
            self.time_limit = None
            self.completed_before_limit = None

    @property
    def is_timed(self) -> bool:
        return self.game_type is GameType.TIME_TRIAL

    @property
    def time_completed(self) -> int:
        """Whole seconds between start and end."""
        return max(0, int((self.game_end_time - self.game_start_time).total_seconds()))

    def to_document(self) -> Dict:
        doc = {
            "puzzle_number": self.puzzle_number,
            "mistakes_made_count": self.mistakes_made,
            "hints_used_count": self.hints_used,
            "connection_count": self.connection_count,
            "guesses": _guesses_to_document(self.guesses),
            "won": self.won,
            "game_type": self.game_type.value,
            "game_start_time": date_to_string(self.game_start_time),
            "game_end_time": date_to_string(self.game_end_time),
        }
        if self.is_timed:
            doc["time_limit"] = self.time_limit
            doc["completed"] = self.completed_before_limit
        return doc

    @classmethod
    def from_document(cls, doc: Dict) -> "PlayedGameRecord":
        """
        Parse an archived record.

        Raises:
            ValueError: If any field is missing or malformed
        """
        if not isinstance(doc, dict):
            raise ValueError(f"Malformed played game record: {doc!r}")

        game_type = GameType.from_db(_require(doc, "game_type", str))
        if game_type is GameType.NONE:
            raise ValueError("Played game record has no game type")

        time_limit = None
        completed = None
        if game_type is GameType.TIME_TRIAL:
            time_limit = _require(doc, "time_limit", int)
            completed = bool(doc.get("completed", False))

        return cls(
            puzzle_number=_require(doc, "puzzle_number", int),
            game_type=game_type,
            mistakes_made=_require(doc, "mistakes_made_count", int),
            hints_used=_require(doc, "hints_used_count", int),
            connection_count=_require(doc, "connection_count", int),
            guesses=_guesses_from_document(doc.get("guesses")),
            won=_require(doc, "won", bool),
            game_start_time=string_to_date(_require(doc, "game_start_time", str)),
            game_end_time=string_to_date(_require(doc, "game_end_time", str)),
            time_limit=time_limit,
            completed_before_limit=completed,
        )
