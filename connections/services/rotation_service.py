"""
Rotation Service

Daily rotation clock: advances the active puzzle number once per calendar
day elapsed in the puzzle timezone, wrapping to the lowest puzzle number when
the catalogue runs out.
"""

import threading
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from .puzzle_service import PuzzleService
from .store import DocumentStore, SERVER_STATUS_COLLECTION
from ..config.game_settings import MIDNIGHT_TRIGGER_SECONDS
from ..utils.game_logger import game_logger
from ..utils.helpers import date_to_string, string_to_date, utc_now

ROTATION_STATUS_KEY = 'puzzle_rotation'


class RotationClockError(RuntimeError):
    """Raised when the rotation clock has no puzzles to rotate through."""


def _resolve_timezone(name: str) -> tzinfo:
    if not name or name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


class RotationClock:
    """
    Process-wide puzzle-of-the-day clock persisted in the server_status collection.

    Status document keys: today_puzzle_number, min_puzzle_number,
    max_puzzle_number, last_puzzle_date.
    """

    def __init__(self,
                 store: DocumentStore,
                 puzzle_service: PuzzleService,
                 timezone_name: str = 'UTC',
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.puzzle_service = puzzle_service
        self.tz = _resolve_timezone(timezone_name)
        self.clock = clock
        self._lock = threading.Lock()

    def _read_status(self) -> Optional[Dict]:
        return self.store.read(SERVER_STATUS_COLLECTION, ROTATION_STATUS_KEY)

    def _write_status(self, status: Dict) -> None:
        self.store.write(SERVER_STATUS_COLLECTION, ROTATION_STATUS_KEY, status)

    def _local_date(self, moment: datetime):
        return moment.astimezone(self.tz).date()

    def initialize(self, min_puzzle_number: int, max_puzzle_number: int,
                   now: Optional[datetime] = None) -> Dict:
        """
        Create the status document, or refresh its min/max bounds.

        An existing today_puzzle_number and last_puzzle_date are kept; a today
        number outside the new bounds is reset to the minimum.

        Args:
            min_puzzle_number: Lowest puzzle number in the store
            max_puzzle_number: Highest puzzle number in the store
            now: Current time (defaults to the clock)

        Returns:
            dict: The status document as written
        """
        if min_puzzle_number > max_puzzle_number:
            raise ValueError(f"Invalid puzzle range {min_puzzle_number}..{max_puzzle_number}")

        now = now or self.clock()
        with self._lock:
            status = self._read_status() or {}
            today = status.get("today_puzzle_number")
            if not isinstance(today, int) or not min_puzzle_number <= today <= max_puzzle_number:
                today = min_puzzle_number

            status = {
                "today_puzzle_number": today,
                "min_puzzle_number": min_puzzle_number,
                "max_puzzle_number": max_puzzle_number,
                "last_puzzle_date": status.get("last_puzzle_date") or date_to_string(now),
            }
            self._write_status(status)

        game_logger.logger.info(
            f"Rotation clock ready: puzzle {today} of {min_puzzle_number}..{max_puzzle_number}"
        )
        return status

    def _bootstrap(self, now: datetime) -> Dict:
        bounds = self.puzzle_service.puzzle_number_range()
        if bounds is None:
            raise RotationClockError("No puzzles available to rotate through")
        return self.initialize(bounds[0], bounds[1], now)

    def _next_number(self, current: int, status: Dict) -> int:
        candidate = current + 1
        if candidate > status["max_puzzle_number"] or not self.puzzle_service.has_puzzle(candidate):
            return status["min_puzzle_number"]
        return candidate

    def increment_if_needed(self, now: Optional[datetime] = None) -> int:
        """
        Advance the active puzzle once per local calendar day elapsed.

        Zero elapsed days is a no-op. last_puzzle_date is written only after
        every pending advance has been applied.

        Args:
            now: Current time (defaults to the clock)

        Returns:
            int: The active puzzle number after the check
        """
        now = now or self.clock()
        status = self._read_status()
        if status is None:
            status = self._bootstrap(now)

        with self._lock:
            status = self._read_status() or status
            last = string_to_date(status["last_puzzle_date"])
            days = (self._local_date(now) - self._local_date(last)).days
            current = status["today_puzzle_number"]
            if days <= 0:
                return current

            previous = current
            for _ in range(days):
                current = self._next_number(current, status)

            status["today_puzzle_number"] = current
            status["last_puzzle_date"] = date_to_string(now)
            self._write_status(status)

        game_logger.log_session_event(None, 'puzzle_rotated',
                                      previous_puzzle=previous, puzzle_number=current, days=days)
        return current

    def current_puzzle_number(self) -> int:
        status = self._read_status()
        if status is None:
            status = self._bootstrap(self.clock())
        return status["today_puzzle_number"]

    def status(self) -> Optional[Dict]:
        return self._read_status()

    def rewind_clock_hours(self, hours: float) -> Dict:
        """
        Debug helper: move last_puzzle_date back so the next check rotates.

        Args:
            hours: Hours to subtract from last_puzzle_date

        Returns:
            dict: Updated status document
        """
        with self._lock:
            status = self._read_status()
            if status is None:
                raise RotationClockError("Rotation clock is not initialized")
            last = string_to_date(status["last_puzzle_date"])
            status["last_puzzle_date"] = date_to_string(last - timedelta(hours=hours))
            self._write_status(status)
        return status

    def seconds_until_midnight(self, now: Optional[datetime] = None) -> float:
        """Seconds until the next local midnight in the puzzle timezone."""
        now = now or self.clock()
        local = now.astimezone(self.tz)
        midnight = datetime.combine(local.date() + timedelta(days=1), time(0), tzinfo=self.tz)
        return (midnight.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()

    def is_midnight_imminent(self, now: Optional[datetime] = None) -> bool:
        return self.seconds_until_midnight(now) <= MIDNIGHT_TRIGGER_SECONDS


# Global service instance
_rotation_clock = None


def get_rotation_clock() -> Optional[RotationClock]:
    """Get the global rotation clock instance."""
    return _rotation_clock


def initialize_rotation_clock(store: DocumentStore, puzzle_service: PuzzleService,
                              timezone_name: str = 'UTC') -> RotationClock:
    """Initialize the global rotation clock instance."""
    global _rotation_clock
    _rotation_clock = RotationClock(store, puzzle_service, timezone_name)
    return _rotation_clock
