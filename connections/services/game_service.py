"""
Game Service

Contains the session state machine for one play-through of the daily puzzle
and the service that ties sessions to accounts, devices and persistence.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from .grid import WordGrid
from .persistence_service import EntryStatus, PersistenceService
from .puzzle_service import PuzzleService
from .rotation_service import RotationClock
from .store import PersistenceError
from ..config.game_settings import (
    MAX_HINTS, MAX_MISTAKES, MAX_SELECTED, SNAPSHOT_CUTOFF_SECONDS, TIME_TRIAL_DURATION_SEC
)
from ..models.game import Category, GameType, GuessOutcome, Puzzle, Word
from ..models.records import PlayedGameRecord, SessionSaveState
from ..utils.game_logger import game_logger
from ..utils.helpers import date_to_string, utc_now


class SessionPhase(Enum):
    MODE_SELECT = "mode_select"
    COUNTDOWN = "countdown"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class GuessResult:
    """Outcome of a submission plus what it caused."""
    outcome: GuessOutcome
    category: Optional[Category] = None
    auto_solved: List[Category] = field(default_factory=list)
    game_over: bool = False


def _category_to_dict(category: Category) -> Dict:
    return {
        "color": category.color.to_db(),
        "description": category.description,
        "words": list(category.words),
    }


class GameSession:
    """
    One play-through of a puzzle.

    Phases: MODE_SELECT -> (COUNTDOWN for time trials) -> ACTIVE -> ENDED.
    mistakes_left starts at MAX_MISTAKES and the game is lost when a wrong
    guess brings it to zero. A session loaded from the archive is read-only.
    """

    def __init__(self, puzzle: Puzzle,
                 account_id: Optional[str] = None,
                 instance_id: Optional[str] = None,
                 rng: Optional[random.Random] = None):
        self.puzzle = puzzle
        self.account_id = account_id
        self.instance_id = instance_id
        self.grid = WordGrid(puzzle, rng)
        self.grid.initialize()

        self.phase = SessionPhase.MODE_SELECT
        self.game_type = GameType.NONE
        self.mistakes_left = MAX_MISTAKES
        self.hints_left = MAX_HINTS
        self.hint_active = False
        self.hint_words: List[Word] = []
        self.time_limit = TIME_TRIAL_DURATION_SEC
        self.game_start_time: Optional[datetime] = None
        self.game_end_time: Optional[datetime] = None
        self.won = False
        self.ran_out_of_time = False
        self.connection_count = 0
        self.snapshots_suppressed = False
        self.read_only = False
        self.archived = False
        self.last_activity: Optional[datetime] = None

    @property
    def puzzle_number(self) -> int:
        return self.puzzle.puzzle_number

    @property
    def is_time_trial(self) -> bool:
        return self.game_type is GameType.TIME_TRIAL

    @property
    def is_active(self) -> bool:
        return self.phase is SessionPhase.ACTIVE

    @property
    def is_ended(self) -> bool:
        return self.phase is SessionPhase.ENDED

    # Mode selection

    def select_mode(self, game_type: GameType, now: datetime) -> bool:
        """
        Leave mode select. Classic starts the clock immediately; a time trial
        enters the countdown and starts the clock at finish_countdown().

        Returns:
            bool: False if the session is not in mode select
        """
        if self.phase is not SessionPhase.MODE_SELECT or game_type is GameType.NONE:
            return False

        self.game_type = game_type
        if game_type is GameType.TIME_TRIAL:
            self.phase = SessionPhase.COUNTDOWN
        else:
            self._start(now)
        return True

    def finish_countdown(self, now: datetime) -> bool:
        if self.phase is not SessionPhase.COUNTDOWN:
            return False
        self._start(now)
        return True

    def _start(self, now: datetime) -> None:
        self.phase = SessionPhase.ACTIVE
        self.game_start_time = now

    # Clock

    def elapsed_seconds(self, now: datetime) -> float:
        if self.game_start_time is None:
            return 0.0
        end = self.game_end_time if self.is_ended and self.game_end_time else now
        return max(0.0, (end - self.game_start_time).total_seconds())

    def time_left(self, now: datetime) -> Optional[int]:
        """Whole seconds left on a time trial clock; None for classic."""
        if not self.is_time_trial:
            return None
        if self.game_start_time is None:
            return self.time_limit
        return max(0, self.time_limit - int(self.elapsed_seconds(now)))

    def seconds_remaining(self, now: datetime) -> float:
        """Unrounded time left on a time trial clock."""
        return max(0.0, self.time_limit - self.elapsed_seconds(now))

    def is_expired(self, now: datetime) -> bool:
        return self.is_active and self.is_time_trial and not self.won and self.time_left(now) == 0

    def tick(self, now: datetime) -> List[Category]:
        """
        Advance the time trial clock.

        Expiry ends the game with ran_out_of_time set and auto-solves the
        board. Once fewer than SNAPSHOT_CUTOFF_SECONDS remain, snapshots are
        suppressed for the rest of the session.

        Returns:
            List[Category]: Categories auto-solved by this tick, in order
        """
        if not self.is_active or not self.is_time_trial:
            return []

        if self.seconds_remaining(now) < SNAPSHOT_CUTOFF_SECONDS:
            self.snapshots_suppressed = True

        if self.is_expired(now):
            self.ran_out_of_time = True
            return self._end(False, now)
        return []

    def can_snapshot(self, now: datetime) -> bool:
        if self.read_only or not self.is_active:
            return False
        if self.is_time_trial and self.seconds_remaining(now) < SNAPSHOT_CUTOFF_SECONDS:
            self.snapshots_suppressed = True
        return not self.snapshots_suppressed

    # Board actions

    def toggle_select(self, word: Word) -> bool:
        if not self.is_active:
            return False
        changed = self.grid.toggle_select(word)
        if changed:
            self.clear_hint()
        return changed

    def deselect_all(self) -> bool:
        if not self.is_active:
            return False
        self.grid.deselect_all()
        self.clear_hint()
        return True

    def shuffle(self) -> bool:
        if not self.is_active:
            return False
        self.grid.shuffle()
        self.clear_hint()
        return True

    def submit_guess(self, now: datetime) -> GuessResult:
        """
        Evaluate the current selection.

        A time trial that had already expired at submission time ends here and
        the submission reports NOT_ACTIVE.
        """
        if not self.is_active:
            return GuessResult(GuessOutcome.NOT_ACTIVE, game_over=self.is_ended)

        if self.is_expired(now):
            self.ran_out_of_time = True
            return GuessResult(GuessOutcome.NOT_ACTIVE, auto_solved=self._end(False, now), game_over=True)

        selection = list(self.grid.selection)
        if len(selection) < MAX_SELECTED:
            return GuessResult(GuessOutcome.INCOMPLETE_SELECTION)

        self.clear_hint()
        if not self.grid.record_guess(selection):
            return GuessResult(GuessOutcome.ALREADY_GUESSED)

        count = self.grid.match_count(selection)
        if count == MAX_SELECTED:
            category = self.grid.matching_category(selection)
            self.grid.resolve_category(category)
            self.connection_count += 1
            if self.grid.all_categories_solved():
                self._end(True, now)
            return GuessResult(GuessOutcome.CORRECT, category=category, game_over=self.is_ended)

        outcome = GuessOutcome.ONE_AWAY if count == MAX_SELECTED - 1 else GuessOutcome.MISS
        self.mistakes_left -= 1
        if self.mistakes_left <= 0:
            self.mistakes_left = 0
            return GuessResult(outcome, auto_solved=self._end(False, now), game_over=True)
        return GuessResult(outcome)

    # Hints

    def use_hint(self) -> Optional[List[Word]]:
        """
        Spend a hint and highlight words.

        Returns:
            List[Word] highlighted, or None if no hint may be used now
        """
        if not self.is_active or self.hints_left <= 0 or self.hint_active:
            return None
        self.hints_left -= 1
        self.hint_active = True
        self.hint_words = self.grid.hint_words()
        return list(self.hint_words)

    def clear_hint(self) -> None:
        self.hint_active = False
        self.hint_words = []

    # Ending

    def _end(self, won: bool, now: datetime) -> List[Category]:
        self.phase = SessionPhase.ENDED
        self.won = won
        self.game_end_time = now
        self.grid.deselect_all()
        self.clear_hint()
        return [] if won else self.auto_solve()

    def auto_solve(self) -> List[Category]:
        """Resolve every unsolved category in ascending difficulty."""
        solved = []
        for color in self.grid.unsolved_colors():
            category = self.puzzle.category_for(color)
            if self.grid.resolve_category(category):
                solved.append(category)
        return solved

    # Persistence

    def restore(self, save_state: SessionSaveState, now: datetime) -> None:
        """
        Rebuild an in-progress session from a save state.

        The clock resumes where it stopped: the effective start time is
        now minus the elapsed time recorded in the snapshot.
        """
        self.grid.reconstruct_from_guesses(save_state.guesses, save_state.arrangement())
        self.game_type = save_state.game_type
        self.hints_left = max(0, min(MAX_HINTS, save_state.hints_left))
        self.mistakes_left = max(0, min(MAX_MISTAKES, save_state.mistakes_left))
        self.connection_count = self.grid.solved_row_count

        if self.game_type is GameType.NONE:
            self.phase = SessionPhase.MODE_SELECT
            return

        self.phase = SessionPhase.ACTIVE
        self.game_start_time = now - timedelta(seconds=save_state.elapsed_seconds())

        if self.grid.all_categories_solved():
            self._end(True, now)
        elif self.mistakes_left == 0:
            self._end(False, now)

    def load_archived(self, record: PlayedGameRecord) -> None:
        """Read-only results view replayed from an archived record."""
        self.grid.reconstruct_from_guesses(record.guesses)
        self.auto_solve()
        self.read_only = True
        self.archived = True
        self.phase = SessionPhase.ENDED
        self.game_type = record.game_type
        self.won = record.won
        self.connection_count = record.connection_count
        self.mistakes_left = max(0, MAX_MISTAKES - record.mistakes_made)
        self.hints_left = max(0, MAX_HINTS - record.hints_used)
        self.game_start_time = record.game_start_time
        self.game_end_time = record.game_end_time
        if record.time_limit is not None:
            self.time_limit = record.time_limit
        self.ran_out_of_time = record.is_timed and not record.won and self.mistakes_left > 0

    def to_save_state(self, now: datetime) -> SessionSaveState:
        return SessionSaveState(
            puzzle_number=self.puzzle_number,
            game_type=self.game_type,
            hints_left=self.hints_left,
            mistakes_left=self.mistakes_left,
            grid_words=self.grid.rows_as_words(),
            guesses=list(self.grid.guesses),
            game_start_time=self.game_start_time or now,
            save_state_creation_time=now,
            game_finished=self.is_ended,
        )

    def to_played_record(self) -> PlayedGameRecord:
        return PlayedGameRecord(
            puzzle_number=self.puzzle_number,
            game_type=self.game_type,
            mistakes_made=MAX_MISTAKES - self.mistakes_left,
            hints_used=MAX_HINTS - self.hints_left,
            connection_count=self.connection_count,
            guesses=list(self.grid.guesses),
            won=self.won,
            game_start_time=self.game_start_time,
            game_end_time=self.game_end_time,
            time_limit=self.time_limit if self.is_time_trial else None,
            completed_before_limit=self.won if self.is_time_trial else None,
        )

    def checkpoint(self) -> Dict:
        """Memento of all mutable session state, for rollback()."""
        memento = {name: value for name, value in vars(self).items()
                   if name not in ('puzzle', 'grid', 'account_id', 'instance_id')}
        memento['hint_words'] = list(self.hint_words)
        memento['_grid'] = self.grid.capture()
        return memento

    def rollback(self, memento: Dict) -> None:
        memento = dict(memento)
        self.grid.restore_capture(memento.pop('_grid'))
        for name, value in memento.items():
            setattr(self, name, value)
        self.hint_words = list(self.hint_words)

    # Presentation

    def to_dict(self, now: datetime) -> Dict:
        """Client view of the session. Unsolved words are sent without colors."""
        if self.is_ended:
            guesses = [[word.color.to_db() for word in sorted(guess, key=lambda w: w.text)]
                       for guess in self.grid.guesses]
        else:
            guesses = [sorted(word.text for word in guess) for guess in self.grid.guesses]

        return {
            "puzzle_number": self.puzzle_number,
            "phase": self.phase.value,
            "game_type": self.game_type.value,
            "mistakes_left": self.mistakes_left,
            "hints_left": self.hints_left,
            "hint_active": self.hint_active,
            "hint_words": [word.text for word in self.hint_words],
            "solved_row_count": self.grid.solved_row_count,
            "solved_categories": [_category_to_dict(c) for c in self.grid.solved_rows],
            "board": [[word.text for word in row] for row in self.grid.rows_as_words()],
            "selection": [word.text for word in self.grid.selection],
            "guesses": guesses,
            "won": self.won,
            "ran_out_of_time": self.ran_out_of_time,
            "time_left": self.time_left(now),
            "elapsed_seconds": int(self.elapsed_seconds(now)),
            "read_only": self.read_only,
            "game_start_time": date_to_string(self.game_start_time),
        }


class GameService:
    """
    Session orchestration per account and device.

    This class handles:
    - Entry decisions (blocked, resume, view results, fresh)
    - Applying user actions to the in-memory session
    - Snapshotting after each action, rolling the action back if the
      snapshot cannot be written
    - Archival, guard release and achievements when a session ends
    """

    def __init__(self,
                 persistence: PersistenceService,
                 puzzles: PuzzleService,
                 rotation: RotationClock,
                 clock: Callable[[], datetime] = utc_now,
                 rng_factory: Callable[[], random.Random] = random.Random):
        self.persistence = persistence
        self.puzzles = puzzles
        self.rotation = rotation
        self.clock = clock
        self.rng_factory = rng_factory
        self.sessions: Dict[str, GameSession] = {}  # Active sessions by account id
        self._lock = threading.RLock()

    def get_session(self, account_id: str) -> Optional[GameSession]:
        return self.sessions.get(account_id)

    def _state_response(self, session: GameSession, now: datetime, **extra) -> Dict:
        return {'success': True, 'state': session.to_dict(now), **extra}

    def _retryable(self, error: Exception) -> Dict:
        return {
            'success': False,
            'retryable': True,
            'error': f'Could not save progress, please try again ({error})'
        }

    # Entry

    def enter(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        """
        Start or recover the account's session for today's puzzle.

        Args:
            account_id: Account entering the game
            instance_id: Per-device instance token
            now: Current time

        Returns:
            dict: success flag, entry status, and the session state unless blocked
        """
        if not instance_id:
            return {'success': False, 'error': 'Instance identifier is required'}

        now = now or self.clock()
        with self._lock:
            try:
                puzzle_number = self.rotation.increment_if_needed(now)
                puzzle = self.puzzles.get_puzzle(puzzle_number)
            except PersistenceError as e:
                game_logger.log_session_event(account_id, 'entry_failed', level=logging.ERROR,
                                              instance_id=instance_id, error=str(e))
                return {'success': False, 'retryable': True, 'error': 'Puzzle store unavailable'}

            if puzzle is None:
                return {'success': False, 'error': f'Puzzle {puzzle_number} not found'}

            existing = self.sessions.get(account_id)
            if (existing is not None and existing.instance_id == instance_id
                    and existing.puzzle_number == puzzle_number):
                existing.last_activity = now
                return self._state_response(existing, now, status='current')

            decision = self.persistence.resolve_entry(account_id, instance_id, puzzle_number, now)

            if decision.status is EntryStatus.BLOCKED:
                return {
                    'success': True,
                    'status': EntryStatus.BLOCKED.value,
                    'message': 'A game is already in progress for this account on another device'
                }

            session = GameSession(puzzle, account_id, instance_id, self.rng_factory())
            status = decision.status
            session.last_activity = now

            if status is EntryStatus.RESUME:
                try:
                    if not self.persistence.acquire_guard(account_id, instance_id, now):
                        return {'success': True, 'status': EntryStatus.BLOCKED.value,
                                'message': 'A game is already in progress for this account on another device'}
                except PersistenceError as e:
                    game_logger.log_session_event(account_id, 'resume_degraded_to_fresh', level=logging.WARNING,
                                                  instance_id=instance_id, error=str(e))
                    session = GameSession(puzzle, account_id, instance_id, self.rng_factory())
                    status = EntryStatus.FRESH
                    session.last_activity = now
                else:
                    session.restore(decision.save_state, now)
                    session.tick(now)
            elif status is EntryStatus.VIEW_RESULTS:
                session.load_archived(decision.record)

            self.sessions[account_id] = session
            game_logger.log_session_event(account_id, 'session_entered', instance_id=instance_id,
                                          status=status.value, puzzle_number=puzzle_number,
                                          degraded=decision.degraded)

            response = self._state_response(session, now, status=status.value)
            if session.is_ended and not session.archived:
                failure = self._persist(session, now, session.checkpoint())
                if failure is not None:
                    self.sessions.pop(account_id, None)
                    return failure
                response['state'] = session.to_dict(now)
            return response

    # Actions

    def _persist(self, session: GameSession, now: datetime, memento: Dict) -> Optional[Dict]:
        """
        Persist the session after an action: archive when it ended, otherwise
        snapshot when allowed. On failure the action is rolled back.

        Returns:
            None on success, or a retryable error response
        """
        try:
            if session.is_ended and not session.archived:
                self._finish(session)
            elif session.can_snapshot(now):
                self.persistence.store_snapshot(session.account_id, session.to_save_state(now),
                                                session.instance_id, now)
        except PersistenceError as e:
            session.rollback(memento)
            game_logger.log_session_event(session.account_id, 'action_rolled_back', level=logging.WARNING,
                                          instance_id=session.instance_id, error=str(e))
            return self._retryable(e)
        return None

    def _finish(self, session: GameSession) -> None:
        record = session.to_played_record()
        archived = self.persistence.complete_session(session.account_id, record, session.instance_id)
        session.archived = True

        game_logger.log_session_event(
            session.account_id, 'game_won' if session.won else 'game_lost',
            instance_id=session.instance_id, puzzle_number=session.puzzle_number,
            game_type=session.game_type.value, mistakes_made=record.mistakes_made,
            ran_out_of_time=session.ran_out_of_time, time_completed=record.time_completed
        )

        if not archived:
            return
        try:
            self.persistence.record_achievements(session.account_id, record)
        except PersistenceError as e:
            game_logger.log_session_event(session.account_id, 'achievements_not_recorded',
                                          level=logging.WARNING, error=str(e))

    def _session_or_error(self, account_id: str, instance_id: Optional[str], now: datetime):
        session = self.sessions.get(account_id)
        if session is None:
            return None, {'success': False, 'error': 'No active session, enter the game first'}
        if session.instance_id != instance_id:
            return None, {'success': False, 'error': 'Session belongs to another device'}
        session.last_activity = now
        return session, None

    def select_mode(self, account_id: str, instance_id: Optional[str], game_type: str,
                    now: Optional[datetime] = None) -> Dict:
        """
        Choose classic or time trial; claims the active instance guard.

        Args:
            account_id: Account owning the session
            instance_id: Device the session was entered from
            game_type: "classic" or "time_trial"
        """
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error

            try:
                chosen = GameType.from_db(game_type)
            except ValueError as e:
                return {'success': False, 'error': str(e)}

            memento = session.checkpoint()
            if not session.select_mode(chosen, now):
                return {'success': False, 'error': 'Game mode cannot be selected now'}

            try:
                if not self.persistence.acquire_guard(account_id, session.instance_id, now):
                    session.rollback(memento)
                    return {'success': True, 'status': EntryStatus.BLOCKED.value,
                            'message': 'A game is already in progress for this account on another device'}
            except PersistenceError as e:
                session.rollback(memento)
                return self._retryable(e)

            failure = self._persist(session, now, memento)
            if failure:
                self._release_quietly(session)
                return failure

            game_logger.log_session_event(account_id, 'mode_selected', instance_id=session.instance_id,
                                          game_type=chosen.value, puzzle_number=session.puzzle_number)
            return self._state_response(session, now)

    def finish_countdown(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error

            memento = session.checkpoint()
            if not session.finish_countdown(now):
                return {'success': False, 'error': 'No countdown in progress'}

            failure = self._persist(session, now, memento)
            return failure or self._state_response(session, now)

    def toggle_select(self, account_id: str, instance_id: Optional[str], text: str,
                      now: Optional[datetime] = None) -> Dict:
        """Select or deselect a board word by its text. Selection is not persisted."""
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error
            if not session.is_active:
                return {'success': False, 'error': 'Game is not active'}

            word = session.grid.find_word(text or '')
            if word is None:
                return {'success': False, 'error': f'Word not on the board: {text}'}

            changed = session.toggle_select(word)
            return self._state_response(session, now, changed=changed)

    def deselect_all(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error
            if not session.deselect_all():
                return {'success': False, 'error': 'Game is not active'}
            return self._state_response(session, now)

    def shuffle(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error

            memento = session.checkpoint()
            if not session.shuffle():
                return {'success': False, 'error': 'Game is not active'}

            failure = self._persist(session, now, memento)
            return failure or self._state_response(session, now)

    def submit_guess(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        """
        Submit the current selection.

        Returns:
            dict: outcome, solved category, auto-solved categories and state
        """
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error

            memento = session.checkpoint()
            result = session.submit_guess(now)

            if result.outcome in (GuessOutcome.INCOMPLETE_SELECTION, GuessOutcome.ALREADY_GUESSED):
                return self._state_response(session, now, outcome=result.outcome.value)

            if result.outcome is GuessOutcome.NOT_ACTIVE and not (session.is_ended and not session.archived):
                return self._state_response(session, now, outcome=result.outcome.value)

            failure = self._persist(session, now, memento)
            if failure:
                return failure

            return self._state_response(
                session, now,
                outcome=result.outcome.value,
                category=_category_to_dict(result.category) if result.category else None,
                auto_solved=[_category_to_dict(c) for c in result.auto_solved],
                game_over=result.game_over
            )

    def use_hint(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error

            memento = session.checkpoint()
            highlighted = session.use_hint()
            if highlighted is None:
                return {'success': False, 'error': 'No hint available'}

            failure = self._persist(session, now, memento)
            return failure or self._state_response(session, now, hint_words=[w.text for w in highlighted])

    def tick(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        """
        Periodic clock event: time trial expiry, per-second snapshot and the
        midnight notice. A session keeps its puzzle across midnight.
        """
        now = now or self.clock()
        with self._lock:
            session, error = self._session_or_error(account_id, instance_id, now)
            if error:
                return error

            memento = session.checkpoint()
            auto_solved = session.tick(now)

            if session.is_time_trial:
                failure = self._persist(session, now, memento)
                if failure:
                    return failure

            return self._state_response(
                session, now,
                auto_solved=[_category_to_dict(c) for c in auto_solved],
                midnight_imminent=self.rotation.is_midnight_imminent(now)
            )

    def heartbeat(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        now = now or self.clock()
        with self._lock:
            session = self.sessions.get(account_id)
            if session is not None and session.instance_id == instance_id:
                session.last_activity = now
        try:
            held = self.persistence.heartbeat(account_id, instance_id, now)
        except PersistenceError as e:
            return self._retryable(e)
        return {'success': True, 'guard_held': held}

    def get_state(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        now = now or self.clock()
        session, error = self._session_or_error(account_id, instance_id, now)
        if error:
            return error
        return self._state_response(session, now)

    # Exit

    def exit_session(self, account_id: str, instance_id: Optional[str], now: Optional[datetime] = None) -> Dict:
        """
        Leave the game: final snapshot first, then release the guard.

        If the final snapshot fails the session and guard are kept so the
        exit can be retried.
        """
        now = now or self.clock()
        with self._lock:
            session = self.sessions.get(account_id)
            if session is not None and session.instance_id != instance_id:
                return {'success': False, 'error': 'Session belongs to another device'}

            try:
                if session is not None and session.can_snapshot(now):
                    self.persistence.store_snapshot(account_id, session.to_save_state(now), instance_id, now)
                self.persistence.release_guard(account_id, instance_id)
            except PersistenceError as e:
                game_logger.log_session_event(account_id, 'exit_failed', level=logging.WARNING,
                                              instance_id=instance_id, error=str(e))
                return self._retryable(e)

            self.sessions.pop(account_id, None)
            game_logger.log_session_event(account_id, 'session_exited', instance_id=instance_id)
            return {'success': True, 'message': 'Session closed'}

    def _release_quietly(self, session: GameSession) -> None:
        try:
            self.persistence.release_guard(session.account_id, session.instance_id)
        except PersistenceError as e:
            game_logger.log_session_event(session.account_id, 'guard_release_failed', level=logging.WARNING,
                                          instance_id=session.instance_id, error=str(e))

    def drop_sessions(self, account_ids: List[str]) -> int:
        """Forget in-memory sessions whose guard was cleared as stale."""
        dropped = 0
        with self._lock:
            for account_id in account_ids:
                if self.sessions.pop(account_id, None) is not None:
                    dropped += 1
        return dropped

    def evict_sessions(self, idle_seconds: int, now: Optional[datetime] = None) -> List[str]:
        """
        Forget sessions that are over: ended and archived, or untouched for
        idle_seconds (0 keeps idle sessions). Evicted accounts recover their
        game on the next entry.

        Returns:
            List[str]: Account ids evicted
        """
        now = now or self.clock()
        idle_limit = timedelta(seconds=idle_seconds)
        with self._lock:
            evicted = [
                account_id for account_id, session in self.sessions.items()
                if (session.is_ended and session.archived)
                or (idle_seconds > 0 and session.last_activity is not None
                    and now - session.last_activity >= idle_limit)
            ]
            for account_id in evicted:
                del self.sessions[account_id]

        if evicted:
            game_logger.log_session_event(None, 'sessions_evicted', accounts=evicted)
        return evicted

    def get_active_sessions_count(self) -> int:
        return sum(1 for session in self.sessions.values() if session.is_active)


# Global service instance
_game_service = None


def get_game_service() -> Optional[GameService]:
    """Get the global game service instance."""
    return _game_service


def initialize_game_service(persistence: PersistenceService, puzzles: PuzzleService,
                            rotation: RotationClock) -> GameService:
    """Initialize the global game service instance."""
    global _game_service
    _game_service = GameService(persistence, puzzles, rotation)
    return _game_service
