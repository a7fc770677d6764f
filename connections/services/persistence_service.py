"""
Persistence Service

Session persistence and recovery over the account document: save-state
snapshots, the entry decision, the active instance guard, end-of-game
archival and achievement counters.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from .store import DocumentStore, PersistenceError, USERS_COLLECTION
from ..config.game_settings import ROWS, UNDER_TIME_SECONDS
from ..models.records import PlayedGameRecord, SessionSaveState
from ..models.user import ACHIEVEMENT_COUNTERS, AccountRecord
from ..utils.game_logger import game_logger
from ..utils.helpers import date_to_string, utc_now

# Document fields holding the active instance guard
GUARD_FIELDS = ('active_instance_id', 'active_instance_updated_at')


class EntryStatus(Enum):
    """Where a session starts when an account enters the game."""
    BLOCKED = "blocked"
    RESUME = "resume"
    VIEW_RESULTS = "view_results"
    FRESH = "fresh"


@dataclass
class EntryDecision:
    status: EntryStatus
    save_state: Optional[SessionSaveState] = None
    record: Optional[PlayedGameRecord] = None
    degraded: bool = False


class PersistenceService:
    """
    Reads and writes the per-account document.

    Writes replace the whole document (last write wins); only the achievement
    counters use the store's atomic increment. Concurrent writers for one
    account are kept out by the active instance guard.
    """

    def __init__(self, store: DocumentStore,
                 guard_timeout_seconds: int = 0,
                 clock: Callable[[], datetime] = utc_now):
        """
        Args:
            store: Document store holding the users collection
            guard_timeout_seconds: Heartbeat age after which a guard is stale (0 disables)
            clock: Source of timezone-aware current time
        """
        self.store = store
        self.guard_timeout_seconds = guard_timeout_seconds
        self.clock = clock

    # Account documents

    def read_account(self, account_id: str) -> Optional[AccountRecord]:
        """
        Read an account document.

        Raises:
            PersistenceError: If the store fails or the document is unusable
        """
        document = self.store.read(USERS_COLLECTION, account_id)
        if document is None:
            return None
        try:
            return AccountRecord.from_document(document)
        except ValueError as e:
            raise PersistenceError(f"Malformed account document for {account_id}: {e}") from e

    def write_account(self, account: AccountRecord) -> None:
        self.store.write(USERS_COLLECTION, account.user_id, account.to_document())

    def create_account(self, account_id: str, username: str, is_guest: bool = True,
                       now: Optional[datetime] = None) -> AccountRecord:
        account = AccountRecord(user_id=account_id, username=username, is_guest=is_guest,
                                created_at=now or self.clock())
        self.write_account(account)
        return account

    def delete_account(self, account_id: str) -> bool:
        return self.store.delete(USERS_COLLECTION, account_id)

    def _load_or_create(self, account_id: str) -> AccountRecord:
        return self.read_account(account_id) or AccountRecord(user_id=account_id)

    # Snapshots

    def store_snapshot(self, account_id: str, save_state: SessionSaveState,
                       instance_id: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """
        Replace the account's save state; refreshes our guard heartbeat.

        Raises:
            PersistenceError: If the snapshot could not be written
        """
        account = self._load_or_create(account_id)
        account.latest_save_state = save_state
        if instance_id and account.active_instance_id == instance_id:
            account.active_instance_updated_at = now or self.clock()
        self.write_account(account)

    # Entry

    def resolve_entry(self, account_id: str, instance_id: Optional[str],
                      puzzle_number: int, now: Optional[datetime] = None) -> EntryDecision:
        """
        Decide how a session starts, in priority order.

        1. Another live instance holds the guard: BLOCKED.
        2. Save state for the current puzzle: RESUME.
        3. Save state for another puzzle (or finished): discarded, fall through.
        4. Archived record for the current puzzle: VIEW_RESULTS.
        5. Otherwise FRESH.

        Store failures degrade to FRESH instead of raising.

        Args:
            account_id: Account entering the game
            instance_id: Per-device instance token
            puzzle_number: Today's puzzle number
            now: Current time

        Returns:
            EntryDecision
        """
        now = now or self.clock()
        try:
            account = self.read_account(account_id)
        except PersistenceError as e:
            game_logger.log_session_event(account_id, 'entry_degraded_to_fresh', level=logging.WARNING,
                                          instance_id=instance_id, error=str(e))
            return EntryDecision(EntryStatus.FRESH, degraded=True)

        if account is None:
            return EntryDecision(EntryStatus.FRESH)

        if self._guard_held_elsewhere(account, instance_id, now):
            game_logger.log_session_event(account_id, 'entry_blocked', instance_id=instance_id,
                                          holder=account.active_instance_id)
            return EntryDecision(EntryStatus.BLOCKED)

        save_state = account.latest_save_state
        if save_state is not None:
            if save_state.puzzle_number == puzzle_number and not save_state.game_finished:
                return EntryDecision(EntryStatus.RESUME, save_state=save_state)

            game_logger.log_session_event(account_id, 'save_state_discarded', instance_id=instance_id,
                                          saved_puzzle=save_state.puzzle_number,
                                          puzzle_number=puzzle_number,
                                          finished=save_state.game_finished)
            account.latest_save_state = None
            try:
                self.write_account(account)
            except PersistenceError as e:
                game_logger.log_session_event(account_id, 'save_state_discard_failed',
                                              level=logging.WARNING, error=str(e))

        record = account.get_played(puzzle_number)
        if record is not None:
            return EntryDecision(EntryStatus.VIEW_RESULTS, record=record)

        return EntryDecision(EntryStatus.FRESH)

    # Active instance guard

    def _guard_is_live(self, account: AccountRecord, now: datetime) -> bool:
        if not account.active_instance_id:
            return False
        if self.guard_timeout_seconds <= 0 or account.active_instance_updated_at is None:
            return True
        age = now - account.active_instance_updated_at
        return age < timedelta(seconds=self.guard_timeout_seconds)

    def _guard_held_elsewhere(self, account: AccountRecord, instance_id: Optional[str],
                              now: datetime) -> bool:
        return self._guard_is_live(account, now) and account.active_instance_id != instance_id

    def acquire_guard(self, account_id: str, instance_id: str, now: Optional[datetime] = None) -> bool:
        """
        Claim the guard if it is unset, stale, or already ours.

        Returns:
            bool: True if this instance now holds the guard

        Raises:
            PersistenceError: If the account cannot be read or written
        """
        now = now or self.clock()
        account = self._load_or_create(account_id)
        if self._guard_held_elsewhere(account, instance_id, now):
            return False

        if account.active_instance_id and account.active_instance_id != instance_id:
            game_logger.log_session_event(account_id, 'stale_guard_replaced', instance_id=instance_id,
                                          previous=account.active_instance_id)

        account.active_instance_id = instance_id
        account.active_instance_updated_at = now
        self.write_account(account)
        return True

    def release_guard(self, account_id: str, instance_id: Optional[str]) -> bool:
        """
        Clear the guard if this instance holds it.

        Returns:
            bool: False if another instance holds the guard
        """
        account = self.read_account(account_id)
        if account is None or account.active_instance_id is None:
            return True
        if account.active_instance_id != instance_id:
            return False

        account.active_instance_id = None
        account.active_instance_updated_at = None
        self.write_account(account)
        return True

    def heartbeat(self, account_id: str, instance_id: str, now: Optional[datetime] = None) -> bool:
        """Refresh our guard timestamp; False if we do not hold the guard."""
        account = self.read_account(account_id)
        if account is None or account.active_instance_id != instance_id:
            return False
        account.active_instance_updated_at = now or self.clock()
        self.write_account(account)
        return True

    def clear_stale_guards(self, now: Optional[datetime] = None) -> Dict:
        """
        Drop guard tokens whose heartbeat is older than the timeout.

        Each clear is a conditional update of the guard fields alone, so it
        never overwrites an archive, save state or counter written meanwhile.

        Returns:
            dict: cleared_count and the affected account ids
        """
        if self.guard_timeout_seconds <= 0:
            return {"cleared_count": 0, "accounts": []}

        now = now or self.clock()
        cleared: List[str] = []
        for document in self.store.read_all(USERS_COLLECTION):
            try:
                account = AccountRecord.from_document(document)
            except ValueError as e:
                game_logger.log_session_event(None, 'malformed_account_skipped', level=logging.WARNING,
                                              error=str(e))
                continue
            if not account.active_instance_id or self._guard_is_live(account, now):
                continue

            # Only clear the token we saw; a session may have ended or heartbeated since
            expected = {name: document.get(name) for name in GUARD_FIELDS}
            if self.store.clear_fields_if(USERS_COLLECTION, account.user_id, expected, GUARD_FIELDS):
                cleared.append(account.user_id)
            else:
                game_logger.log_session_event(account.user_id, 'stale_guard_changed_during_cleanup',
                                              instance_id=account.active_instance_id)

        if cleared:
            game_logger.log_session_event(None, 'stale_guards_cleared', accounts=cleared,
                                          cutoff=date_to_string(now - timedelta(seconds=self.guard_timeout_seconds)))
        return {"cleared_count": len(cleared), "accounts": cleared}

    # Archival

    def archive(self, account_id: str, record: PlayedGameRecord) -> bool:
        """
        Write the archival record; at most one per account and puzzle number.

        Returns:
            bool: False if a record for the puzzle already exists
        """
        account = self._load_or_create(account_id)
        if account.has_played(record.puzzle_number):
            game_logger.log_session_event(account_id, 'archive_skipped_duplicate',
                                          puzzle_number=record.puzzle_number)
            return False
        account.played_games[record.puzzle_number] = record
        self.write_account(account)
        return True

    def complete_session(self, account_id: str, record: PlayedGameRecord,
                         instance_id: Optional[str]) -> bool:
        """
        End-of-session write: archive the record, clear the save state and
        release our guard in a single document write.

        Returns:
            bool: True if the record was newly archived

        Raises:
            PersistenceError: If the account cannot be read or written
        """
        account = self._load_or_create(account_id)
        archived = not account.has_played(record.puzzle_number)
        if archived:
            account.played_games[record.puzzle_number] = record
        else:
            game_logger.log_session_event(account_id, 'archive_skipped_duplicate',
                                          puzzle_number=record.puzzle_number)

        account.latest_save_state = None
        if account.active_instance_id in (None, instance_id):
            account.active_instance_id = None
            account.active_instance_updated_at = None
        self.write_account(account)
        return archived

    def record_achievements(self, account_id: str, record: PlayedGameRecord) -> List[str]:
        """
        Bump the achievement counters a finished game earns.

        Every finished game counts toward its mode; a win without mistakes
        counts as no-mistakes; a won time trial finished in under 30 seconds
        counts as under-time.

        Returns:
            List[str]: Achievement kinds incremented
        """
        kinds = ['time_trial' if record.is_timed else 'regular']
        if record.is_timed and record.won and 0 < record.time_completed < UNDER_TIME_SECONDS:
            kinds.append('under_time')
        if record.won and len(record.guesses) == ROWS:
            kinds.append('no_mistakes')

        for kind in kinds:
            self.store.increment(USERS_COLLECTION, account_id, ACHIEVEMENT_COUNTERS[kind])
        return kinds


# Global service instance
_persistence_service = None


def get_persistence_service() -> Optional[PersistenceService]:
    """Get the global persistence service instance."""
    return _persistence_service


def initialize_persistence_service(store: DocumentStore, guard_timeout_seconds: int = 0) -> PersistenceService:
    """Initialize the global persistence service instance."""
    global _persistence_service
    _persistence_service = PersistenceService(store, guard_timeout_seconds)
    return _persistence_service
