from datetime import timedelta

import pytest

from connections.models import DifficultyColor, GameType, PlayedGameRecord, SessionSaveState, Word
from connections.services.persistence_service import EntryStatus, PersistenceService
from connections.services.store import PersistenceError, USERS_COLLECTION

from conftest import START


def _save_state(puzzle_number=100, finished=False):
    return SessionSaveState(
        puzzle_number=puzzle_number,
        game_type=GameType.CLASSIC,
        hints_left=4,
        mistakes_left=3,
        grid_words=[],
        guesses=[],
        game_start_time=START,
        save_state_creation_time=START + timedelta(seconds=30),
        game_finished=finished,
    )


def _guesses(count):
    texts = [("SUN", "LEMON", "BANANA", "GOLD"), ("APPLE", "PEAR", "ORANGE", "PEACH"),
             ("CUCUMBER", "CARROT", "POTATO", "EGGPLANT"), ("MILK", "JUICE", "SODA", "PUNCH"),
             ("SUN", "APPLE", "CARROT", "MILK")]
    return [frozenset(Word(text, DifficultyColor.YELLOW) for text in group) for group in texts[:count]]


def _record(puzzle_number=100, game_type=GameType.CLASSIC, won=True, guesses=4, seconds=45):
    return PlayedGameRecord(
        puzzle_number=puzzle_number,
        game_type=game_type,
        mistakes_made=max(0, guesses - 4),
        hints_used=0,
        connection_count=4 if won else 2,
        guesses=_guesses(guesses),
        won=won,
        game_start_time=START,
        game_end_time=START + timedelta(seconds=seconds),
        time_limit=60 if game_type is GameType.TIME_TRIAL else None,
        completed_before_limit=won if game_type is GameType.TIME_TRIAL else None,
    )


class TestEntry:
    def test_unknown_account_starts_fresh(self, persistence):
        decision = persistence.resolve_entry("nobody", "device-a", 100)
        assert decision.status is EntryStatus.FRESH
        assert not decision.degraded

    def test_save_state_for_today_resumes(self, persistence):
        persistence.store_snapshot("acct", _save_state(100))

        decision = persistence.resolve_entry("acct", "device-a", 100)

        assert decision.status is EntryStatus.RESUME
        assert decision.save_state.puzzle_number == 100

    def test_stale_save_state_discarded_after_rotation(self, persistence):
        persistence.store_snapshot("acct", _save_state(100))

        decision = persistence.resolve_entry("acct", "device-a", 101)

        assert decision.status is EntryStatus.FRESH
        assert persistence.read_account("acct").latest_save_state is None

    def test_stale_save_state_falls_through_to_results(self, persistence):
        persistence.archive("acct", _record(puzzle_number=101))
        persistence.store_snapshot("acct", _save_state(100))

        decision = persistence.resolve_entry("acct", "device-a", 101)

        assert decision.status is EntryStatus.VIEW_RESULTS
        assert decision.record.puzzle_number == 101

    def test_finished_save_state_is_not_resumed(self, persistence):
        persistence.store_snapshot("acct", _save_state(100, finished=True))
        assert persistence.resolve_entry("acct", "device-a", 100).status is EntryStatus.FRESH

    def test_guard_held_elsewhere_blocks(self, persistence):
        persistence.store_snapshot("acct", _save_state(100))
        persistence.acquire_guard("acct", "device-a")

        assert persistence.resolve_entry("acct", "device-b", 100).status is EntryStatus.BLOCKED
        assert persistence.resolve_entry("acct", "device-a", 100).status is EntryStatus.RESUME

    def test_read_failure_degrades_to_fresh(self, persistence, store):
        persistence.store_snapshot("acct", _save_state(100))
        store.fail_reads = True

        decision = persistence.resolve_entry("acct", "device-a", 100)

        assert decision.status is EntryStatus.FRESH
        assert decision.degraded


class TestGuard:
    def test_only_one_instance_holds_the_guard(self, persistence):
        assert persistence.acquire_guard("acct", "device-a")
        assert persistence.acquire_guard("acct", "device-a")
        assert not persistence.acquire_guard("acct", "device-b")

        assert not persistence.release_guard("acct", "device-b")
        assert persistence.release_guard("acct", "device-a")
        assert persistence.acquire_guard("acct", "device-b")

    def test_stale_guard_can_be_taken_over(self, persistence, clock):
        persistence.acquire_guard("acct", "device-a")
        clock.advance(seconds=121)
        assert persistence.acquire_guard("acct", "device-b")
        assert persistence.read_account("acct").active_instance_id == "device-b"

    def test_heartbeat_keeps_guard_live(self, persistence, clock):
        persistence.acquire_guard("acct", "device-a")
        clock.advance(seconds=100)
        assert persistence.heartbeat("acct", "device-a")
        clock.advance(seconds=100)
        assert not persistence.acquire_guard("acct", "device-b")
        assert not persistence.heartbeat("acct", "device-b")

    def test_snapshot_refreshes_guard(self, persistence, clock):
        persistence.acquire_guard("acct", "device-a")
        clock.advance(seconds=90)
        persistence.store_snapshot("acct", _save_state(100), "device-a")
        assert persistence.read_account("acct").active_instance_updated_at == clock()

    def test_clear_stale_guards(self, persistence, clock):
        persistence.acquire_guard("old", "device-a")
        clock.advance(seconds=60)
        persistence.acquire_guard("recent", "device-b")
        clock.advance(seconds=70)

        result = persistence.clear_stale_guards()

        assert result == {"cleared_count": 1, "accounts": ["old"]}
        assert persistence.read_account("old").active_instance_id is None
        assert persistence.read_account("recent").active_instance_id == "device-b"

    def test_clear_skips_guard_refreshed_during_sweep(self, persistence, store, clock, monkeypatch):
        persistence.acquire_guard("acct", "device-a")
        clock.advance(seconds=130)
        read_all = store.read_all

        def read_then_heartbeat(collection):
            documents = read_all(collection)
            assert persistence.heartbeat("acct", "device-a")
            return documents

        monkeypatch.setattr(store, "read_all", read_then_heartbeat)

        assert persistence.clear_stale_guards()["cleared_count"] == 0
        account = persistence.read_account("acct")
        assert account.active_instance_id == "device-a"
        assert account.active_instance_updated_at == clock()

    def test_clear_only_touches_guard_fields(self, persistence, store, clock):
        persistence.acquire_guard("acct", "device-a")
        persistence.store_snapshot("acct", _save_state(100), "device-a")
        store.increment(USERS_COLLECTION, "acct", "regular_games_completed")
        clock.advance(seconds=130)

        assert persistence.clear_stale_guards()["accounts"] == ["acct"]
        account = persistence.read_account("acct")
        assert account.active_instance_id is None
        assert account.latest_save_state is not None
        assert account.counter("regular") == 1

    def test_zero_timeout_never_expires(self, store, clock):
        persistence = PersistenceService(store, 0, clock=clock)
        persistence.acquire_guard("acct", "device-a")
        clock.advance(days=30)

        assert not persistence.acquire_guard("acct", "device-b")
        assert persistence.clear_stale_guards()["cleared_count"] == 0

    def test_write_failure_propagates(self, persistence, store):
        store.fail_writes = True
        with pytest.raises(PersistenceError):
            persistence.acquire_guard("acct", "device-a")


class TestArchive:
    def test_archive_once_per_puzzle(self, persistence):
        assert persistence.archive("acct", _record(won=True))
        assert not persistence.archive("acct", _record(won=False, guesses=5))

        account = persistence.read_account("acct")
        assert list(account.played_games) == [100]
        assert account.get_played(100).won

    def test_complete_session_single_write(self, persistence):
        persistence.acquire_guard("acct", "device-a")
        persistence.store_snapshot("acct", _save_state(100), "device-a")

        assert persistence.complete_session("acct", _record(), "device-a")

        account = persistence.read_account("acct")
        assert account.has_played(100)
        assert account.latest_save_state is None
        assert account.active_instance_id is None

    def test_complete_session_leaves_foreign_guard(self, persistence):
        persistence.acquire_guard("acct", "device-b")
        persistence.complete_session("acct", _record(), "device-a")
        assert persistence.read_account("acct").active_instance_id == "device-b"

    def test_malformed_played_game_does_not_block_account(self, persistence, store):
        persistence.archive("acct", _record(puzzle_number=100))
        document = store.read(USERS_COLLECTION, "acct")
        document["played_games"].append({"puzzle_number": 101, "game_type": "classic"})
        store.write(USERS_COLLECTION, "acct", document)

        account = persistence.read_account("acct")
        assert list(account.played_games) == [100]


class TestAchievements:
    def test_perfect_classic_game(self, persistence):
        kinds = persistence.record_achievements("acct", _record())

        assert kinds == ["regular", "no_mistakes"]
        account = persistence.read_account("acct")
        assert account.counter("regular") == 1
        assert account.counter("no_mistakes") == 1
        assert account.counter("time_trial") == 0

    def test_fast_time_trial(self, persistence):
        kinds = persistence.record_achievements("acct", _record(game_type=GameType.TIME_TRIAL, seconds=20))
        assert kinds == ["time_trial", "under_time", "no_mistakes"]

    def test_slow_or_lost_time_trial(self, persistence):
        assert persistence.record_achievements(
            "acct", _record(game_type=GameType.TIME_TRIAL, seconds=45)) == ["time_trial", "no_mistakes"]
        assert persistence.record_achievements(
            "acct", _record(game_type=GameType.TIME_TRIAL, won=False, guesses=5, seconds=10)) == ["time_trial"]
        assert persistence.read_account("acct").counter("time_trial") == 2

    def test_win_with_mistakes_is_not_perfect(self, persistence):
        assert persistence.record_achievements("acct", _record(guesses=5)) == ["regular"]

    def test_counters_survive_document_rewrites(self, persistence):
        persistence.create_account("acct", "ann")
        persistence.record_achievements("acct", _record())
        persistence.acquire_guard("acct", "device-a")

        account = persistence.read_account("acct")
        assert account.username == "ann"
        assert account.counter("regular") == 1
