from datetime import datetime, timezone

import pytest

from connections.services.persistence_service import EntryStatus

from conftest import GUARD_TIMEOUT

YELLOW = ("sun", "lemon", "banana", "gold")
GREEN = ("apple", "pear", "orange", "peach")
BLUE = ("cucumber", "carrot", "potato", "eggplant")
PURPLE = ("milk", "juice", "soda", "punch")


def _guess(service, account_id, instance_id, *texts):
    service.deselect_all(account_id, instance_id)
    for text in texts:
        result = service.toggle_select(account_id, instance_id, text)
        assert result['success'], result
    return service.submit_guess(account_id, instance_id)


@pytest.fixture
def playing(game_service):
    """Account 'acct' in a classic game on device-a."""
    assert game_service.enter('acct', 'device-a')['status'] == EntryStatus.FRESH.value
    assert game_service.select_mode('acct', 'device-a', 'classic')['success']
    return game_service


class TestEntry:
    def test_fresh_entry(self, game_service):
        result = game_service.enter('acct', 'device-a')

        assert result['success']
        assert result['status'] == 'fresh'
        assert result['state']['puzzle_number'] == 100
        assert result['state']['phase'] == 'mode_select'

    def test_instance_id_required(self, game_service):
        assert not game_service.enter('acct', None)['success']

    def test_reentry_returns_current_session(self, playing):
        result = playing.enter('acct', 'device-a')
        assert result['status'] == 'current'
        assert result['state']['phase'] == 'active'

    def test_second_device_is_blocked(self, playing):
        result = playing.enter('acct', 'device-b')
        assert result['status'] == EntryStatus.BLOCKED.value
        assert 'state' not in result

        denied = playing.submit_guess('acct', 'device-b')
        assert not denied['success']
        assert 'another device' in denied['error']

    def test_actions_need_a_session(self, game_service):
        result = game_service.shuffle('acct', 'device-a')
        assert not result['success']
        assert 'No active session' in result['error']


class TestPlay:
    def test_mode_selection_claims_guard_and_snapshots(self, playing, persistence):
        account = persistence.read_account('acct')
        assert account.active_instance_id == 'device-a'
        assert account.latest_save_state.game_type.value == 'classic'

    def test_unknown_mode_rejected(self, game_service):
        game_service.enter('acct', 'device-a')
        assert not game_service.select_mode('acct', 'device-a', 'marathon')['success']

    def test_correct_guess(self, playing):
        result = _guess(playing, 'acct', 'device-a', *YELLOW)

        assert result['outcome'] == 'correct'
        assert result['category']['color'] == 'yellow'
        assert result['state']['solved_row_count'] == 1
        assert not result['game_over']

    def test_unknown_word_rejected(self, playing):
        result = playing.toggle_select('acct', 'device-a', 'zebra')
        assert not result['success']

    def test_win_archives_and_counts_achievements(self, playing, persistence):
        for words in (YELLOW, GREEN, BLUE, PURPLE):
            result = _guess(playing, 'acct', 'device-a', *words)

        assert result['game_over']
        assert result['state']['won']

        account = persistence.read_account('acct')
        assert account.get_played(100).won
        assert account.latest_save_state is None
        assert account.active_instance_id is None
        assert account.counter('regular') == 1
        assert account.counter('no_mistakes') == 1

    def test_finished_game_is_shown_read_only_later(self, playing, make_game_service):
        for words in (YELLOW, GREEN, BLUE, PURPLE):
            _guess(playing, 'acct', 'device-a', *words)

        result = make_game_service().enter('acct', 'device-b')

        assert result['status'] == 'view_results'
        assert result['state']['read_only']
        assert result['state']['won']
        assert result['state']['solved_row_count'] == 4

    def test_hint_is_persisted(self, playing, persistence):
        playing.toggle_select('acct', 'device-a', 'sun')
        result = playing.use_hint('acct', 'device-a')

        assert result['success']
        assert 'SUN' in result['hint_words']
        assert persistence.read_account('acct').latest_save_state.hints_left == 3


class TestRecovery:
    def test_exit_then_resume_elsewhere(self, playing, make_game_service, clock):
        _guess(playing, 'acct', 'device-a', 'sun', 'lemon', 'banana', 'apple')
        _guess(playing, 'acct', 'device-a', *GREEN)
        clock.advance(seconds=30)
        assert playing.exit_session('acct', 'device-a')['success']

        clock.advance(minutes=10)
        result = make_game_service().enter('acct', 'device-b')

        assert result['status'] == 'resume'
        state = result['state']
        assert state['mistakes_left'] == 2
        assert state['solved_row_count'] == 1
        assert state['elapsed_seconds'] == 30
        assert len(state['guesses']) == 2

    def test_stale_save_discarded_after_rotation(self, playing, make_game_service, persistence, clock):
        _guess(playing, 'acct', 'device-a', *YELLOW)
        _guess(playing, 'acct', 'device-a', *GREEN)
        playing.exit_session('acct', 'device-a')

        clock.advance(days=1)
        result = make_game_service().enter('acct', 'device-a')

        assert result['status'] == 'fresh'
        assert result['state']['puzzle_number'] == 101
        assert result['state']['solved_row_count'] == 0
        assert persistence.read_account('acct').latest_save_state is None

    def test_session_keeps_its_puzzle_past_midnight(self, game_service, clock):
        clock.now = datetime(2025, 3, 14, 23, 59, 0, tzinfo=timezone.utc)
        game_service.enter('acct', 'device-a')
        game_service.select_mode('acct', 'device-a', 'classic')

        clock.advance(minutes=5)
        result = _guess(game_service, 'acct', 'device-a', *BLUE)

        assert result['outcome'] == 'correct'
        assert result['state']['puzzle_number'] == 100

    def test_failed_snapshot_rolls_back_the_guess(self, playing, store):
        for text in ('sun', 'lemon', 'banana', 'apple'):
            playing.toggle_select('acct', 'device-a', text)
        store.fail_writes = True

        failed = playing.submit_guess('acct', 'device-a')

        assert not failed['success']
        assert failed['retryable']
        state = playing.get_state('acct', 'device-a')['state']
        assert state['mistakes_left'] == 3
        assert state['guesses'] == []
        assert len(state['selection']) == 4

        store.fail_writes = False
        assert playing.submit_guess('acct', 'device-a')['outcome'] == 'one_away'

    def test_failed_exit_keeps_session(self, playing, store):
        store.fail_writes = True
        result = playing.exit_session('acct', 'device-a')

        assert result['retryable']
        assert playing.get_session('acct') is not None

    def test_unreadable_account_enters_fresh(self, game_service, store):
        store.fail_reads = True
        result = game_service.enter('acct', 'device-a')
        assert result['status'] == 'fresh'

    def test_heartbeat(self, playing):
        assert playing.heartbeat('acct', 'device-a')['guard_held']
        assert not playing.heartbeat('acct', 'device-b')['guard_held']

    def test_dropped_sessions_are_forgotten(self, playing):
        assert playing.get_active_sessions_count() == 1
        assert playing.drop_sessions(['acct', 'other']) == 1
        assert playing.get_active_sessions_count() == 0

    def test_finished_sessions_are_evicted(self, playing):
        for words in (YELLOW, GREEN, BLUE, PURPLE):
            _guess(playing, 'acct', 'device-a', *words)
        playing.enter('other', 'device-b')

        assert playing.evict_sessions(GUARD_TIMEOUT) == ['acct']
        assert playing.get_session('other') is not None
        assert playing.enter('acct', 'device-a')['status'] == 'view_results'

    def test_idle_sessions_are_evicted(self, playing, clock):
        playing.enter('other', 'device-b')
        clock.advance(seconds=GUARD_TIMEOUT - 20)
        playing.heartbeat('acct', 'device-a')
        clock.advance(seconds=20)

        assert playing.evict_sessions(GUARD_TIMEOUT) == ['other']
        assert playing.get_session('acct') is not None
        assert playing.evict_sessions(0, now=clock.advance(days=1)) == []

    def test_sweep_does_not_undo_a_game_ending_meanwhile(self, playing, persistence, store, clock, monkeypatch):
        for words in (YELLOW, GREEN, BLUE):
            _guess(playing, 'acct', 'device-a', *words)
        clock.advance(seconds=GUARD_TIMEOUT + 10)

        read_all = store.read_all

        def read_then_win(collection):
            documents = read_all(collection)
            assert _guess(playing, 'acct', 'device-a', *PURPLE)['outcome'] == 'correct'
            return documents

        monkeypatch.setattr(store, 'read_all', read_then_win)
        assert persistence.clear_stale_guards()['cleared_count'] == 0

        account = persistence.read_account('acct')
        assert account.has_played(100)
        assert account.latest_save_state is None
        assert account.counter('regular') == 1


class TestTimeTrial:
    def test_countdown_then_expiry(self, game_service, persistence, clock):
        game_service.enter('acct', 'device-a')
        assert game_service.select_mode('acct', 'device-a', 'time_trial')['state']['phase'] == 'countdown'
        assert game_service.finish_countdown('acct', 'device-a')['state']['time_left'] == 60

        clock.advance(seconds=5)
        _guess(game_service, 'acct', 'device-a', *YELLOW)
        clock.advance(seconds=56)
        result = game_service.tick('acct', 'device-a')

        assert [c['color'] for c in result['auto_solved']] == ['green', 'blue', 'purple']
        assert result['state']['ran_out_of_time']
        assert not result['state']['won']

        record = persistence.read_account('acct').get_played(100)
        assert record.time_limit == 60
        assert record.completed_before_limit is False
        assert persistence.read_account('acct').counter('time_trial') == 1

    def test_resume_keeps_remaining_time(self, game_service, make_game_service, clock):
        game_service.enter('acct', 'device-a')
        game_service.select_mode('acct', 'device-a', 'time_trial')
        game_service.finish_countdown('acct', 'device-a')
        clock.advance(seconds=15)
        game_service.exit_session('acct', 'device-a')

        clock.advance(hours=1)
        result = make_game_service().enter('acct', 'device-a')

        assert result['status'] == 'resume'
        assert result['state']['time_left'] == 45

    def test_tick_reports_midnight(self, game_service, clock):
        clock.now = datetime(2025, 3, 14, 23, 59, 59, 500000, tzinfo=timezone.utc)
        game_service.enter('acct', 'device-a')
        game_service.select_mode('acct', 'device-a', 'classic')

        assert game_service.tick('acct', 'device-a')['midnight_imminent']
