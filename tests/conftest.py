import random
from datetime import datetime, timedelta, timezone

import pytest

from connections import create_app
from connections.config import PUZZLE_CATALOGUE, TestingConfig
from connections.models import Puzzle
from connections.services.auth_service import initialize_auth_service
from connections.services.game_service import GameService, initialize_game_service
from connections.services.persistence_service import PersistenceService, initialize_persistence_service
from connections.services.puzzle_service import PuzzleService, initialize_puzzle_service
from connections.services.rotation_service import RotationClock, initialize_rotation_clock
from connections.services.store import MemoryDocumentStore, PersistenceError, USERS_COLLECTION

START = datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc)
GUARD_TIMEOUT = 120


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, start=START):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now


class FlakyStore(MemoryDocumentStore):
    """In-memory store whose account reads or writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    def read(self, collection, key):
        if self.fail_reads and collection == USERS_COLLECTION:
            raise PersistenceError("account store offline")
        return super().read(collection, key)

    def write(self, collection, key, document):
        if self.fail_writes and collection == USERS_COLLECTION:
            raise PersistenceError("account store offline")
        super().write(collection, key, document)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def puzzle():
    """Puzzle 100: yellow things, fruits, vegetables, drinks."""
    return Puzzle.from_document(PUZZLE_CATALOGUE[0])


@pytest.fixture
def puzzles(store):
    service = PuzzleService(store)
    service.seed_catalogue(PUZZLE_CATALOGUE)
    return service


@pytest.fixture
def rotation(store, puzzles, clock):
    rotation_clock = RotationClock(store, puzzles, 'UTC', clock=clock)
    rotation_clock.initialize(100, 104, now=clock())
    return rotation_clock


@pytest.fixture
def persistence(store, clock):
    return PersistenceService(store, GUARD_TIMEOUT, clock=clock)


@pytest.fixture
def make_game_service(persistence, puzzles, rotation, clock):
    """Factory for game services sharing one store, like two server processes."""
    def factory():
        return GameService(persistence, puzzles, rotation, clock=clock, rng_factory=lambda: random.Random(7))
    return factory


@pytest.fixture
def game_service(make_game_service):
    return make_game_service()


@pytest.fixture
def app(store):
    puzzle_service = initialize_puzzle_service(store)
    puzzle_service.seed_catalogue(PUZZLE_CATALOGUE)
    bounds = puzzle_service.puzzle_number_range()
    rotation_clock = initialize_rotation_clock(store, puzzle_service, 'UTC')
    rotation_clock.initialize(bounds[0], bounds[1])
    persistence_service = initialize_persistence_service(store, GUARD_TIMEOUT)
    initialize_auth_service(persistence_service, TestingConfig.JWT_SECRET)
    initialize_game_service(persistence_service, puzzle_service, rotation_clock)

    flask_app, _ = create_app(TestingConfig)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def guest(client):
    """A registered guest: (user dict, Authorization headers)."""
    response = client.post('/api/auth/guest', json={'username': 'tester'})
    body = response.get_json()
    return body['user'], {'Authorization': f"Bearer {body['token']}"}
