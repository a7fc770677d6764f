"""
Services Package

Contains all business logic and service classes.
"""

from .store import DocumentStore, MongoDocumentStore, MemoryDocumentStore, PersistenceError, create_store
from .puzzle_service import PuzzleService, get_puzzle_service, initialize_puzzle_service
from .rotation_service import RotationClock, get_rotation_clock, initialize_rotation_clock
from .grid import WordGrid
from .persistence_service import (
    EntryStatus, EntryDecision, PersistenceService, get_persistence_service, initialize_persistence_service
)
from .game_service import GameSession, GameService, SessionPhase, get_game_service, initialize_game_service
from .auth_service import AuthService, get_auth_service, initialize_auth_service

__all__ = [
    'DocumentStore', 'MongoDocumentStore', 'MemoryDocumentStore', 'PersistenceError', 'create_store',
    'PuzzleService', 'get_puzzle_service', 'initialize_puzzle_service',
    'RotationClock', 'get_rotation_clock', 'initialize_rotation_clock',
    'WordGrid',
    'EntryStatus', 'EntryDecision', 'PersistenceService', 'get_persistence_service',
    'initialize_persistence_service',
    'GameSession', 'GameService', 'SessionPhase', 'get_game_service', 'initialize_game_service',
    'AuthService', 'get_auth_service', 'initialize_auth_service'
]
