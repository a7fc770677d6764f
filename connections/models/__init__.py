"""
Data Models Package

Contains all data models and schemas used throughout the application.
"""

from .game import (
    DifficultyColor, GameType, GuessOutcome, Word, Category, Puzzle,
    PuzzleConfigurationError, sort_words
)
from .records import SessionSaveState, PlayedGameRecord
from .user import AccountRecord, ACHIEVEMENT_COUNTERS

__all__ = [
    'DifficultyColor', 'GameType', 'GuessOutcome', 'Word', 'Category', 'Puzzle',
    'PuzzleConfigurationError', 'sort_words',
    'SessionSaveState', 'PlayedGameRecord',
    'AccountRecord', 'ACHIEVEMENT_COUNTERS'
]
