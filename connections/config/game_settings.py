"""
Game Configuration Constants Module

This module defines all game configuration constants for the Connections
puzzle engine. Rules that both game modes share live here so that the grid,
the session state machine and the persistence layer agree on them.

"""

import json
import os
from typing import Dict, Final, List

# Board geometry
ROWS: Final[int] = 4
COLS: Final[int] = 4
MAX_SELECTED: Final[int] = 4
"""
Number of words in a guess, and the number of words in every category.
"""

# Budgets (identical for classic and time trial)
MAX_MISTAKES: Final[int] = 3
"""
Mistakes remaining at the start of a session. The game is lost when a wrong
guess decrements this counter to zero.
"""

MAX_HINTS: Final[int] = 4

# Time trial
TIME_TRIAL_DURATION_SEC: Final[int] = 60
SNAPSHOT_CUTOFF_SECONDS: Final[int] = 2
"""
Once fewer than this many seconds remain on a time trial clock, save states
are no longer written, so a reload never restores an already expired clock.
"""

# Achievements
UNDER_TIME_SECONDS: Final[int] = 30
ACHIEVEMENT_THRESHOLDS: Final[Dict[str, int]] = {
    "yellow": 1,
    "green": 10,
    "blue": 50,
    "purple": 100,
}

MIDNIGHT_TRIGGER_SECONDS: Final[int] = 1


# Load puzzle catalogue from JSON file
def _load_puzzle_catalogue() -> List[dict]:
    """
    Load the bundled puzzle catalogue from puzzles.json.

    Returns:
        List[dict]: Raw puzzle documents ({"number": ..., "colors": [...]})

    Raises:
        FileNotFoundError: If puzzles.json file is not found
        ValueError: If the JSON is malformed or has no "games" array
    """
    config_dir = os.path.dirname(os.path.abspath(__file__))
    json_file_path = os.path.join(config_dir, 'puzzles.json')

    try:
        with open(json_file_path, 'r', encoding='utf-8') as f:
            catalogue = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Puzzle catalogue file not found: {json_file_path}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in puzzles.json: {e}")

    games = catalogue.get("games") if isinstance(catalogue, dict) else None
    if not isinstance(games, list):
        raise ValueError("puzzles.json must contain a \"games\" array")

    if not games:
        raise ValueError("Puzzle catalogue cannot be empty")

    return games


# Bundled puzzle documents, seeded into the store at start-up
PUZZLE_CATALOGUE: Final[List[dict]] = _load_puzzle_catalogue()


def validate_puzzle_catalogue_integrity(catalogue: List[dict] = None) -> bool:
    """
    Validates every puzzle of the catalogue.

    This function performs validation to ensure:
    1. Every document parses into a well-formed puzzle (4 categories, one per
       color, 16 distinct words)
    2. Puzzle numbers are unique

    Returns:
        bool: True if the catalogue passes all validation checks

    Raises:
        PuzzleConfigurationError: If a puzzle is malformed
        ValueError: If puzzle numbers are duplicated
    """
    from ..models.game import Puzzle

    documents = PUZZLE_CATALOGUE if catalogue is None else catalogue
    numbers = [Puzzle.from_document(doc).puzzle_number for doc in documents]

    if len(numbers) != len(set(numbers)):
        duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
        raise ValueError(f"Duplicate puzzle numbers found in catalogue: {duplicates}")

    return True


def get_puzzle_statistics() -> dict:
    """
    Summarises the bundled catalogue.

    Returns:
        dict: total_puzzles, min_puzzle_number, max_puzzle_number
    """
    numbers = [doc.get("number") for doc in PUZZLE_CATALOGUE if isinstance(doc.get("number"), int)]
    if not numbers:
        return {"error": "Puzzle catalogue is empty"}

    return {
        "total_puzzles": len(numbers),
        "min_puzzle_number": min(numbers),
        "max_puzzle_number": max(numbers),
    }


if __name__ == "__main__":

    try:
        validate_puzzle_catalogue_integrity()
        print(" Puzzle catalogue validation passed")

        stats = get_puzzle_statistics()
        print(f" Catalogue statistics: {stats}")
    except ValueError as config_error:
        print(f" Configuration validation failed: {config_error}")
        exit(1)
