"""
Puzzle Service

Maps puzzle numbers to puzzles stored in the document store and seeds the
store from the bundled catalogue.
"""

import threading
from typing import Dict, List, Optional, Tuple

from .store import DocumentStore, PUZZLES_COLLECTION
from ..models.game import Puzzle
from ..utils.game_logger import game_logger


class PuzzleService:
    """
    Read-mostly puzzle source.

    Parsed puzzles are cached; a malformed stored puzzle raises
    PuzzleConfigurationError instead of being coerced.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self._cache: Dict[int, Puzzle] = {}
        self._lock = threading.Lock()

    def get_puzzle(self, puzzle_number: int) -> Optional[Puzzle]:
        """
        Returns the puzzle for a number.

        Args:
            puzzle_number: Puzzle number

        Returns:
            Puzzle or None if no puzzle has that number

        Raises:
            PuzzleConfigurationError: If the stored puzzle is malformed
            PersistenceError: If the store is unreachable
        """
        with self._lock:
            cached = self._cache.get(puzzle_number)
        if cached is not None:
            return cached

        document = self.store.read(PUZZLES_COLLECTION, puzzle_number)
        if document is None:
            return None

        puzzle = Puzzle.from_document(document)
        with self._lock:
            self._cache[puzzle_number] = puzzle
        return puzzle

    def has_puzzle(self, puzzle_number: int) -> bool:
        return self.get_puzzle(puzzle_number) is not None

    def puzzle_number_range(self) -> Optional[Tuple[int, int]]:
        """
        Lowest and highest stored puzzle numbers.

        Returns:
            (min, max) or None if the store holds no puzzles
        """
        numbers = [doc["number"] for doc in self.store.read_all(PUZZLES_COLLECTION)
                   if isinstance(doc.get("number"), int)]
        if not numbers:
            return None
        return min(numbers), max(numbers)

    def seed_catalogue(self, documents: List[dict], overwrite: bool = False) -> int:
        """
        Write catalogue puzzles into the store.

        Every document is validated first, so a malformed catalogue writes
        nothing.

        Args:
            documents: Raw puzzle documents
            overwrite: Replace puzzles that already exist

        Returns:
            int: Number of puzzles written
        """
        puzzles = [Puzzle.from_document(doc) for doc in documents]

        written = 0
        for puzzle in puzzles:
            if not overwrite and self.store.read(PUZZLES_COLLECTION, puzzle.puzzle_number) is not None:
                continue
            self.store.write(PUZZLES_COLLECTION, puzzle.puzzle_number, puzzle.to_document())
            written += 1

        with self._lock:
            self._cache.clear()

        if written:
            game_logger.logger.info(f"Seeded {written} puzzles into the puzzle store")
        return written


# Global service instance
_puzzle_service = None


def get_puzzle_service() -> Optional[PuzzleService]:
    """Get the global puzzle service instance."""
    return _puzzle_service


def initialize_puzzle_service(store: DocumentStore) -> PuzzleService:
    """Initialize the global puzzle service instance."""
    global _puzzle_service
    _puzzle_service = PuzzleService(store)
    return _puzzle_service
