"""
Word Grid

The 4x4 board of a session: unsolved cells, solved category rows at the top,
the current selection and the chronological guess history.
"""

import random
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from ..config.game_settings import COLS, MAX_SELECTED, ROWS
from ..models.game import Category, DifficultyColor, Guess, Puzzle, Word
from ..utils.game_logger import game_logger

# Colors considered when building the hint highlight
HINT_COLOR_COUNT = 3


class WordGrid:
    """
    Mutable board state for one session.

    Every puzzle word is always either in a solved row or in the unsolved
    cells, exactly once. Solved rows are kept in resolution order.
    """

    def __init__(self, puzzle: Puzzle, rng: Optional[random.Random] = None):
        self.puzzle = puzzle
        self.rng = rng or random.Random()
        self.solved_rows: List[Category] = []
        self.cells: List[Word] = puzzle.all_words()
        self.selection: List[Word] = []
        self.guesses: List[Guess] = []
        self._canonical: Dict[Tuple[str, DifficultyColor], Word] = {
            (word.text, word.color): word for word in self.cells
        }

    @property
    def solved_row_count(self) -> int:
        return len(self.solved_rows)

    @property
    def solved_colors(self) -> List[DifficultyColor]:
        return [category.color for category in self.solved_rows]

    def initialize(self) -> None:
        """Fresh board: all 16 words shuffled, nothing solved or guessed."""
        self.solved_rows = []
        self.selection = []
        self.guesses = []
        self.cells = self.puzzle.all_words()
        self.rng.shuffle(self.cells)

    # Selection

    def toggle_select(self, word: Word) -> bool:
        """
        Deselect a selected word, or select it while fewer than 4 are selected.

        Words in solved rows or foreign to the board are ignored.

        Returns:
            bool: True if the selection changed
        """
        word = self.canonical_word(word)
        if word is None or word not in self.cells:
            return False

        if word in self.selection:
            self.selection.remove(word)
            return True

        if len(self.selection) >= MAX_SELECTED:
            return False

        self.selection.append(word)
        return True

    def deselect_all(self) -> None:
        self.selection = []

    def shuffle(self) -> None:
        """Permute the unsolved cells only."""
        self.rng.shuffle(self.cells)

    # Matching

    def match_count(self, words: Iterable[Word]) -> int:
        """Largest number of the given words that belong to a single category."""
        distinct = set(words)
        return max(category.count_members(distinct) for category in self.puzzle.categories.values())

    def matching_category(self, words: Iterable[Word]) -> Optional[Category]:
        distinct = set(words)
        if len(distinct) != MAX_SELECTED:
            return None
        for category in self.puzzle.categories.values():
            if category.count_members(distinct) == MAX_SELECTED:
                return category
        return None

    def record_guess(self, words: Iterable[Word]) -> bool:
        """
        Append a guess to the history.

        Returns:
            bool: False if the identical word set was already guessed
        """
        guess = frozenset(words)
        if guess in self.guesses:
            return False
        self.guesses.append(guess)
        return True

    # Resolution

    def resolve_category(self, category: Category) -> bool:
        """
        Move a category's words out of the unsolved cells into a new solved row.

        Returns:
            bool: False if the category was already solved
        """
        if category.color in self.solved_colors:
            return False

        members = set(category.as_words())
        self.cells = [word for word in self.cells if word not in members]
        self.solved_rows.append(category)
        self.selection = []
        return True

    def all_categories_solved(self) -> bool:
        if self.solved_row_count != ROWS:
            return False
        winning = [self.matching_category(guess) for guess in self.guesses]
        colors = [category.color for category in winning if category is not None]
        return len(colors) == len(set(colors))

    def unsolved_colors(self) -> List[DifficultyColor]:
        solved = set(self.solved_colors)
        return [color for color in DifficultyColor.all_colors() if color not in solved]

    def reconstruct_from_guesses(self, guesses: Iterable[Guess],
                                 arrangement: Optional[List[Word]] = None) -> None:
        """
        Rebuild the board by replaying a chronological guess history.

        Unsolved words keep the persisted arrangement order when one is given;
        puzzle words missing from it are appended in puzzle order. A guess with
        words foreign to this puzzle stays in the history but resolves nothing.

        Args:
            guesses: Guess history, oldest first
            arrangement: Persisted row-major order of unsolved words
        """
        self.solved_rows = []
        self.selection = []
        self.guesses = []
        self.cells = self._arrange(arrangement)

        for guess in guesses:
            canonical = [self.canonical_word(word) for word in guess]
            if any(word is None for word in canonical):
                game_logger.logger.warning(
                    f"Puzzle {self.puzzle.puzzle_number}: replayed guess "
                    f"{sorted(word.text for word in guess)} has words foreign to the puzzle"
                )
                self.record_guess(guess)
                continue

            if not self.record_guess(canonical):
                continue

            category = self.matching_category(canonical)
            if category is not None:
                self.resolve_category(category)

    def _arrange(self, arrangement: Optional[List[Word]]) -> List[Word]:
        if not arrangement:
            return self.puzzle.all_words()

        cells: List[Word] = []
        for word in arrangement:
            canonical = self.canonical_word(word)
            if canonical is not None and canonical not in cells:
                cells.append(canonical)
        cells.extend(word for word in self.puzzle.all_words() if word not in cells)
        return cells

    # Lookup and layout

    def canonical_word(self, word: Word) -> Optional[Word]:
        """The puzzle's own instance of a (possibly deserialized) word."""
        return self._canonical.get((word.text.strip().upper(), word.color))

    def find_word(self, text: str) -> Optional[Word]:
        """Unsolved word by case-insensitive text."""
        needle = text.strip().upper()
        for word in self.cells:
            if word.text == needle:
                return word
        return None

    def rows_as_words(self) -> List[List[Word]]:
        """Board as ROWS rows; solved rows are empty lists."""
        rows: List[List[Word]] = [[] for _ in range(self.solved_row_count)]
        for start in range(0, len(self.cells), COLS):
            rows.append(list(self.cells[start:start + COLS]))
        return rows

    def hint_words(self) -> List[Word]:
        """
        Highlight set for a hint.

        The selected words, plus for each of the (up to three) colors most
        represented in the selection, the first unselected board word of that
        color.
        """
        highlighted = list(self.selection)
        counts = Counter(word.color for word in self.selection)
        top_colors = sorted(counts, key=lambda color: (-counts[color], color.value))[:HINT_COLOR_COUNT]

        for color in top_colors:
            for word in self.cells:
                if word.color is color and word not in highlighted:
                    highlighted.append(word)
                    break
        return highlighted

    # Checkpointing

    def capture(self) -> Tuple:
        return list(self.solved_rows), list(self.cells), list(self.selection), list(self.guesses)

    def restore_capture(self, captured: Tuple) -> None:
        solved_rows, cells, selection, guesses = captured
        self.solved_rows = list(solved_rows)
        self.cells = list(cells)
        self.selection = list(selection)
        self.guesses = list(guesses)
