import itertools
import random

import pytest

from connections.models import DifficultyColor, Word
from connections.services.grid import WordGrid


@pytest.fixture
def grid(puzzle):
    board = WordGrid(puzzle, random.Random(3))
    board.initialize()
    return board


def _words(grid, *texts):
    return [grid.find_word(text) for text in texts]


def _board_words(grid):
    solved = [word for category in grid.solved_rows for word in category.as_words()]
    return solved + list(grid.cells)


def test_initialize_places_every_word_once(grid, puzzle):
    assert len(grid.cells) == 16
    assert set(grid.cells) == set(puzzle.all_words())
    assert grid.solved_rows == []
    assert grid.guesses == []


def test_selection_capped_at_four(grid):
    for word in _words(grid, "SUN", "APPLE", "MILK", "CARROT"):
        assert grid.toggle_select(word)
    assert not grid.toggle_select(grid.find_word("PEAR"))
    assert len(grid.selection) == 4


def test_toggle_deselects(grid):
    sun = grid.find_word("sun")
    assert grid.toggle_select(sun)
    assert grid.toggle_select(sun)
    assert grid.selection == []


def test_foreign_word_ignored(grid):
    assert not grid.toggle_select(Word("NOPE", DifficultyColor.YELLOW))
    assert not grid.toggle_select(Word("SUN", DifficultyColor.GREEN))
    assert grid.selection == []


def test_match_count_is_largest_overlap(grid):
    assert grid.match_count(_words(grid, "SUN", "LEMON", "BANANA", "APPLE")) == 3
    assert grid.match_count(_words(grid, "SUN", "LEMON", "APPLE", "CUCUMBER")) == 2
    assert grid.match_count(_words(grid, "SUN", "APPLE", "CUCUMBER", "MILK")) == 1


def test_matching_category(grid):
    category = grid.matching_category(_words(grid, "GOLD", "SUN", "BANANA", "LEMON"))
    assert category.color is DifficultyColor.YELLOW
    assert grid.matching_category(_words(grid, "GOLD", "SUN", "BANANA", "APPLE")) is None


def test_only_exact_category_sets_match(grid, puzzle):
    category_sets = {frozenset(category.as_words()) for category in puzzle.categories.values()}
    matched = set()
    combinations = list(itertools.combinations(grid.cells, 4))

    for combination in combinations:
        category = grid.matching_category(combination)
        if category is not None:
            assert frozenset(combination) == frozenset(category.as_words())
            matched.add(frozenset(combination))
        assert (grid.match_count(combination) == 4) == (frozenset(combination) in category_sets)

    assert len(combinations) == 1820
    assert matched == category_sets


def test_record_guess_rejects_repeat_in_any_order(grid):
    assert grid.record_guess(_words(grid, "SUN", "LEMON", "BANANA", "APPLE"))
    assert not grid.record_guess(_words(grid, "APPLE", "BANANA", "LEMON", "SUN"))
    assert len(grid.guesses) == 1


def test_resolve_moves_words_and_is_idempotent(grid, puzzle):
    yellow = puzzle.category_for(DifficultyColor.YELLOW)
    grid.toggle_select(grid.find_word("SUN"))

    assert grid.resolve_category(yellow)
    assert not grid.resolve_category(yellow)

    assert grid.solved_row_count == 1
    assert len(grid.cells) == 12
    assert grid.selection == []
    assert grid.find_word("SUN") is None
    assert sorted(_board_words(grid), key=lambda w: w.text) == sorted(puzzle.all_words(), key=lambda w: w.text)


def test_shuffle_keeps_solved_rows(grid, puzzle):
    grid.resolve_category(puzzle.category_for(DifficultyColor.BLUE))
    before = set(grid.cells)

    grid.shuffle()

    assert grid.solved_colors == [DifficultyColor.BLUE]
    assert set(grid.cells) == before


def test_rows_as_words_keeps_solved_rows_empty(grid, puzzle):
    grid.resolve_category(puzzle.category_for(DifficultyColor.YELLOW))
    rows = grid.rows_as_words()
    assert len(rows) == 4
    assert rows[0] == []
    assert all(len(row) == 4 for row in rows[1:])


def test_all_categories_solved_requires_four_rows(grid, puzzle):
    for color in DifficultyColor.all_colors():
        assert not grid.all_categories_solved()
        category = puzzle.category_for(color)
        grid.record_guess(category.as_words())
        grid.resolve_category(category)
    assert grid.all_categories_solved()
    assert grid.cells == []


def test_unsolved_colors_in_difficulty_order(grid, puzzle):
    grid.resolve_category(puzzle.category_for(DifficultyColor.GREEN))
    assert grid.unsolved_colors() == [DifficultyColor.YELLOW, DifficultyColor.BLUE, DifficultyColor.PURPLE]


def test_hint_adds_one_word_per_represented_color(grid):
    for word in _words(grid, "SUN", "APPLE", "PEAR"):
        grid.toggle_select(word)

    highlighted = grid.hint_words()

    assert highlighted[:3] == grid.selection
    extra = highlighted[3:]
    assert [word.color for word in extra] == [DifficultyColor.GREEN, DifficultyColor.YELLOW]
    assert not set(extra) & set(grid.selection)


def test_hint_without_selection_is_empty(grid):
    assert grid.hint_words() == []


class TestReconstruct:
    def test_replay_resolves_correct_guesses(self, grid, puzzle):
        yellow = frozenset(puzzle.category_for(DifficultyColor.YELLOW).as_words())
        near_miss = frozenset(_words(grid, "APPLE", "PEAR", "ORANGE", "MILK"))

        grid.reconstruct_from_guesses([near_miss, yellow])

        assert grid.guesses == [near_miss, yellow]
        assert grid.solved_colors == [DifficultyColor.YELLOW]
        assert len(grid.cells) == 12

    def test_arrangement_order_is_kept(self, grid, puzzle):
        arrangement = list(reversed(puzzle.all_words()))[:10]

        grid.reconstruct_from_guesses([], arrangement)

        assert grid.cells[:10] == arrangement
        assert set(grid.cells) == set(puzzle.all_words())

    def test_foreign_guess_kept_but_unresolved(self, grid):
        foreign = frozenset(Word(text, DifficultyColor.YELLOW) for text in ("SUN", "LEMON", "BANANA", "TAXI"))

        grid.reconstruct_from_guesses([foreign])

        assert grid.guesses == [foreign]
        assert grid.solved_rows == []
        assert len(grid.cells) == 16

    def test_capture_and_restore(self, grid, puzzle):
        captured = grid.capture()
        grid.toggle_select(grid.find_word("MILK"))
        grid.record_guess(puzzle.category_for(DifficultyColor.PURPLE).as_words())
        grid.resolve_category(puzzle.category_for(DifficultyColor.PURPLE))

        grid.restore_capture(captured)

        assert grid.solved_rows == []
        assert grid.guesses == []
        assert grid.selection == []
        assert len(grid.cells) == 16
