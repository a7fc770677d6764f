"""
Game Data Models

Contains the immutable puzzle value types (difficulty colors, words,
categories, puzzles) and the enums shared by the session engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..config.game_settings import MAX_SELECTED


class PuzzleConfigurationError(ValueError):
    """Raised when puzzle data does not describe a well-formed 4x4 puzzle."""


class DifficultyColor(Enum):
    """Category difficulty, ordered from easiest (YELLOW) to hardest (PURPLE)."""
    YELLOW = 1
    GREEN = 2
    BLUE = 3
    PURPLE = 4

    def __lt__(self, other):
        if not isinstance(other, DifficultyColor):
            return NotImplemented
        return self.value < other.value

    @classmethod
    def all_colors(cls) -> List["DifficultyColor"]:
        """All four colors in ascending difficulty."""
        return sorted(cls)

    @classmethod
    def from_db(cls, value: str) -> "DifficultyColor":
        if not isinstance(value, str):
            raise ValueError(f"Invalid color value: {value!r}")
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown difficulty color: {value!r}")

    def to_db(self) -> str:
        return self.name.lower()


class GameType(Enum):
    """Game mode discriminator, persisted by value."""
    CLASSIC = "classic"
    TIME_TRIAL = "time_trial"
    NONE = "none"

    @classmethod
    def from_db(cls, value: Optional[str]) -> "GameType":
        if value is None:
            return cls.NONE
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Unknown game type: {value!r}")


class GuessOutcome(Enum):
    """Result of submitting the current selection."""
    CORRECT = "correct"
    ONE_AWAY = "one_away"
    MISS = "miss"
    ALREADY_GUESSED = "already_guessed"
    INCOMPLETE_SELECTION = "incomplete_selection"
    NOT_ACTIVE = "not_active"


@dataclass(frozen=True)
class Word:
    """A board word. Two words with equal text and color are interchangeable."""
    text: str
    color: DifficultyColor

    def to_document(self) -> Dict[str, str]:
        return {"text": self.text, "color": self.color.to_db()}

    @classmethod
    def from_document(cls, doc: Dict) -> "Word":
        if not isinstance(doc, dict) or not isinstance(doc.get("text"), str):
            raise ValueError(f"Malformed word document: {doc!r}")
        return cls(doc["text"], DifficultyColor.from_db(doc.get("color")))


Guess = FrozenSet[Word]


def sort_words(words: Iterable[Word]) -> List[Word]:
    """Deterministic order for persisting word sets: by difficulty, then text."""
    return sorted(words, key=lambda w: (w.color.value, w.text))


@dataclass(frozen=True)
class Category:
    """One of the four secret groupings of a puzzle (the "answer" for a color)."""
    color: DifficultyColor
    description: str
    words: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "words", tuple(w.strip().upper() for w in self.words))

    def contains(self, text: str) -> bool:
        """Case-insensitive membership test."""
        return text.strip().upper() in self.words

    def count_members(self, words: Iterable[Word]) -> int:
        return sum(1 for word in words if self.contains(word.text))

    def matches(self, texts: Iterable[str]) -> bool:
        return {t.strip().upper() for t in texts} == set(self.words)

    def as_words(self) -> List[Word]:
        return [Word(text, self.color) for text in self.words]

    def to_document(self) -> Dict:
        return {
            "color": self.color.to_db(),
            "label": self.description,
            "words": list(self.words),
        }

    @classmethod
    def from_document(cls, doc: Dict) -> "Category":
        try:
            words = doc["words"]
            if not isinstance(words, list) or not all(isinstance(w, str) for w in words):
                raise PuzzleConfigurationError(f"Category words must be a list of strings: {words!r}")
            return cls(DifficultyColor.from_db(doc["color"]), doc.get("label", ""), tuple(words))
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, PuzzleConfigurationError):
                raise
            raise PuzzleConfigurationError(f"Malformed category document: {e}")


@dataclass
class Puzzle:
    """
    A puzzle: four categories, one per difficulty color, 16 distinct words.

    Construction validates the shape and raises PuzzleConfigurationError
    for anything else.
    """
    puzzle_number: int
    categories: Dict[DifficultyColor, Category] = field(default_factory=dict)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if len(self.categories) != len(DifficultyColor):
            raise PuzzleConfigurationError(
                f"Puzzle {self.puzzle_number} has {len(self.categories)} categories, expected 4"
            )

        for color, category in self.categories.items():
            if category.color != color:
                raise PuzzleConfigurationError(
                    f"Puzzle {self.puzzle_number}: category keyed {color.name} is {category.color.name}"
                )
            if len(category.words) != MAX_SELECTED:
                raise PuzzleConfigurationError(
                    f"Puzzle {self.puzzle_number}: {color.name} has {len(category.words)} words, expected 4"
                )

        all_texts = [text for category in self.categories.values() for text in category.words]
        if len(set(all_texts)) != len(DifficultyColor) * MAX_SELECTED:
            duplicates = sorted({t for t in all_texts if all_texts.count(t) > 1})
            raise PuzzleConfigurationError(
                f"Puzzle {self.puzzle_number} must have 16 distinct words, duplicates: {duplicates}"
            )

    def category_for(self, color: DifficultyColor) -> Category:
        return self.categories[color]

    def all_words(self) -> List[Word]:
        """All 16 words in puzzle order (by difficulty, then listed order)."""
        words = []
        for color in DifficultyColor.all_colors():
            words.extend(self.categories[color].as_words())
        return words

    def to_document(self) -> Dict:
        return {
            "number": self.puzzle_number,
            "colors": [self.categories[c].to_document() for c in DifficultyColor.all_colors()],
        }

    @classmethod
    def from_document(cls, doc: Dict) -> "Puzzle":
        if not isinstance(doc, dict):
            raise PuzzleConfigurationError(f"Malformed puzzle document: {doc!r}")

        number = doc.get("number")
        if not isinstance(number, int):
            raise PuzzleConfigurationError(f"Puzzle number missing or not an integer: {number!r}")

        colors = doc.get("colors")
        if not isinstance(colors, list):
            raise PuzzleConfigurationError(f"Puzzle {number} has no category list")

        categories: Dict[DifficultyColor, Category] = {}
        for category_doc in colors:
            category = Category.from_document(category_doc)
            if category.color in categories:
                raise PuzzleConfigurationError(f"Puzzle {number} repeats color {category.color.name}")
            categories[category.color] = category

        return cls(number, categories)
