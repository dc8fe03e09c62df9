"""
Core data models for the Bible Quiz Bot.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


DEFAULT_CATEGORY = "Passage/Memory verses"

_REFERENCE_PATTERN = re.compile(r"^\s*(?P<book>.+?)\s+(?P<chapter>\d+)\s*:\s*(?P<verse>\d+)\s*$")


def _positive_int(value: Any, name: str) -> int:
    """Chapter and verse numbers: whole numbers from 1, given as int or digit string."""
    if isinstance(value, bool) or isinstance(value, float) and not value.is_integer():
        raise ValueError(f"Reference {name} must be a whole number, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Reference {name} must be a number: {e}") from e
    if number < 1:
        raise ValueError(f"Reference {name} must be 1 or greater, got {number}")
    return number


def _normalize_book(book: str) -> str:
    return " ".join(str(book).split()).casefold()


@dataclass(frozen=True)
class ScriptureReference:
    """A {book, chapter, verse} triple used as an answer option or correct answer."""
    book: str
    chapter: int
    verse: int

    def matches(self, other: Optional["ScriptureReference"]) -> bool:
        """
        Compare two references field by field.

        Book names are compared ignoring case and repeated whitespace,
        chapter and verse as integers.
        """
        if other is None:
            return False
        try:
            return (
                _normalize_book(self.book) == _normalize_book(other.book)
                and int(self.chapter) == int(other.chapter)
                and int(self.verse) == int(other.verse)
            )
        except (TypeError, ValueError):
            return False

    @classmethod
    def parse(cls, text: str) -> "ScriptureReference":
        """
        Parse display text such as "1 John 3:16".

        Raises:
            ValueError: If the text is not in "Book chapter:verse" form
        """
        match = _REFERENCE_PATTERN.match(text or "")
        if not match:
            raise ValueError(f"Not a scripture reference: {text!r}")
        return cls(
            book=" ".join(match.group("book").split()),
            chapter=_positive_int(match.group("chapter"), "chapter"),
            verse=_positive_int(match.group("verse"), "verse"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptureReference":
        """
        Build a reference from a document mapping.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("Reference must be an object with book, chapter and verse")
        try:
            book = data["book"]
            chapter = _positive_int(data["chapter"], "chapter")
            verse = _positive_int(data["verse"], "verse")
        except KeyError as e:
            raise ValueError(f"Reference missing field {e}") from e
        if not isinstance(book, str) or not book.strip():
            raise ValueError("Reference book must be a non-empty string")
        return cls(book=book.strip(), chapter=chapter, verse=verse)

    def to_dict(self) -> Dict[str, Any]:
        return {"book": self.book, "chapter": self.chapter, "verse": self.verse}

    def __str__(self) -> str:
        return f"{self.book} {self.chapter}:{self.verse}"


@dataclass
class QuizQuestion:
    """A multiple-choice question whose options are scripture references."""
    passage: str
    options: List[ScriptureReference]
    correct_answer: ScriptureReference
    explanation: str = ""
    category: str = DEFAULT_CATEGORY
    id: Optional[str] = None

    def has_matching_option(self) -> bool:
        """Check that one of the options matches the correct answer."""
        return any(option.matches(self.correct_answer) for option in self.options)

    def is_correct(self, answer: Optional[ScriptureReference]) -> bool:
        return answer is not None and answer.matches(self.correct_answer)

    @classmethod
    def from_document(cls, data: Dict[str, Any], question_id: Optional[str] = None) -> "QuizQuestion":
        """
        Build a question from a stored document.

        Accepts "question" as an alias for "passage".

        Raises:
            ValueError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("Question must be an object")
        passage = data.get("passage", data.get("question"))
        if not isinstance(passage, str) or not passage.strip():
            raise ValueError("Question 'passage' must be a non-empty string")
        raw_options = data.get("options")
        if not isinstance(raw_options, list):
            raise ValueError("Question 'options' must be an array")
        if "correctAnswer" not in data:
            raise ValueError("Question missing 'correctAnswer' field")
        explanation = data.get("explanation", "")
        if not isinstance(explanation, str):
            raise ValueError("Question 'explanation' must be a string")
        category = data.get("category", DEFAULT_CATEGORY)
        if not isinstance(category, str) or not category.strip():
            raise ValueError("Question 'category' must be a non-empty string")

        return cls(
            id=question_id if question_id is not None else data.get("id"),
            category=category,
            passage=passage,
            options=[ScriptureReference.from_dict(option) for option in raw_options],
            correct_answer=ScriptureReference.from_dict(data["correctAnswer"]),
            explanation=explanation,
        )

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the stored document shape (without the id)."""
        return {
            "category": self.category,
            "passage": self.passage,
            "options": [option.to_dict() for option in self.options],
            "correctAnswer": self.correct_answer.to_dict(),
            "explanation": self.explanation,
        }


@dataclass
class Player:
    """A quiz player as kept in the users collection."""
    id: str
    name: str
    email: Optional[str] = None
    score: int = 0
    last_active: Optional[datetime] = None


@dataclass(frozen=True)
class LeaderboardEntry:
    """Projection of a player shown on the leaderboard."""
    id: str
    name: str
    score: int


@dataclass
class QuizSettings:
    """Configuration settings for a quiz session."""
    timer_duration: int = 60
    leaderboard_size: int = 10
    category: str = DEFAULT_CATEGORY
    active_window_hours: int = 24


class Screen(Enum):
    """Screens of the quiz flow."""
    WELCOME = "welcome"
    CATEGORY = "category"
    QUIZ = "quiz"
    RESULTS = "results"
    LEADERBOARD = "leaderboard"


@dataclass(frozen=True)
class QuizState:
    """Complete state of one quiz session."""
    screen: Screen = Screen.WELCOME
    category: str = DEFAULT_CATEGORY
    player_name: str = ""
    questions: Tuple[QuizQuestion, ...] = ()
    current_index: int = 0
    score: int = 0
    selected_answer: Optional[ScriptureReference] = None
    is_answered: bool = False
    last_answer_correct: Optional[bool] = None
    time_left: int = 60
    timer_duration: int = 60
    leaderboard: Tuple[LeaderboardEntry, ...] = ()
    error_message: Optional[str] = None
    notice: Optional[str] = None

    @property
    def current_question(self) -> Optional[QuizQuestion]:
        if self.screen != Screen.QUIZ or self.current_index >= len(self.questions):
            return None
        return self.questions[self.current_index]

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1
