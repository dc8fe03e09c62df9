"""
Data manager for the JSON document store and question data validation.
"""
import json
import os
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import DEFAULT_CATEGORY, LeaderboardEntry, Player, QuizQuestion, ScriptureReference
from .repository import PlayerRepository, QuestionRepository, RepositoryError


class BulkImportError(ValueError):
    """Raised when a bulk import payload cannot be parsed as an array of questions."""
    pass


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class DataManager(QuestionRepository, PlayerRepository):
    """Stores the questions and users collections as JSON files."""

    QUESTIONS_FILE = "questions.json"
    USERS_FILE = "users.json"
    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
    OPTION_COUNT = 4

    def __init__(self, data_directory: str = "./data/"):
        """
        Initialize DataManager with data directory path.

        Args:
            data_directory: Directory holding the collection files
        """
        self.data_directory = Path(data_directory)
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for user feedback
        self.sample_data_created = False
        self._questions: Dict[str, Dict[str, Any]] = {}
        self._users: Dict[str, Dict[str, Any]] = {}
        self._loaded = False

    def load_data(self) -> Dict[str, Any]:
        """
        Load both collections from disk with error handling.

        A missing questions file is seeded with sample questions. A collection
        that fails to load is left empty and the error recorded.

        Returns:
            Loading summary dictionary
        """
        self._questions.clear()
        self._users.clear()
        self.load_errors.clear()
        self.sample_data_created = False

        directory_result = self._ensure_data_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            self._loaded = True
            return self.get_loading_summary()

        questions_path = self.data_directory / self.QUESTIONS_FILE
        if not questions_path.exists():
            self.logger.warning(f"No questions file found in {self.data_directory}")
            self._create_sample_questions()
        else:
            result = self._load_collection_safely(questions_path, "questions")
            if result['success']:
                self._questions = result['documents']
            else:
                self.load_errors.append(f"{questions_path.name}: {result['error']}")

        users_path = self.data_directory / self.USERS_FILE
        if users_path.exists():
            result = self._load_collection_safely(users_path, "users")
            if result['success']:
                self._users = result['documents']
            else:
                self.load_errors.append(f"{users_path.name}: {result['error']}")

        self._loaded = True
        self.logger.info(
            f"Loaded {len(self._questions)} questions and {len(self._users)} users "
            f"from {self.data_directory}"
        )
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")
        return self.get_loading_summary()

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load_data()

    def _ensure_data_directory(self) -> Dict[str, Any]:
        """
        Ensure the data directory exists and is readable.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not self.data_directory.exists():
                self.data_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created data directory: {self.data_directory}")

            if not os.access(self.data_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.data_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.data_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.data_directory}: {e}"
            }

    def _load_collection_safely(self, path: Path, key: str) -> Dict[str, Any]:
        """
        Load one collection file.

        Expected structure: {"<key>": [{"id": str, ...document fields}]}

        Returns:
            Dictionary with success status, documents keyed by id, and error message if applicable
        """
        try:
            file_size = path.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). "
                             f"Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if not isinstance(data, dict) or not isinstance(data.get(key), list):
                return {
                    'success': False,
                    'error': f"Collection file must be an object with a '{key}' array"
                }

            documents = {}
            for i, document in enumerate(data[key]):
                if not isinstance(document, dict) or not isinstance(document.get("id"), str):
                    self.logger.error(f"Skipping {key} entry {i} in {path}: missing string 'id'")
                    continue
                documents[document["id"]] = document
            return {'success': True, 'documents': documents}

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {path}: {e}")
            return {'success': False, 'error': f"Invalid JSON: {e}"}
        except PermissionError:
            return {'success': False, 'error': "Permission denied"}
        except OSError as e:
            return {'success': False, 'error': f"System error: {e}"}

    def _write_collection(self, key: str, documents: Dict[str, Dict[str, Any]]) -> None:
        """
        Write a collection atomically.

        Raises:
            RepositoryError: If the file cannot be written
        """
        filename = self.QUESTIONS_FILE if key == "questions" else self.USERS_FILE
        path = self.data_directory / filename
        temp_path = path.with_suffix(".json.tmp")
        try:
            self.data_directory.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump({key: list(documents.values())}, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, path)
        except OSError as e:
            self.logger.error(f"Failed to write {path}: {e}")
            raise RepositoryError(f"Failed to save {key}: {e}") from e

    def _create_sample_questions(self) -> None:
        """Seed the questions collection when no questions file exists."""
        samples = [
            QuizQuestion(
                passage="For God so loved the world, that he gave his only begotten Son...",
                options=[
                    ScriptureReference("John", 3, 16),
                    ScriptureReference("Romans", 5, 8),
                    ScriptureReference("1 John", 4, 9),
                    ScriptureReference("John", 1, 14),
                ],
                correct_answer=ScriptureReference("John", 3, 16),
                explanation="John 3:16 summarizes the gospel in a single verse.",
            ),
            QuizQuestion(
                passage="The LORD is my shepherd; I shall not want.",
                options=[
                    ScriptureReference("Psalms", 23, 1),
                    ScriptureReference("Psalms", 100, 3),
                    ScriptureReference("Isaiah", 40, 11),
                    ScriptureReference("John", 10, 11),
                ],
                correct_answer=ScriptureReference("Psalms", 23, 1),
                explanation="The opening line of the Shepherd Psalm.",
            ),
            QuizQuestion(
                passage="I can do all things through Christ which strengtheneth me.",
                options=[
                    ScriptureReference("Philippians", 4, 13),
                    ScriptureReference("2 Corinthians", 12, 9),
                    ScriptureReference("Isaiah", 41, 10),
                    ScriptureReference("Joshua", 1, 9),
                ],
                correct_answer=ScriptureReference("Philippians", 4, 13),
                explanation="Paul writes of contentment in every circumstance.",
            ),
        ]
        for question in samples:
            question_id = uuid.uuid4().hex
            self._questions[question_id] = {"id": question_id, **question.to_document()}
        self.sample_data_created = True
        try:
            self._write_collection("questions", self._questions)
            self.logger.info(f"Created sample questions file in {self.data_directory}")
        except RepositoryError as e:
            self.load_errors.append(f"Failed to create sample questions: {e}")

    # Question validation

    def get_question_errors(self, data: Any) -> List[str]:
        """
        List every structural problem with a question document.

        Expected structure:
        {
            "category": str,            # optional
            "passage": str,             # or "question"
            "options": [{"book": str, "chapter": int, "verse": int}] * 4,
            "correctAnswer": {"book": str, "chapter": int, "verse": int},
            "explanation": str          # optional
        }
        """
        if not isinstance(data, dict):
            return ["Question must be a JSON object"]

        try:
            question = QuizQuestion.from_document(data)
        except ValueError as e:
            return [str(e)]

        errors = []
        if len(question.options) != self.OPTION_COUNT:
            errors.append(f"Question must have exactly {self.OPTION_COUNT} options, got {len(question.options)}")
        if not question.has_matching_option():
            errors.append(f"Correct answer {question.correct_answer} is not one of the options")
        return errors

    def parse_bulk_import(self, text: str) -> List[Any]:
        """
        Parse pasted structured text into a list of question-shaped records.

        Raises:
            BulkImportError: If the text is not valid JSON or not an array
        """
        try:
            payload = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            raise BulkImportError(f"Invalid JSON: {e}") from e
        if not isinstance(payload, list):
            raise BulkImportError(f"Expected a JSON array of questions, got {type(payload).__name__}")
        return payload

    # QuestionRepository

    def list_questions(self, category: Optional[str] = None) -> List[QuizQuestion]:
        self._ensure_loaded()
        questions = []
        for question_id, document in self._questions.items():
            if category is not None and document.get("category", DEFAULT_CATEGORY) != category:
                continue
            try:
                questions.append(QuizQuestion.from_document(document, question_id))
            except ValueError as e:
                self.logger.error(f"Skipping malformed question {question_id}: {e}")
        return questions

    def get_question(self, question_id: str) -> Optional[QuizQuestion]:
        self._ensure_loaded()
        document = self._questions.get(question_id)
        if document is None:
            return None
        return QuizQuestion.from_document(document, question_id)

    def add_question(self, question: QuizQuestion) -> QuizQuestion:
        self._ensure_loaded()
        question_id = uuid.uuid4().hex
        documents = dict(self._questions)
        documents[question_id] = {"id": question_id, **question.to_document()}
        self._write_collection("questions", documents)
        self._questions = documents
        self.logger.info(f"Added question {question_id} in category '{question.category}'")
        return QuizQuestion.from_document(documents[question_id], question_id)

    def update_question(self, question: QuizQuestion) -> QuizQuestion:
        self._ensure_loaded()
        if question.id is None or question.id not in self._questions:
            raise RepositoryError(f"Question not found: {question.id}")
        documents = dict(self._questions)
        documents[question.id] = {"id": question.id, **question.to_document()}
        self._write_collection("questions", documents)
        self._questions = documents
        self.logger.info(f"Updated question {question.id}")
        return question

    def delete_question(self, question_id: str) -> bool:
        self._ensure_loaded()
        if question_id not in self._questions:
            return False
        documents = dict(self._questions)
        del documents[question_id]
        self._write_collection("questions", documents)
        self._questions = documents
        self.logger.info(f"Deleted question {question_id}")
        return True

    def list_categories(self) -> List[str]:
        self._ensure_loaded()
        return sorted({document.get("category", DEFAULT_CATEGORY) for document in self._questions.values()})

    # PlayerRepository

    def _player_from_document(self, document: Dict[str, Any]) -> Player:
        last_active = document.get("lastActive")
        return Player(
            id=document["id"],
            name=document.get("name", ""),
            email=document.get("email"),
            score=int(document.get("score", 0)),
            last_active=_utc(datetime.fromisoformat(last_active)) if last_active else None,
        )

    def get_player(self, player_id: str) -> Optional[Player]:
        self._ensure_loaded()
        document = self._users.get(player_id)
        return self._player_from_document(document) if document else None

    def save_player(self, player: Player) -> Player:
        """Create or merge a player; fields left as None keep their stored values."""
        self._ensure_loaded()
        documents = dict(self._users)
        document = dict(documents.get(player.id, {"id": player.id}))
        document["name"] = player.name
        document["score"] = max(0, int(player.score))
        if player.email is not None:
            document["email"] = player.email
        if player.last_active is not None:
            document["lastActive"] = _utc(player.last_active).isoformat()
        documents[player.id] = document
        self._write_collection("users", documents)
        self._users = documents
        return self._player_from_document(document)

    def list_players(self) -> List[Player]:
        self._ensure_loaded()
        return [self._player_from_document(document) for document in self._users.values()]

    def list_active_players(self, since: datetime) -> List[Player]:
        threshold = _utc(since)
        return [
            player for player in self.list_players()
            if player.last_active is not None and player.last_active > threshold
        ]

    def top_players(self, limit: int = 10) -> List[LeaderboardEntry]:
        """Players by score, highest first; equal scores put the most recently active first."""
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        players = sorted(
            self.list_players(),
            key=lambda player: (player.score, player.last_active or oldest),
            reverse=True,
        )
        return [LeaderboardEntry(id=p.id, name=p.name, score=p.score) for p in players[:max(limit, 0)]]

    # Loading status

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_questions': len(self._questions),
            'total_users': len(self._users),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'sample_data_created': self.sample_data_created,
            'data_directory': str(self.data_directory),
        }
