"""
Collaborator interfaces the quiz engine and admin panel depend on.

Any backend that satisfies these can replace the bundled JSON document store
and local identity provider.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import LeaderboardEntry, Player, QuizQuestion


class RepositoryError(Exception):
    """Raised when a store read or write fails."""
    pass


class QuestionRepository(ABC):
    """List, filter, insert, update and delete quiz questions."""

    @abstractmethod
    def list_questions(self, category: Optional[str] = None) -> List[QuizQuestion]:
        """Return all questions, or only those whose category equals ``category``."""

    @abstractmethod
    def get_question(self, question_id: str) -> Optional[QuizQuestion]:
        """Return one question or None."""

    @abstractmethod
    def add_question(self, question: QuizQuestion) -> QuizQuestion:
        """Insert a question; the returned copy carries the store-assigned id."""

    @abstractmethod
    def update_question(self, question: QuizQuestion) -> QuizQuestion:
        """Replace an existing question by id."""

    @abstractmethod
    def delete_question(self, question_id: str) -> bool:
        """Delete a question; False if it did not exist."""

    @abstractmethod
    def list_categories(self) -> List[str]:
        """Return the distinct categories present in the store."""


class PlayerRepository(ABC):
    """Player records and leaderboard queries."""

    @abstractmethod
    def get_player(self, player_id: str) -> Optional[Player]:
        """Return one player or None."""

    @abstractmethod
    def save_player(self, player: Player) -> Player:
        """Create or merge a player record by id."""

    @abstractmethod
    def list_players(self) -> List[Player]:
        """Return every player."""

    @abstractmethod
    def list_active_players(self, since: datetime) -> List[Player]:
        """Return players whose last activity is strictly after ``since``."""

    @abstractmethod
    def top_players(self, limit: int = 10) -> List[LeaderboardEntry]:
        """Return the top players ordered by score, highest first."""


class IdentityProvider(ABC):
    """Session identity for admins and signed-in players."""

    @abstractmethod
    def sign_up(self, email: str, password: str, display_name: str = "") -> Dict[str, Any]:
        """Create an account and sign it in."""

    @abstractmethod
    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Sign in with email and password."""

    @abstractmethod
    def sign_out(self) -> None:
        """End the current session."""

    @abstractmethod
    def send_password_reset(self, email: str) -> str:
        """Issue a password reset token for ``email``."""

    @abstractmethod
    def confirm_password_reset(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token."""

    @abstractmethod
    def update_password(self, new_password: str) -> None:
        """Change the password of the signed-in account."""

    @abstractmethod
    def update_display_name(self, display_name: str) -> Dict[str, Any]:
        """Rename the signed-in account."""

    @abstractmethod
    def federated_sign_in(self, provider: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        """Sign in with verified claims from an external provider."""

    @abstractmethod
    def has_accounts(self) -> bool:
        """Whether any account exists yet."""

    @property
    @abstractmethod
    def current_user(self) -> Optional[Dict[str, Any]]:
        """The signed-in account, or None."""
