"""
Admin panel operations: question management, bulk import, and the user roster.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import BulkImportError, DataManager
from .identity import AuthenticationError
from .models import DEFAULT_CATEGORY, Player, QuizQuestion
from .repository import IdentityProvider, PlayerRepository, QuestionRepository


class AdminPanel:
    """
    Question CRUD and user roster for signed-in admins.

    Every operation returns a result dictionary; failures carry a
    user-facing message and leave the store untouched.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        question_repository: QuestionRepository,
        player_repository: PlayerRepository,
        config_manager: ConfigManager,
        data_manager: Optional[DataManager] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.identity_provider = identity_provider
        self.question_repository = question_repository
        self.player_repository = player_repository
        self.config_manager = config_manager
        # Validation and bulk parsing live on the data manager
        self.data_manager = data_manager or DataManager(config_manager.get_data_directory())

    def _failure(self, message: str, **extra: Any) -> Dict[str, Any]:
        return {'success': False, 'error': message, 'user_message': f"❌ {message}", **extra}

    # Session

    def login(self, email: str, password: str) -> Dict[str, Any]:
        try:
            user = self.identity_provider.sign_in(email, password)
        except AuthenticationError as e:
            return self._failure(str(e))

        if not self.config_manager.is_admin_email(user.get('email')):
            self.identity_provider.sign_out()
            self.logger.warning(f"Account {user['uid']} is not an admin")
            return self._failure("This account does not have admin access.")

        self.logger.info(f"Admin {user['uid']} signed in")
        return {'success': True, 'user': user, 'user_message': f"✅ Signed in as {user.get('email')}"}

    def signup(self, email: str, password: str, display_name: str = "") -> Dict[str, Any]:
        """
        Create an admin account and sign it in.

        With an admin allow-list the email must be on it. Without one only the
        first account on a fresh install can be created this way.
        """
        if self.config_manager.get_admin_emails():
            if not self.config_manager.is_admin_email(email):
                return self._failure("This email is not on the admin list.")
        elif self.identity_provider.has_accounts():
            return self._failure("An admin account already exists. Use /admin_login.")

        try:
            user = self.identity_provider.sign_up(email, password, display_name)
        except AuthenticationError as e:
            return self._failure(str(e))

        self.logger.info(f"Admin account {user['uid']} created")
        return {'success': True, 'user': user, 'user_message': f"✅ Admin account created for {user.get('email')}"}

    def federated_login(self, provider: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        """Sign in with claims verified by Google or Apple; the allow-list still applies."""
        try:
            user = self.identity_provider.federated_sign_in(provider, profile)
        except AuthenticationError as e:
            return self._failure(str(e))

        if not self.config_manager.is_admin_email(user.get('email')):
            self.identity_provider.sign_out()
            self.logger.warning(f"Account {user['uid']} is not an admin")
            return self._failure("This account does not have admin access.")

        self.logger.info(f"Admin {user['uid']} signed in with {user['provider']}")
        return {'success': True, 'user': user, 'user_message': f"✅ Signed in as {user.get('email')}"}

    def logout(self) -> Dict[str, Any]:
        self.identity_provider.sign_out()
        return {'success': True, 'user_message': "👋 Signed out"}

    # Account

    def request_password_reset(self, email: str) -> Dict[str, Any]:
        """Issue a reset token; the reply is the same whether or not the account exists."""
        try:
            self.identity_provider.send_password_reset(email)
        except AuthenticationError:
            self.logger.info("Password reset requested for an unknown email")
        return {
            'success': True,
            'user_message': "📧 If that account exists, a reset token has been issued. Ask the bot operator for it."
        }

    def confirm_password_reset(self, token: str, new_password: str) -> Dict[str, Any]:
        try:
            self.identity_provider.confirm_password_reset(token, new_password)
        except AuthenticationError as e:
            return self._failure(str(e))
        return {'success': True, 'user_message': "✅ Password reset. Use /admin_login with the new password."}

    def change_password(self, new_password: str) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            self.identity_provider.update_password(new_password)
        except AuthenticationError as e:
            return self._failure(str(e))
        return {'success': True, 'user_message': "✅ Password updated"}

    def update_display_name(self, display_name: str) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            user = self.identity_provider.update_display_name(display_name)
        except AuthenticationError as e:
            return self._failure(str(e))
        return {'success': True, 'user': user, 'user_message': f"✅ Display name set to {user['display_name']}"}

    def is_authenticated(self) -> bool:
        user = self.identity_provider.current_user
        return user is not None and self.config_manager.is_admin_email(user.get('email'))

    def _require_admin(self) -> Optional[Dict[str, Any]]:
        if not self.is_authenticated():
            return self._failure("Admin sign-in required. Use /admin_login first.")
        return None

    # Questions

    def _build_question(self, data: Any, question_id: Optional[str] = None) -> QuizQuestion:
        """
        Validate a question document and build the question.

        Raises:
            ValueError: With every validation problem joined into one message
        """
        if isinstance(data, dict) and "category" not in data:
            data = {**data, "category": DEFAULT_CATEGORY}
        errors = self.data_manager.get_question_errors(data)
        if errors:
            raise ValueError("; ".join(errors))
        return QuizQuestion.from_document(data, question_id)

    def list_questions(self, category: Optional[str] = None) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            questions = self.question_repository.list_questions(category)
        except Exception as e:
            self.logger.error(f"Failed to fetch questions: {e}")
            return self._failure("Failed to fetch data")
        return {'success': True, 'questions': questions}

    def add_question(self, data: Dict[str, Any]) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            question = self._build_question(data)
        except ValueError as e:
            return self._failure(f"Invalid question: {e}")
        try:
            saved = self.question_repository.add_question(question)
        except Exception as e:
            self.logger.error(f"Failed to add question: {e}")
            return self._failure("Failed to add question")
        return {'success': True, 'question': saved, 'user_message': f"✅ Question added ({saved.id})"}

    def update_question(self, question_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace fields of an existing question; omitted fields keep their current values."""
        denied = self._require_admin()
        if denied:
            return denied
        try:
            existing = self.question_repository.get_question(question_id)
        except Exception as e:
            self.logger.error(f"Failed to fetch question {question_id}: {e}")
            return self._failure("Failed to update question")
        if existing is None:
            return self._failure(f"Question not found: {question_id}")

        changes = dict(data)
        if "question" in changes:
            changes.setdefault("passage", changes.pop("question"))
        merged = {**existing.to_document(), **changes}
        try:
            question = self._build_question(merged, question_id)
        except ValueError as e:
            return self._failure(f"Invalid question: {e}")
        try:
            saved = self.question_repository.update_question(question)
        except Exception as e:
            self.logger.error(f"Failed to update question {question_id}: {e}")
            return self._failure("Failed to update question")
        return {'success': True, 'question': saved, 'user_message': f"✅ Question {question_id} updated"}

    def delete_question(self, question_id: str) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            deleted = self.question_repository.delete_question(question_id)
        except Exception as e:
            self.logger.error(f"Failed to delete question {question_id}: {e}")
            return self._failure("Failed to delete question")
        if not deleted:
            return self._failure(f"Question not found: {question_id}")
        return {'success': True, 'user_message': f"🗑️ Question {question_id} deleted"}

    def bulk_import(self, text: str) -> Dict[str, Any]:
        """
        Import an array of question documents pasted as JSON text.

        The whole batch is rejected when the text is not a JSON array.
        Otherwise each element is validated and inserted on its own, so
        some may succeed while others fail.
        """
        denied = self._require_admin()
        if denied:
            return denied
        try:
            records = self.data_manager.parse_bulk_import(text)
        except BulkImportError as e:
            self.logger.warning(f"Rejected bulk import: {e}")
            return self._failure(
                "Failed to import questions. Please check your JSON format.",
                imported=0,
                failed=0,
                errors=[str(e)]
            )

        imported: List[QuizQuestion] = []
        errors: List[str] = []
        for i, record in enumerate(records):
            try:
                question = self._build_question(record)
            except ValueError as e:
                errors.append(f"Item {i + 1}: {e}")
                continue
            try:
                imported.append(self.question_repository.add_question(question))
            except Exception as e:
                self.logger.error(f"Failed to insert bulk item {i + 1}: {e}")
                errors.append(f"Item {i + 1}: failed to save")

        self.logger.info(f"Bulk import: {len(imported)} imported, {len(errors)} failed")
        summary = f"Imported {len(imported)} of {len(records)} questions"
        return {
            'success': bool(imported) or not records,
            'imported': len(imported),
            'failed': len(errors),
            'questions': imported,
            'errors': errors,
            'user_message': f"✅ {summary}" if not errors else f"⚠️ {summary}",
        }

    # Users

    def list_users(self) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            users = self.player_repository.list_players()
        except Exception as e:
            self.logger.error(f"Failed to fetch users: {e}")
            return self._failure("Failed to fetch data")
        return {'success': True, 'users': sorted(users, key=lambda p: p.score, reverse=True)}

    def get_active_users(self, now: Optional[datetime] = None) -> List[Player]:
        """
        Players active within the configured window.

        Raises:
            RepositoryError: If the store cannot be read
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=self.config_manager.get_active_window_hours())
        return self.player_repository.list_active_players(since)

    def count_active_users(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            active = self.get_active_users(now)
        except Exception as e:
            self.logger.error(f"Failed to count active users: {e}")
            return self._failure("Failed to fetch data")
        return {'success': True, 'active_users': len(active)}

    def dashboard_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        denied = self._require_admin()
        if denied:
            return denied
        try:
            total_questions = len(self.question_repository.list_questions())
            total_users = len(self.player_repository.list_players())
            active_users = len(self.get_active_users(now))
            categories = self.question_repository.list_categories()
        except Exception as e:
            self.logger.error(f"Failed to build dashboard: {e}")
            return self._failure("Failed to fetch data")
        return {
            'success': True,
            'total_questions': total_questions,
            'total_users': total_users,
            'active_users': active_users,
            'categories': categories,
        }
