"""
Unit tests for the AdminPanel.
"""
import unittest
import json
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

from bible_quiz.admin import AdminPanel
from bible_quiz.config_manager import ConfigManager
from bible_quiz.data_manager import DataManager
from bible_quiz.identity import LocalIdentityProvider
from bible_quiz.models import Player
from bible_quiz.repository import RepositoryError
from tests.test_fixtures import TestFixtures

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "secret123"


class AdminPanelTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        with open(Path(self.temp_dir) / DataManager.QUESTIONS_FILE, 'w', encoding='utf-8') as f:
            json.dump({"questions": []}, f)

        self.data_manager = DataManager(self.temp_dir)
        self.identity = LocalIdentityProvider(str(Path(self.temp_dir) / "accounts.json"))
        self.config_manager = ConfigManager()
        self.config_manager.set_admin_emails([ADMIN_EMAIL])

        self.panel = AdminPanel(
            self.identity, self.data_manager, self.data_manager, self.config_manager, self.data_manager
        )

        self.identity.sign_up(ADMIN_EMAIL, PASSWORD, "Admin")
        self.identity.sign_out()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def login(self):
        result = self.panel.login(ADMIN_EMAIL, PASSWORD)
        self.assertTrue(result['success'], result)


class TestAdminSession(AdminPanelTestCase):
    """Test cases for admin sign-in."""

    def test_login_success(self):
        self.login()
        self.assertTrue(self.panel.is_authenticated())

    def test_login_wrong_password(self):
        result = self.panel.login(ADMIN_EMAIL, "wrong-password")
        self.assertFalse(result['success'])
        self.assertEqual(result['error'], "Invalid email or password. Please try again.")
        self.assertFalse(self.panel.is_authenticated())

    def test_login_non_admin_account_refused(self):
        self.identity.sign_up("player@example.com", PASSWORD)
        self.identity.sign_out()

        result = self.panel.login("player@example.com", PASSWORD)

        self.assertFalse(result['success'])
        self.assertIsNone(self.identity.current_user)

    def test_logout(self):
        self.login()
        self.assertTrue(self.panel.logout()['success'])
        self.assertFalse(self.panel.is_authenticated())

    def test_operations_require_admin(self):
        for result in [
            self.panel.list_questions(),
            self.panel.add_question(TestFixtures.create_question_document()),
            self.panel.delete_question("q1"),
            self.panel.bulk_import("[]"),
            self.panel.list_users(),
            self.panel.count_active_users(),
            self.panel.dashboard_summary(),
        ]:
            self.assertFalse(result['success'])
            self.assertIn("/admin_login", result['user_message'])
        self.assertEqual(self.data_manager.list_questions(), [])


class TestAdminAccounts(AdminPanelTestCase):
    """Test cases for admin signup, password reset, and profile changes."""

    def reset_token(self, email):
        """Request a reset and read the token the operator would see in the log."""
        with self.assertLogs('bible_quiz.identity', level='INFO') as logs:
            result = self.panel.request_password_reset(email)
        self.assertTrue(result['success'])
        return logs.records[-1].getMessage().rsplit(" ", 1)[-1]

    def test_signup_listed_email(self):
        self.config_manager.set_admin_emails([ADMIN_EMAIL, "deacon@example.com"])
        result = self.panel.signup("deacon@example.com", PASSWORD, "Deacon")
        self.assertTrue(result['success'], result)
        self.assertTrue(self.panel.is_authenticated())
        self.assertEqual(self.identity.current_user['display_name'], "Deacon")

    def test_signup_unlisted_email_refused(self):
        result = self.panel.signup("player@example.com", PASSWORD)
        self.assertFalse(result['success'])
        self.assertEqual(result['error'], "This email is not on the admin list.")
        self.assertFalse(self.panel.login("player@example.com", PASSWORD)['success'])

    def test_signup_without_list_only_first_account(self):
        identity = LocalIdentityProvider(str(Path(self.temp_dir) / "fresh_accounts.json"))
        config_manager = ConfigManager()
        panel = AdminPanel(identity, self.data_manager, self.data_manager, config_manager, self.data_manager)

        self.assertTrue(panel.signup("first@example.com", PASSWORD)['success'])
        panel.logout()

        second = panel.signup("second@example.com", PASSWORD)
        self.assertFalse(second['success'])
        self.assertIn("/admin_login", second['user_message'])
        self.assertTrue(panel.login("first@example.com", PASSWORD)['success'])

    def test_password_reset_with_token(self):
        token = self.reset_token(ADMIN_EMAIL)

        result = self.panel.confirm_password_reset(token, "newsecret1")

        self.assertTrue(result['success'], result)
        self.assertFalse(self.panel.login(ADMIN_EMAIL, PASSWORD)['success'])
        self.assertTrue(self.panel.login(ADMIN_EMAIL, "newsecret1")['success'])
        self.assertFalse(self.panel.confirm_password_reset(token, "another1")['success'])

    def test_password_reset_unknown_email_same_reply(self):
        known = self.panel.request_password_reset(ADMIN_EMAIL)
        unknown = self.panel.request_password_reset("nobody@example.com")
        self.assertTrue(unknown['success'])
        self.assertEqual(known['user_message'], unknown['user_message'])

    def test_confirm_reset_bad_token(self):
        result = self.panel.confirm_password_reset("not-a-token", "newsecret1")
        self.assertFalse(result['success'])
        self.assertIn("invalid or has expired", result['error'])

    def test_change_password(self):
        self.assertFalse(self.panel.change_password("newsecret1")['success'])
        self.login()

        self.assertFalse(self.panel.change_password("abc")['success'])
        self.assertTrue(self.panel.change_password("newsecret1")['success'])
        self.panel.logout()
        self.assertTrue(self.panel.login(ADMIN_EMAIL, "newsecret1")['success'])

    def test_update_display_name(self):
        self.login()
        result = self.panel.update_display_name("  Elder  ")
        self.assertTrue(result['success'])
        self.assertEqual(result['user_message'], "✅ Display name set to Elder")
        self.assertFalse(self.panel.update_display_name("   ")['success'])

    def test_federated_login_applies_admin_list(self):
        allowed = self.panel.federated_login("google", {"sub": "g-1", "email": ADMIN_EMAIL})
        self.assertTrue(allowed['success'], allowed)
        self.assertEqual(allowed['user']['provider'], "google")
        self.panel.logout()

        denied = self.panel.federated_login("apple", {"sub": "a-1", "email": "player@example.com"})
        self.assertFalse(denied['success'])
        self.assertIsNone(self.identity.current_user)

        self.assertFalse(self.panel.federated_login("github", {"sub": "x"})['success'])


class TestAdminQuestions(AdminPanelTestCase):
    """Test cases for question management."""

    def setUp(self):
        super().setUp()
        self.login()

    def test_add_question(self):
        result = self.panel.add_question(TestFixtures.create_question_document())
        self.assertTrue(result['success'])
        self.assertEqual(len(self.data_manager.list_questions()), 1)

    def test_add_question_defaults_category(self):
        document = TestFixtures.create_question_document()
        del document["category"]
        result = self.panel.add_question(document)
        self.assertEqual(result['question'].category, self.config_manager.get_category())

    def test_add_question_rejects_answer_outside_options(self):
        result = self.panel.add_question(TestFixtures.create_question_document(correct="Genesis 1:1"))
        self.assertFalse(result['success'])
        self.assertIn("not one of the options", result['error'])
        self.assertEqual(self.data_manager.list_questions(), [])

    def test_update_question_merges_fields(self):
        added = self.panel.add_question(TestFixtures.create_question_document())['question']

        result = self.panel.update_question(added.id, {"explanation": "New note", "category": "Gospels"})

        self.assertTrue(result['success'])
        stored = self.data_manager.get_question(added.id)
        self.assertEqual(stored.explanation, "New note")
        self.assertEqual(stored.category, "Gospels")
        self.assertEqual(stored.passage, added.passage)

    def test_update_question_accepts_question_alias(self):
        added = self.panel.add_question(TestFixtures.create_question_document())['question']

        result = self.panel.update_question(added.id, {"question": "God is love."})

        self.assertTrue(result['success'])
        stored = self.data_manager.get_question(added.id)
        self.assertEqual(stored.passage, "God is love.")
        self.assertNotIn("question", self.data_manager._questions[added.id])

    def test_update_question_validates(self):
        added = self.panel.add_question(TestFixtures.create_question_document())['question']
        result = self.panel.update_question(added.id, {"correctAnswer": {"book": "Jude", "chapter": 1, "verse": 3}})
        self.assertFalse(result['success'])
        self.assertEqual(self.data_manager.get_question(added.id).correct_answer, added.correct_answer)

    def test_update_missing_question(self):
        self.assertFalse(self.panel.update_question("missing", {"explanation": "x"})['success'])

    def test_delete_question(self):
        added = self.panel.add_question(TestFixtures.create_question_document())['question']
        self.assertTrue(self.panel.delete_question(added.id)['success'])
        self.assertFalse(self.panel.delete_question(added.id)['success'])

    def test_list_questions_by_category(self):
        self.panel.add_question(TestFixtures.create_question_document(category="Gospels"))
        self.panel.add_question(TestFixtures.create_question_document(category="Psalms"))
        result = self.panel.list_questions("Gospels")
        self.assertEqual([q.category for q in result['questions']], ["Gospels"])

    def test_store_failure_reported(self):
        repository = Mock()
        repository.add_question.side_effect = RepositoryError("disk gone")
        self.panel.question_repository = repository
        result = self.panel.add_question(TestFixtures.create_question_document())
        self.assertFalse(result['success'])
        self.assertEqual(result['error'], "Failed to add question")


class TestAdminBulkImport(AdminPanelTestCase):
    """Test cases for bulk import."""

    def setUp(self):
        super().setUp()
        self.login()

    def test_non_array_payload_inserts_nothing(self):
        result = self.panel.bulk_import(json.dumps(TestFixtures.create_question_document()))
        self.assertFalse(result['success'])
        self.assertEqual(result['imported'], 0)
        self.assertEqual(self.data_manager.list_questions(), [])

    def test_invalid_json_inserts_nothing(self):
        result = self.panel.bulk_import("[{ not json")
        self.assertFalse(result['success'])
        self.assertEqual(self.data_manager.list_questions(), [])

    def test_partial_success(self):
        payload = [
            TestFixtures.create_question_document(),
            {"passage": "Missing options"},
            TestFixtures.create_question_document(correct="Genesis 1:1"),
            TestFixtures.create_question_document(category="Psalms"),
        ]
        result = self.panel.bulk_import(json.dumps(payload))

        self.assertTrue(result['success'])
        self.assertEqual(result['imported'], 2)
        self.assertEqual(result['failed'], 2)
        self.assertTrue(result['errors'][0].startswith("Item 2:"))
        self.assertTrue(result['errors'][1].startswith("Item 3:"))
        self.assertEqual(len(self.data_manager.list_questions()), 2)

    def test_all_items_valid(self):
        payload = [TestFixtures.create_question_document() for _ in range(3)]
        result = self.panel.bulk_import(json.dumps(payload))
        self.assertEqual((result['imported'], result['failed']), (3, 0))
        self.assertTrue(result['user_message'].startswith("✅"))


class TestAdminUsers(AdminPanelTestCase):
    """Test cases for the user roster."""

    def setUp(self):
        super().setUp()
        self.login()
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.data_manager.save_player(Player(id="a", name="A", score=2, last_active=self.now - timedelta(hours=2)))
        self.data_manager.save_player(Player(id="b", name="B", score=7, last_active=self.now - timedelta(hours=48)))

    def test_list_users_sorted_by_score(self):
        result = self.panel.list_users()
        self.assertEqual([p.id for p in result['users']], ["b", "a"])

    def test_count_active_users_uses_window(self):
        self.assertEqual(self.panel.count_active_users(self.now)['active_users'], 1)
        self.config_manager.set_active_window_hours(72)
        self.assertEqual(self.panel.count_active_users(self.now)['active_users'], 2)

    def test_dashboard_summary(self):
        self.panel.add_question(TestFixtures.create_question_document(category="Gospels"))
        summary = self.panel.dashboard_summary(self.now)
        self.assertEqual(summary['total_users'], 2)
        self.assertEqual(summary['active_users'], 1)
        self.assertEqual(summary['total_questions'], 1)
        self.assertEqual(summary['categories'], ["Gospels"])


if __name__ == '__main__':
    unittest.main()
