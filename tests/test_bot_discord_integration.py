"""
Unit tests for Discord bot command handlers with mocked Discord API objects.
"""
import unittest
import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import Mock, AsyncMock
import discord

from bible_quiz.admin import AdminPanel
from bible_quiz.bot import COLOR_DARK, COLOR_ERROR, QuizBot, parse_options
from bible_quiz.config_manager import ConfigManager
from bible_quiz.data_manager import DataManager
from bible_quiz.identity import LocalIdentityProvider
from bible_quiz.models import DEFAULT_CATEGORY, Screen, ScriptureReference
from bible_quiz.preferences import DARK_MODE, PreferenceStore
from bible_quiz.quiz_controller import QuizController
from bible_quiz.repository import RepositoryError
from tests.test_fixtures import MockDiscordObjects, TestFixtures, async_test, sent_embed

CHANNEL = 12345
PLAYER = 67890
ADMIN = 424242


class BotTestCase(unittest.TestCase):
    """Bot wired to real components over a temporary data directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        data_dir = Path(self.temp_dir)
        with open(data_dir / DataManager.QUESTIONS_FILE, 'w', encoding='utf-8') as f:
            json.dump({"questions": [{"id": "q1", **TestFixtures.create_question_document()}]}, f)

        self.bot = QuizBot()
        self.bot.config_manager = ConfigManager()
        self.bot.data_manager = DataManager(self.temp_dir)
        self.bot.preferences = PreferenceStore(str(data_dir / "preferences.json"))
        self.bot.identity_provider = LocalIdentityProvider(str(data_dir / "accounts.json"))
        self.bot.quiz_controller = QuizController(
            self.bot.data_manager, self.bot.data_manager, self.bot.config_manager, self.bot.preferences
        )
        self.bot.admin_panel = AdminPanel(
            self.bot.identity_provider,
            self.bot.data_manager,
            self.bot.data_manager,
            self.bot.config_manager,
            self.bot.data_manager
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def interaction(self, user_id=PLAYER):
        return MockDiscordObjects.create_mock_interaction(channel_id=CHANNEL, user_id=user_id)

    def correct_option_number(self):
        state = self.bot.quiz_controller.get_state(CHANNEL)
        question = state.current_question
        for number, option in enumerate(question.options, start=1):
            if option.matches(question.correct_answer):
                return number
        raise AssertionError("correct answer missing from options")

    async def play(self):
        interaction = self.interaction()
        await self.bot.handle_play(interaction)
        return interaction


class TestPlayerCommands(BotTestCase):
    """Test cases for player slash commands."""

    @async_test
    async def test_help_command(self):
        interaction = self.interaction()
        await self.bot.handle_help(interaction)

        interaction.response.send_message.assert_called_once()
        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "📖 Bible Quiz Commands")
        self.assertIn(DEFAULT_CATEGORY, [f.value for f in embed.fields][-1])

    @async_test
    async def test_play_posts_question(self):
        interaction = await self.play()

        interaction.response.send_message.assert_called_once()
        interaction.channel.send.assert_called_once()
        embed = sent_embed(interaction.channel.send)
        self.assertEqual(embed.title, "📖 Question 1/1")
        self.assertEqual(embed.fields[0].value.count("\n"), 3)
        self.assertEqual(self.bot.quiz_controller.get_state(CHANNEL).player_name, "Ruth")
        await self.bot.quiz_controller.shutdown()

    @async_test
    async def test_play_unknown_category_warns(self):
        interaction = self.interaction()
        await self.bot.handle_play(interaction, "Ruth", "Prophets")

        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "⚠️ No Questions")
        self.assertIn(DEFAULT_CATEGORY, embed.description)
        self.assertEqual(self.bot.quiz_controller.get_state(CHANNEL).screen, Screen.CATEGORY)
        interaction.channel.send.assert_not_called()
        self.assertIsNone(self.bot.quiz_controller.get_state(CHANNEL).notice)

    @async_test
    async def test_answer_without_quiz(self):
        interaction = self.interaction()
        await self.bot.handle_answer(interaction, 1)
        self.assertEqual(sent_embed(interaction.response.send_message).title, "ℹ️ No Active Quiz")

    @async_test
    async def test_answer_submit_and_finish(self):
        play_interaction = await self.play()
        question_message = play_interaction.channel.send.return_value

        answer = self.interaction()
        await self.bot.handle_answer(answer, self.correct_option_number())
        self.assertEqual(sent_embed(answer.response.send_message).title, "👉 Answer Selected")
        question_message.edit.assert_called()

        submit = self.interaction()
        await self.bot.handle_submit(submit)
        embed = sent_embed(submit.response.send_message)
        self.assertEqual(embed.description, "🎉 Correct!")

        next_interaction = self.interaction()
        await self.bot.handle_next(next_interaction)
        next_interaction.response.defer.assert_awaited_once()

        results = sent_embed(play_interaction.channel.send)
        self.assertEqual(results.title, "🏁 Quiz Complete!")
        self.assertIn("**1** out of **1**", results.description)
        self.assertEqual(self.bot.data_manager.get_player(str(PLAYER)).score, 1)

        share = self.interaction()
        await self.bot.handle_share(share)
        share.response.send_message.assert_called_once_with(
            "I scored 1 out of 1 in the Bible Quiz! Can you beat my score?"
        )

    @async_test
    async def test_next_before_answer_warns(self):
        await self.play()
        interaction = self.interaction()
        await self.bot.handle_next(interaction)
        self.assertEqual(sent_embed(interaction.response.send_message).title, "⚠️ Warning")
        await self.bot.quiz_controller.shutdown()

    @async_test
    async def test_other_user_cannot_drive_quiz(self):
        await self.play()
        option = self.correct_option_number()

        for handler, args in [
            (self.bot.handle_answer, (option,)),
            (self.bot.handle_submit, ()),
            (self.bot.handle_next, ()),
            (self.bot.handle_reset, ()),
            (self.bot.handle_cancel, ()),
        ]:
            interaction = self.interaction(999)
            await handler(interaction, *args)
            embed = sent_embed(interaction.response.send_message)
            self.assertEqual(embed.title, "⚠️ Not Your Quiz")
            self.assertIn("Ruth", embed.description)

        state = self.bot.quiz_controller.get_state(CHANNEL)
        self.assertEqual(state.screen, Screen.QUIZ)
        self.assertIsNone(state.selected_answer)
        self.assertFalse(state.is_answered)
        self.assertEqual(state.score, 0)

        owner = self.interaction()
        await self.bot.handle_answer(owner, option)
        self.assertEqual(sent_embed(owner.response.send_message).title, "👉 Answer Selected")
        await self.bot.quiz_controller.shutdown()

    @async_test
    async def test_load_failure_reported_then_cleared(self):
        repository = Mock()
        repository.list_questions.side_effect = RepositoryError("disk gone")
        self.bot.quiz_controller.question_repository = repository

        interaction = await self.play()

        self.assertEqual(sent_embed(interaction.channel.send).title, "❌ Error")
        self.assertEqual(sent_embed(interaction.response.send_message).title, "❌ Quiz Start Failed")
        state = self.bot.quiz_controller.get_state(CHANNEL)
        self.assertEqual(state.screen, Screen.CATEGORY)
        self.assertIsNone(state.error_message)

    @async_test
    async def test_share_before_finishing(self):
        interaction = self.interaction()
        await self.bot.handle_share(interaction)
        self.assertEqual(sent_embed(interaction.response.send_message).title, "ℹ️ Nothing to Share")

    @async_test
    async def test_cancel_and_reset(self):
        await self.play()

        reset = self.interaction()
        await self.bot.handle_reset(reset)
        self.assertEqual(self.bot.quiz_controller.get_state(CHANNEL).screen, Screen.CATEGORY)

        cancel = self.interaction()
        await self.bot.handle_cancel(cancel)
        self.assertEqual(sent_embed(cancel.response.send_message).title, "🛑 Quiz Cancelled")
        self.assertEqual(self.bot.quiz_controller.get_state(CHANNEL).screen, Screen.WELCOME)

    @async_test
    async def test_leaderboard(self):
        interaction = self.interaction()
        await self.bot.handle_leaderboard(interaction)
        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "🏆 Leaderboard")
        self.assertEqual(embed.description, "No scores yet.")

    @async_test
    async def test_status(self):
        await self.play()
        interaction = self.interaction()
        await self.bot.handle_status(interaction)
        embed = sent_embed(interaction.response.send_message)
        self.assertIn("Question 1/1", embed.description)
        await self.bot.quiz_controller.shutdown()

    @async_test
    async def test_theme_toggles_dark_mode(self):
        interaction = self.interaction()
        await self.bot.handle_theme(interaction)

        self.assertTrue(self.bot.preferences.get(DARK_MODE, scope=str(PLAYER)))
        self.assertEqual(sent_embed(interaction.response.send_message).color.value, COLOR_DARK)
        self.assertEqual(self.bot.theme_color(str(PLAYER), 0x123456), COLOR_DARK)
        self.assertEqual(self.bot.theme_color("someone-else", 0x123456), 0x123456)


class TestAdminCommands(BotTestCase):
    """Test cases for admin slash commands."""

    def setUp(self):
        super().setUp()
        self.bot.identity_provider.sign_up("admin@example.com", "secret123")
        self.bot.identity_provider.sign_out()

    async def login(self):
        interaction = self.interaction(ADMIN)
        await self.bot.handle_admin_login(interaction, "admin@example.com", "secret123")
        self.assertEqual(sent_embed(interaction.response.send_message).title, "Admin Login")

    @async_test
    async def test_admin_commands_require_login(self):
        interaction = self.interaction(ADMIN)
        await self.bot.handle_questions(interaction)
        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "🔐 Access Denied")
        self.assertEqual(embed.color.value, COLOR_ERROR)

    @async_test
    async def test_other_user_cannot_use_admin_session(self):
        await self.login()
        interaction = self.interaction(PLAYER)
        await self.bot.handle_delete_question(interaction, "q1")
        self.assertEqual(sent_embed(interaction.response.send_message).title, "🔐 Access Denied")
        self.assertIsNotNone(self.bot.data_manager.get_question("q1"))

    @async_test
    async def test_wrong_password(self):
        interaction = self.interaction(ADMIN)
        await self.bot.handle_admin_login(interaction, "admin@example.com", "nope123")
        self.assertEqual(sent_embed(interaction.response.send_message).title, "❌ Admin Login")
        self.assertIsNone(self.bot._admin_user_id)

    @async_test
    async def test_list_questions(self):
        await self.login()
        interaction = self.interaction(ADMIN)
        await self.bot.handle_questions(interaction)
        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "📚 Questions (1)")
        self.assertIn("`q1`", embed.description)

    @async_test
    async def test_add_question(self):
        await self.login()
        interaction = self.interaction(ADMIN)
        await self.bot.handle_add_question(
            interaction,
            "In the beginning God created the heaven and the earth.",
            "Genesis 1:1; John 1:1; Hebrews 11:3; Psalms 33:6",
            "Genesis 1:1",
            "",
            "Creation"
        )
        self.assertEqual(sent_embed(interaction.response.send_message).title, "Add Question")
        stored = self.bot.data_manager.list_questions("Creation")
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].correct_answer, ScriptureReference("Genesis", 1, 1))

    @async_test
    async def test_add_question_rejects_bad_reference(self):
        await self.login()
        interaction = self.interaction(ADMIN)
        await self.bot.handle_add_question(interaction, "Passage", "Genesis; John 1:1", "Genesis 1:1")
        self.assertEqual(sent_embed(interaction.response.send_message).title, "❌ Add Question")
        self.assertEqual(len(self.bot.data_manager.list_questions()), 1)

    @async_test
    async def test_update_and_delete_question(self):
        await self.login()
        update = self.interaction(ADMIN)
        await self.bot.handle_update_question(update, "q1", explanation="Updated")
        self.assertEqual(self.bot.data_manager.get_question("q1").explanation, "Updated")

        delete = self.interaction(ADMIN)
        await self.bot.handle_delete_question(delete, "q1")
        self.assertIsNone(self.bot.data_manager.get_question("q1"))

    @async_test
    async def test_import_questions_partial(self):
        await self.login()
        payload = [TestFixtures.create_question_document(), {"passage": "broken"}]
        attachment = MockDiscordObjects.create_mock_attachment(json.dumps(payload).encode('utf-8'))

        interaction = self.interaction(ADMIN)
        await self.bot.handle_import_questions(interaction, attachment)

        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "📥 Import Questions")
        self.assertEqual(embed.fields[0].name, "Problems")
        self.assertEqual(len(self.bot.data_manager.list_questions()), 2)

    @async_test
    async def test_import_questions_non_array(self):
        await self.login()
        attachment = MockDiscordObjects.create_mock_attachment(b'{"passage": "x"}')
        interaction = self.interaction(ADMIN)
        await self.bot.handle_import_questions(interaction, attachment)
        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "📥 Import Questions")
        self.assertEqual(embed.color.value, COLOR_ERROR)
        self.assertEqual(len(self.bot.data_manager.list_questions()), 1)

    @async_test
    async def test_users(self):
        await self.login()
        interaction = self.interaction(ADMIN)
        await self.bot.handle_users(interaction)
        embed = sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "👥 Users")
        self.assertEqual(embed.fields[0].value, "0")

    @async_test
    async def test_logout(self):
        await self.login()
        interaction = self.interaction(ADMIN)
        await self.bot.handle_admin_logout(interaction)
        self.assertIsNone(self.bot._admin_user_id)
        self.assertIsNone(self.bot.identity_provider.current_user)

    @async_test
    async def test_password_reset_commands(self):
        forgot = self.interaction(ADMIN)
        with self.assertLogs('bible_quiz.identity', level='INFO') as logs:
            await self.bot.handle_admin_forgot_password(forgot, "admin@example.com")
        self.assertEqual(sent_embed(forgot.response.send_message).title, "Password Reset")
        token = logs.records[-1].getMessage().rsplit(" ", 1)[-1]

        reset = self.interaction(ADMIN)
        await self.bot.handle_admin_reset_password(reset, token, "newsecret1")
        self.assertEqual(sent_embed(reset.response.send_message).title, "Password Reset")

        login = self.interaction(ADMIN)
        await self.bot.handle_admin_login(login, "admin@example.com", "newsecret1")
        self.assertEqual(sent_embed(login.response.send_message).title, "Admin Login")
        self.assertEqual(self.bot._admin_user_id, ADMIN)

    @async_test
    async def test_change_password_and_name(self):
        denied = self.interaction(ADMIN)
        await self.bot.handle_admin_password(denied, "newsecret1")
        self.assertEqual(sent_embed(denied.response.send_message).title, "🔐 Access Denied")

        await self.login()
        password = self.interaction(ADMIN)
        await self.bot.handle_admin_password(password, "newsecret1")
        self.assertEqual(sent_embed(password.response.send_message).title, "Change Password")

        name = self.interaction(ADMIN)
        await self.bot.handle_admin_name(name, "Elder")
        self.assertEqual(sent_embed(name.response.send_message).title, "Display Name")
        self.assertEqual(self.bot.identity_provider.current_user['display_name'], "Elder")

        self.bot.admin_panel.logout()
        self.assertTrue(self.bot.admin_panel.login("admin@example.com", "newsecret1")['success'])


class TestAdminSignup(BotTestCase):
    """Test cases for creating the first admin account from Discord."""

    @async_test
    async def test_signup_then_login(self):
        signup = self.interaction(ADMIN)
        await self.bot.handle_admin_signup(signup, "admin@example.com", "secret123", "Pastor")
        self.assertEqual(sent_embed(signup.response.send_message).title, "Admin Signup")
        self.assertEqual(self.bot._admin_user_id, ADMIN)

        questions = self.interaction(ADMIN)
        await self.bot.handle_questions(questions)
        self.assertEqual(sent_embed(questions.response.send_message).title, "📚 Questions (1)")

        second = self.interaction(PLAYER)
        await self.bot.handle_admin_signup(second, "player@example.com", "secret123")
        self.assertEqual(sent_embed(second.response.send_message).title, "❌ Admin Signup")
        self.assertEqual(self.bot._admin_user_id, ADMIN)

        await self.bot.handle_admin_logout(self.interaction(ADMIN))
        login = self.interaction(ADMIN)
        await self.bot.handle_admin_login(login, "admin@example.com", "secret123")
        self.assertEqual(sent_embed(login.response.send_message).title, "Admin Login")
        self.assertEqual(self.bot.identity_provider.current_user['display_name'], "Pastor")

    @async_test
    async def test_signup_rejects_short_password(self):
        interaction = self.interaction(ADMIN)
        await self.bot.handle_admin_signup(interaction, "admin@example.com", "abc")
        self.assertEqual(sent_embed(interaction.response.send_message).title, "❌ Admin Signup")
        self.assertIsNone(self.bot._admin_user_id)
        self.assertFalse(self.bot.identity_provider.has_accounts())


class TestSetupHook(unittest.TestCase):
    """Test cases for component setup at startup."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @async_test
    async def test_setup_logs_configuration_warnings(self):
        bot = QuizBot({'quiz': {'data_directory': self.temp_dir}})
        bot.setup_commands = AsyncMock()

        with self.assertLogs('bible_quiz.bot', level='WARNING') as logs:
            await bot.setup_hook()

        self.assertTrue(any("Configuration: ⚠️ No admin emails configured" in line for line in logs.output))
        self.assertIsNotNone(bot.admin_panel)
        bot.setup_commands.assert_awaited_once()


class TestResponses(BotTestCase):
    """Test cases for response helpers and rendering."""

    @async_test
    async def test_error_response_falls_back_to_text(self):
        interaction = self.interaction()
        interaction.response.send_message = AsyncMock(
            side_effect=[discord.HTTPException(Mock(status=500, reason="Server Error"), "boom"), None]
        )

        await self.bot.send_error_response(interaction, "Something failed", "❌ Error")

        self.assertEqual(interaction.response.send_message.call_count, 2)
        self.assertEqual(
            interaction.response.send_message.call_args[0][0], "❌ Error: Something failed"
        )

    @async_test
    async def test_followup_used_after_response(self):
        interaction = self.interaction()
        interaction.response.is_done.return_value = True
        await self.bot.send_info_response(interaction, "hello")
        interaction.followup.send.assert_called_once()
        interaction.response.send_message.assert_not_called()

    def test_parse_options(self):
        options = parse_options("John 3:16; 1 John 4:9 ;")
        self.assertEqual(options, [ScriptureReference("John", 3, 16), ScriptureReference("1 John", 4, 9)])
        with self.assertRaises(ValueError):
            parse_options("John 3:16; nonsense")


if __name__ == '__main__':
    unittest.main()
