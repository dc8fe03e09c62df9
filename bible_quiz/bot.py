import discord
from discord.ext import commands
import logging
import asyncio
from typing import Any, Dict, List, Optional
import os
from pathlib import Path

from .admin import AdminPanel
from .config_manager import ConfigManager
from .data_manager import DataManager
from .identity import LocalIdentityProvider
from .models import QuizState, Screen, ScriptureReference
from .preferences import DARK_MODE, PreferenceStore
from .quiz_controller import QuizController

logger = logging.getLogger(__name__)

# Embed colours
COLOR_SUCCESS = 0x00ff00
COLOR_ERROR = 0xff0000
COLOR_WARNING = 0xffaa00
COLOR_INFO = 0x6699ff
COLOR_DARK = 0x2f3136


def setup_logging(level: str = "INFO", log_directory: str = "logs"):
    """Set up console and file logging for the bot."""
    logs_dir = Path(log_directory)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(logs_dir / "bot.log", encoding='utf-8'),
        ]
    )

    error_handler = logging.FileHandler(logs_dir / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def parse_options(text: str) -> List[ScriptureReference]:
    """
    Parse options typed as "John 3:16; Psalms 23:1; ...".

    Raises:
        ValueError: If any reference cannot be parsed
    """
    parts = [part for part in (text or "").split(";") if part.strip()]
    return [ScriptureReference.parse(part) for part in parts]


class QuizBot(commands.Bot):
    """Discord bot running Bible quiz sessions and the admin panel"""

    # Seconds the revealed answer stays up before an expired question advances
    REVEAL_DELAY = 3.0
    QUESTION_LIST_LIMIT = 20

    def __init__(self, config=None):
        # Slash commands only need the guilds intent
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.preferences: Optional[PreferenceStore] = None
        self.identity_provider: Optional[LocalIdentityProvider] = None
        self.quiz_controller: Optional[QuizController] = None
        self.admin_panel: Optional[AdminPanel] = None

        # channel id -> message showing the current question
        self._question_messages: Dict[int, discord.Message] = {}
        # Discord user who signed in to the admin panel
        self._admin_user_id: Optional[int] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            for message in self.config_manager.load_from_dict(self.app_config):
                logger.warning(f"Ignored configuration value: {message}")

            data_directory = Path(self.config_manager.get_data_directory())
            self.data_manager = DataManager(str(data_directory))
            summary = self.data_manager.load_data()
            if summary['has_errors']:
                logger.warning(f"Data loaded with {summary['error_count']} errors")

            health = self.config_manager.get_configuration_health_check()
            for warning in health['warnings']:
                logger.warning(f"Configuration: {warning}")
            for error in health['errors']:
                logger.error(f"Configuration: {error}")

            self.preferences = PreferenceStore(str(data_directory / "preferences.json"))
            self.identity_provider = LocalIdentityProvider(str(data_directory / "accounts.json"))

            self.quiz_controller = QuizController(
                self.data_manager, self.data_manager, self.config_manager, self.preferences
            )
            self.quiz_controller.reveal_delay = self.REVEAL_DELAY

            self.admin_panel = AdminPanel(
                self.identity_provider,
                self.data_manager,
                self.data_manager,
                self.config_manager,
                self.data_manager
            )

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        try:
            @self.tree.command(name="help", description="Display available commands and their descriptions")
            async def help_command(interaction: discord.Interaction):
                await self.handle_help(interaction)

            # Player commands
            @self.tree.command(name="play", description="Start a quiz (optionally choose your name and category)")
            async def play_command(interaction: discord.Interaction, name: Optional[str] = None, category: Optional[str] = None):
                await self.handle_play(interaction, name, category)

            @self.tree.command(name="answer", description="Select an option (1-4) for the current question")
            async def answer_command(interaction: discord.Interaction, option: int):
                await self.handle_answer(interaction, option)

            @self.tree.command(name="submit", description="Submit your selected answer")
            async def submit_command(interaction: discord.Interaction):
                await self.handle_submit(interaction)

            @self.tree.command(name="next", description="Go to the next question")
            async def next_command(interaction: discord.Interaction):
                await self.handle_next(interaction)

            @self.tree.command(name="reset", description="Reset the quiz and choose a category again")
            async def reset_command(interaction: discord.Interaction):
                await self.handle_reset(interaction)

            @self.tree.command(name="cancel", description="Abandon the current quiz")
            async def cancel_command(interaction: discord.Interaction):
                await self.handle_cancel(interaction)

            @self.tree.command(name="leaderboard", description="Show the top players")
            async def leaderboard_command(interaction: discord.Interaction):
                await self.handle_leaderboard(interaction)

            @self.tree.command(name="status", description="Show current quiz status and progress")
            async def status_command(interaction: discord.Interaction):
                await self.handle_status(interaction)

            @self.tree.command(name="theme", description="Toggle dark mode for quiz messages")
            async def theme_command(interaction: discord.Interaction):
                await self.handle_theme(interaction)

            @self.tree.command(name="share", description="Share your score")
            async def share_command(interaction: discord.Interaction):
                await self.handle_share(interaction)

            # Admin commands
            @self.tree.command(name="admin_login", description="Sign in to the admin panel")
            async def admin_login_command(interaction: discord.Interaction, email: str, password: str):
                await self.handle_admin_login(interaction, email, password)

            @self.tree.command(name="admin_signup", description="Create an admin account")
            async def admin_signup_command(
                interaction: discord.Interaction, email: str, password: str, display_name: Optional[str] = None
            ):
                await self.handle_admin_signup(interaction, email, password, display_name)

            @self.tree.command(name="admin_logout", description="Sign out of the admin panel")
            async def admin_logout_command(interaction: discord.Interaction):
                await self.handle_admin_logout(interaction)

            @self.tree.command(name="admin_forgot_password", description="Request an admin password reset token")
            async def admin_forgot_password_command(interaction: discord.Interaction, email: str):
                await self.handle_admin_forgot_password(interaction, email)

            @self.tree.command(name="admin_reset_password", description="Set a new admin password with a reset token")
            async def admin_reset_password_command(interaction: discord.Interaction, token: str, new_password: str):
                await self.handle_admin_reset_password(interaction, token, new_password)

            @self.tree.command(name="admin_password", description="Change your admin password (admin)")
            async def admin_password_command(interaction: discord.Interaction, new_password: str):
                await self.handle_admin_password(interaction, new_password)

            @self.tree.command(name="admin_name", description="Change your admin display name (admin)")
            async def admin_name_command(interaction: discord.Interaction, display_name: str):
                await self.handle_admin_name(interaction, display_name)

            @self.tree.command(name="questions", description="List stored questions (admin)")
            async def questions_command(interaction: discord.Interaction, category: Optional[str] = None):
                await self.handle_questions(interaction, category)

            @self.tree.command(name="add_question", description="Add a question; options separated by ';' (admin)")
            async def add_question_command(
                interaction: discord.Interaction,
                passage: str,
                options: str,
                correct_answer: str,
                explanation: str = "",
                category: Optional[str] = None
            ):
                await self.handle_add_question(interaction, passage, options, correct_answer, explanation, category)

            @self.tree.command(name="update_question", description="Update fields of a question (admin)")
            async def update_question_command(
                interaction: discord.Interaction,
                question_id: str,
                passage: Optional[str] = None,
                options: Optional[str] = None,
                correct_answer: Optional[str] = None,
                explanation: Optional[str] = None,
                category: Optional[str] = None
            ):
                await self.handle_update_question(
                    interaction, question_id, passage, options, correct_answer, explanation, category
                )

            @self.tree.command(name="delete_question", description="Delete a question (admin)")
            async def delete_question_command(interaction: discord.Interaction, question_id: str):
                await self.handle_delete_question(interaction, question_id)

            @self.tree.command(name="import_questions", description="Import questions from a JSON array file (admin)")
            async def import_questions_command(interaction: discord.Interaction, file: discord.Attachment):
                await self.handle_import_questions(interaction, file)

            @self.tree.command(name="users", description="Show registered players and activity (admin)")
            async def users_command(interaction: discord.Interaction):
                await self.handle_users(interaction)

            logger.info("Slash commands registered successfully")

        except Exception as e:
            logger.error(f"Error setting up commands: {e}")
            raise

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        try:
            logger.info(f"Bot is ready! Logged in as {self.user}")
            logger.info(f"Bot is in {len(self.guilds)} guilds")

            try:
                synced = await self.tree.sync()
                logger.info(f"Synced {len(synced)} slash commands")
            except Exception as e:
                logger.error(f"Failed to sync slash commands: {e}")

        except Exception as e:
            logger.error(f"Error in on_ready event: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            await self.quiz_controller.shutdown()
        await super().close()

    # Theme

    def is_dark_mode(self, scope: Optional[str]) -> bool:
        if self.preferences is None or not scope:
            return False
        return bool(self.preferences.get(DARK_MODE, False, scope=scope))

    def theme_color(self, scope: Optional[str], color: int) -> int:
        return COLOR_DARK if self.is_dark_mode(scope) else color

    def _channel_scope(self, channel_id: int) -> Optional[str]:
        player = self.quiz_controller.get_player(channel_id)
        return player.id if player else None

    # Rendering

    def build_question_embed(self, state: QuizState, scope: Optional[str] = None) -> discord.Embed:
        """Question with numbered options and remaining time; shows the answer once revealed."""
        question = state.current_question
        if state.is_answered:
            color = COLOR_SUCCESS if state.last_answer_correct else COLOR_ERROR
        else:
            color = self.theme_color(scope, COLOR_INFO)

        embed = discord.Embed(
            title=f"📖 Question {state.current_index + 1}/{state.total_questions}",
            description=f"*{question.passage}*" if question else "",
            color=color
        )
        if question is None:
            return embed

        option_lines = []
        for number, option in enumerate(question.options, start=1):
            marker = ""
            if state.is_answered and option.matches(question.correct_answer):
                marker = " ✅"
            elif state.selected_answer is not None and option.matches(state.selected_answer):
                marker = " 👈"
            option_lines.append(f"**{number}.** {option}{marker}")
        embed.add_field(name="Which reference is this?", value="\n".join(option_lines), inline=False)

        if state.is_answered:
            if state.last_answer_correct:
                verdict = "🎉 Correct!"
            elif state.selected_answer is None:
                verdict = f"⏰ Time's up! The answer was **{question.correct_answer}**"
            else:
                verdict = f"❌ Incorrect. The answer was **{question.correct_answer}**"
            embed.add_field(name="Result", value=verdict, inline=False)
            if question.explanation:
                embed.add_field(name="Explanation", value=question.explanation, inline=False)
            footer = "Use /next to continue" if not state.is_last_question else "Use /next to see your results"
        else:
            footer = "Use /answer <1-4> then /submit"

        embed.set_footer(text=f"⏱️ {state.time_left}s left | Score: {state.score} | {footer}")
        return embed

    def build_leaderboard_text(self, state: QuizState) -> str:
        if not state.leaderboard:
            return "No scores yet."
        medals = {1: "🥇", 2: "🥈", 3: "🥉"}
        lines = []
        for rank, entry in enumerate(state.leaderboard, start=1):
            lines.append(f"{medals.get(rank, f'{rank}.')} {entry.name}: {entry.score}")
        return "\n".join(lines)

    def build_results_embed(self, state: QuizState, scope: Optional[str] = None) -> discord.Embed:
        embed = discord.Embed(
            title="🏁 Quiz Complete!",
            description=f"**{state.player_name}** scored **{state.score}** out of **{state.total_questions}**",
            color=self.theme_color(scope, COLOR_SUCCESS)
        )
        if state.error_message:
            embed.add_field(name="⚠️ Leaderboard", value=state.error_message, inline=False)
        embed.add_field(name="🏆 Leaderboard", value=self.build_leaderboard_text(state), inline=False)
        embed.set_footer(text="Use /reset to play again, /share to share your score")
        return embed

    def make_quiz_listener(self, channel: Any):
        """Build the coroutine that renders controller events into a channel."""

        async def listener(channel_id: int, event: str, state: QuizState) -> None:
            scope = self._channel_scope(channel_id)

            if event == "question":
                message = await channel.send(embed=self.build_question_embed(state, scope))
                self._question_messages[channel_id] = message

            elif event in ("tick", "answered"):
                message = self._question_messages.get(channel_id)
                if message is None or state.current_question is None:
                    return
                try:
                    await message.edit(embed=self.build_question_embed(state, scope))
                except discord.NotFound:
                    self._question_messages.pop(channel_id, None)
                except discord.HTTPException as e:
                    logger.warning(f"Failed to update question message in channel {channel_id}: {e}")

            elif event == "results":
                self._question_messages.pop(channel_id, None)
                await channel.send(embed=self.build_results_embed(state, scope))
                if state.error_message:
                    self.quiz_controller.dismiss_message(channel_id)

            elif event == "error" and state.error_message:
                # Leaderboard failures on the results screen show on the results embed
                if state.screen == Screen.RESULTS:
                    return
                embed = discord.Embed(title="❌ Error", description=state.error_message, color=COLOR_ERROR)
                await channel.send(embed=embed)
                self.quiz_controller.dismiss_message(channel_id)

        return listener

    # Player command handlers

    async def _ensure_player(self, interaction: discord.Interaction) -> bool:
        """Only the player who started the channel's quiz may drive it."""
        player = self.quiz_controller.get_player(interaction.channel_id)
        if player is not None and player.id != str(interaction.user.id):
            await self.send_warning_response(
                interaction, f"This quiz belongs to {player.name}. Use /play once it ends.", "⚠️ Not Your Quiz"
            )
            return False
        return True

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="📖 Bible Quiz Commands",
                description="Read the passage and pick the matching scripture reference",
                color=self.theme_color(str(interaction.user.id), COLOR_SUCCESS)
            )
            help_embed.add_field(
                name="🎮 Playing",
                value=(
                    "`/play [name] [category]` - Start a quiz\n"
                    "`/answer <1-4>` - Select an option\n"
                    "`/submit` - Lock in your answer\n"
                    "`/next` - Go to the next question\n"
                    "`/reset` - Start over with a new category\n"
                    "`/cancel` - Abandon the quiz\n"
                    "`/status` - Show progress"
                ),
                inline=False
            )
            help_embed.add_field(
                name="🏆 Extras",
                value=(
                    "`/leaderboard` - Show the top players\n"
                    "`/share` - Share your score\n"
                    "`/theme` - Toggle dark mode"
                ),
                inline=False
            )
            help_embed.add_field(
                name="🔐 Admin",
                value=(
                    "`/admin_signup`, `/admin_login`, `/admin_logout`, `/admin_forgot_password`, "
                    "`/admin_reset_password`, `/admin_password`, `/admin_name`, `/questions`, `/add_question`, "
                    "`/update_question`, `/delete_question`, `/import_questions`, `/users`"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )

            categories = self.data_manager.list_categories()
            help_embed.add_field(
                name="📚 Categories",
                value=", ".join(categories) if categories else "No questions yet. Ask an admin to add some.",
                inline=False
            )

            await interaction.response.send_message(embed=help_embed)

        except Exception as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help information", "❌ Help Error")

    async def handle_play(self, interaction: discord.Interaction, name: Optional[str] = None, category: Optional[str] = None):
        """Handle /play command"""
        try:
            channel_id = interaction.channel_id
            player_name = name or getattr(interaction.user, 'display_name', '') or ''

            result = self.quiz_controller.begin(channel_id, player_name, player_id=str(interaction.user.id))
            if not result['success']:
                await self.send_warning_response(interaction, result['user_message'], "⚠️ Cannot Start Quiz")
                return

            self.quiz_controller.set_listener(channel_id, self.make_quiz_listener(interaction.channel))
            state = self.quiz_controller.get_state(channel_id)
            chosen = category or state.category

            embed = discord.Embed(
                title="📖 Bible Quiz",
                description=f"{result['user_message']} Category: **{chosen}**",
                color=self.theme_color(result['player_id'], COLOR_SUCCESS)
            )
            embed.add_field(
                name="How to play",
                value=f"Match each passage to its reference. You have {state.timer_duration} seconds per question.",
                inline=False
            )
            await interaction.response.send_message(embed=embed)

            load_result = await self.quiz_controller.load_questions(channel_id, chosen)
            if not load_result['success']:
                if load_result.get('no_questions'):
                    categories = self.data_manager.list_categories()
                    hint = f"\nAvailable categories: {', '.join(categories)}" if categories else ""
                    await self.send_warning_response(
                        interaction, f"{load_result['user_message']}{hint}", "⚠️ No Questions"
                    )
                else:
                    await self.send_error_response(interaction, load_result['user_message'], "❌ Quiz Start Failed")
                self.quiz_controller.dismiss_message(channel_id)

        except Exception as e:
            logger.error(f"Error in play command: {e}")
            await self.send_error_response(interaction, "Failed to start quiz", "❌ Quiz Start Error")

    async def handle_answer(self, interaction: discord.Interaction, option: int):
        """Handle /answer command"""
        try:
            channel_id = interaction.channel_id
            if self.quiz_controller.get_state(channel_id) is None:
                await self.send_info_response(interaction, "No quiz in this channel. Use /play to start.", "ℹ️ No Active Quiz")
                return
            if not await self._ensure_player(interaction):
                return

            result = self.quiz_controller.select_answer(channel_id, option)
            if not result['success']:
                await self.send_warning_response(interaction, result['user_message'])
                return

            await self.send_info_response(interaction, result['user_message'], "👉 Answer Selected")

            message = self._question_messages.get(channel_id)
            if message is not None:
                state = self.quiz_controller.get_state(channel_id)
                try:
                    await message.edit(embed=self.build_question_embed(state, self._channel_scope(channel_id)))
                except discord.HTTPException as e:
                    logger.warning(f"Failed to mark selection in channel {channel_id}: {e}")

        except Exception as e:
            logger.error(f"Error in answer command: {e}")
            await self.send_error_response(interaction, "Failed to select answer", "❌ Answer Error")

    async def handle_submit(self, interaction: discord.Interaction):
        """Handle /submit command"""
        try:
            channel_id = interaction.channel_id
            if self.quiz_controller.get_state(channel_id) is None:
                await self.send_info_response(interaction, "No quiz in this channel. Use /play to start.", "ℹ️ No Active Quiz")
                return
            if not await self._ensure_player(interaction):
                return

            result = await self.quiz_controller.submit_answer(channel_id)
            if not result['success']:
                await self.send_warning_response(interaction, result['user_message'])
                return

            if result['correct']:
                description = "🎉 Correct!"
            else:
                description = f"❌ Incorrect. The answer was **{result['correct_answer']}**"
            embed = discord.Embed(
                title="Answer Submitted",
                description=description,
                color=COLOR_SUCCESS if result['correct'] else COLOR_ERROR
            )
            embed.set_footer(text=f"Score: {result['score']} | Use /next to continue")
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in submit command: {e}")
            await self.send_error_response(interaction, "Failed to submit answer", "❌ Answer Error")

    async def handle_next(self, interaction: discord.Interaction):
        """Handle /next command"""
        try:
            channel_id = interaction.channel_id
            if self.quiz_controller.get_state(channel_id) is None:
                await self.send_info_response(interaction, "No quiz in this channel. Use /play to start.", "ℹ️ No Active Quiz")
                return
            if not await self._ensure_player(interaction):
                return

            # The reply goes first; the next question or the results follow in the channel
            await interaction.response.defer(ephemeral=True)
            result = await self.quiz_controller.advance(channel_id)
            if not result['success']:
                await self.send_warning_response(interaction, result['user_message'])
            elif result['finished']:
                await self.send_info_response(interaction, "Quiz complete!", "🏁 Finished")
            else:
                await self.send_info_response(
                    interaction,
                    f"Question {result['question_number']} of {result['total_questions']}",
                    "➡️ Next Question"
                )

        except Exception as e:
            logger.error(f"Error in next command: {e}")
            await self.send_error_response(interaction, "Failed to advance quiz", "❌ Quiz Control Error")

    async def handle_reset(self, interaction: discord.Interaction):
        """Handle /reset command"""
        try:
            channel_id = interaction.channel_id
            if self.quiz_controller.get_state(channel_id) is None:
                await self.send_info_response(interaction, "No quiz in this channel. Use /play to start.", "ℹ️ No Active Quiz")
                return
            if not await self._ensure_player(interaction):
                return

            result = await self.quiz_controller.reset(channel_id)
            self._question_messages.pop(channel_id, None)
            await self.send_info_response(interaction, f"{result['user_message']} Use /play to start.", "🔄 Reset")

        except Exception as e:
            logger.error(f"Error in reset command: {e}")
            await self.send_error_response(interaction, "Failed to reset quiz", "❌ Quiz Control Error")

    async def handle_cancel(self, interaction: discord.Interaction):
        """Handle /cancel command"""
        try:
            channel_id = interaction.channel_id
            if not await self._ensure_player(interaction):
                return
            result = await self.quiz_controller.cancel(channel_id)
            self._question_messages.pop(channel_id, None)

            if result['success']:
                embed = discord.Embed(
                    title="🛑 Quiz Cancelled",
                    description="The quiz was abandoned and the score discarded.",
                    color=0xff6600
                )
                embed.set_footer(text="Use /play to begin a new quiz")
                await interaction.response.send_message(embed=embed)
            else:
                await self.send_info_response(interaction, result['user_message'], "ℹ️ No Active Quiz")

        except Exception as e:
            logger.error(f"Error in cancel command: {e}")
            await self.send_error_response(interaction, "Failed to cancel quiz", "❌ Quiz Control Error")

    async def handle_leaderboard(self, interaction: discord.Interaction):
        """Handle /leaderboard command"""
        try:
            channel_id = interaction.channel_id
            result = await self.quiz_controller.show_leaderboard(channel_id)
            if not result['success']:
                await self.send_warning_response(interaction, result['user_message'])
                self.quiz_controller.dismiss_message(channel_id)
                return

            state = self.quiz_controller.get_state(channel_id)
            embed = discord.Embed(
                title="🏆 Leaderboard",
                description=self.build_leaderboard_text(state),
                color=self.theme_color(str(interaction.user.id), COLOR_WARNING)
            )
            await interaction.response.send_message(embed=embed)

        except Exception as e:
            logger.error(f"Error in leaderboard command: {e}")
            await self.send_error_response(interaction, "Failed to show leaderboard", "❌ Leaderboard Error")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            channel_id = interaction.channel_id
            state = self.quiz_controller.get_state(channel_id)

            embed = discord.Embed(
                title="📊 Quiz Status",
                description=self.quiz_controller.get_session_status_summary(channel_id),
                color=self.theme_color(str(interaction.user.id), COLOR_INFO)
            )
            if state is not None and state.screen == Screen.QUIZ:
                timer_status = self.quiz_controller.quiz_engine.get_timer_status(str(channel_id))
                if timer_status and timer_status['is_running']:
                    embed.add_field(
                        name="⏰ Current Timer",
                        value=f"{timer_status['remaining_time']} seconds remaining",
                        inline=False
                    )
            embed.set_footer(text="Use /help to see all available commands")
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in status command: {e}")
            await self.send_error_response(interaction, "Failed to get quiz status", "❌ Status Error")

    async def handle_theme(self, interaction: discord.Interaction):
        """Handle /theme command"""
        try:
            dark = self.preferences.toggle(DARK_MODE, scope=str(interaction.user.id))
            embed = discord.Embed(
                title="🌙 Dark mode on" if dark else "☀️ Dark mode off",
                description="Quiz messages will use the new theme.",
                color=COLOR_DARK if dark else COLOR_INFO
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in theme command: {e}")
            await self.send_error_response(interaction, "Failed to change theme", "❌ Theme Error")

    async def handle_share(self, interaction: discord.Interaction):
        """Handle /share command"""
        try:
            channel_id = interaction.channel_id
            state = self.quiz_controller.get_state(channel_id)
            if state is None or state.screen not in (Screen.RESULTS, Screen.LEADERBOARD) or not state.questions:
                await self.send_info_response(interaction, "Finish a quiz first to share your score.", "ℹ️ Nothing to Share")
                return

            await interaction.response.send_message(self.quiz_controller.get_share_text(channel_id))

        except Exception as e:
            logger.error(f"Error in share command: {e}")
            await self.send_error_response(interaction, "Failed to share score", "❌ Share Error")

    # Admin command handlers

    async def _ensure_admin(self, interaction: discord.Interaction) -> bool:
        if self._admin_user_id is None or self._admin_user_id != interaction.user.id:
            await self.send_error_response(
                interaction, "Admin sign-in required. Use /admin_login first.", "🔐 Access Denied"
            )
            return False
        return True

    async def _send_admin_result(self, interaction: discord.Interaction, result: Dict[str, Any], title: str):
        if result['success']:
            await self.send_info_response(interaction, result['user_message'], title)
        else:
            await self.send_error_response(interaction, result['user_message'], f"❌ {title}")

    async def handle_admin_login(self, interaction: discord.Interaction, email: str, password: str):
        """Handle /admin_login command"""
        try:
            result = self.admin_panel.login(email, password)
            if result['success']:
                self._admin_user_id = interaction.user.id
                logger.info(f"Discord user {interaction.user.id} opened the admin panel")
            await self._send_admin_result(interaction, result, "Admin Login")

        except Exception as e:
            logger.error(f"Error in admin_login command: {e}")
            await self.send_error_response(interaction, "Failed to login. Please try again.", "❌ Admin Login")

    async def handle_admin_signup(
        self, interaction: discord.Interaction, email: str, password: str, display_name: Optional[str] = None
    ):
        """Handle /admin_signup command"""
        try:
            result = self.admin_panel.signup(email, password, display_name or "")
            if result['success']:
                self._admin_user_id = interaction.user.id
                logger.info(f"Discord user {interaction.user.id} created an admin account")
            await self._send_admin_result(interaction, result, "Admin Signup")

        except Exception as e:
            logger.error(f"Error in admin_signup command: {e}")
            await self.send_error_response(interaction, "Registration failed. Please try again.", "❌ Admin Signup")

    async def handle_admin_forgot_password(self, interaction: discord.Interaction, email: str):
        """Handle /admin_forgot_password command"""
        try:
            result = self.admin_panel.request_password_reset(email)
            await self._send_admin_result(interaction, result, "Password Reset")

        except Exception as e:
            logger.error(f"Error in admin_forgot_password command: {e}")
            await self.send_error_response(
                interaction, "Failed to send password reset email. Please try again.", "❌ Password Reset"
            )

    async def handle_admin_reset_password(self, interaction: discord.Interaction, token: str, new_password: str):
        """Handle /admin_reset_password command"""
        try:
            result = self.admin_panel.confirm_password_reset(token, new_password)
            await self._send_admin_result(interaction, result, "Password Reset")

        except Exception as e:
            logger.error(f"Error in admin_reset_password command: {e}")
            await self.send_error_response(interaction, "Failed to reset password", "❌ Password Reset")

    async def handle_admin_password(self, interaction: discord.Interaction, new_password: str):
        """Handle /admin_password command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            result = self.admin_panel.change_password(new_password)
            await self._send_admin_result(interaction, result, "Change Password")

        except Exception as e:
            logger.error(f"Error in admin_password command: {e}")
            await self.send_error_response(interaction, "Failed to update password", "❌ Change Password")

    async def handle_admin_name(self, interaction: discord.Interaction, display_name: str):
        """Handle /admin_name command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            result = self.admin_panel.update_display_name(display_name)
            await self._send_admin_result(interaction, result, "Display Name")

        except Exception as e:
            logger.error(f"Error in admin_name command: {e}")
            await self.send_error_response(interaction, "Failed to update display name", "❌ Display Name")

    async def handle_admin_logout(self, interaction: discord.Interaction):
        """Handle /admin_logout command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            result = self.admin_panel.logout()
            self._admin_user_id = None
            await self._send_admin_result(interaction, result, "Admin Logout")

        except Exception as e:
            logger.error(f"Error in admin_logout command: {e}")
            await self.send_error_response(interaction, "Failed to sign out", "❌ Admin Logout")

    async def handle_questions(self, interaction: discord.Interaction, category: Optional[str] = None):
        """Handle /questions command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            result = self.admin_panel.list_questions(category)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Questions")
                return

            questions = result['questions']
            lines = []
            for question in questions[:self.QUESTION_LIST_LIMIT]:
                passage = question.passage if len(question.passage) <= 60 else question.passage[:57] + "..."
                lines.append(f"`{question.id}` {passage} ({question.correct_answer})")
            if len(questions) > self.QUESTION_LIST_LIMIT:
                lines.append(f"... and {len(questions) - self.QUESTION_LIST_LIMIT} more")

            embed = discord.Embed(
                title=f"📚 Questions ({len(questions)})",
                description="\n".join(lines) if lines else "No questions found.",
                color=COLOR_INFO
            )
            if category:
                embed.set_footer(text=f"Category: {category}")
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in questions command: {e}")
            await self.send_error_response(interaction, "Failed to fetch data", "❌ Questions")

    async def handle_add_question(
        self,
        interaction: discord.Interaction,
        passage: str,
        options: str,
        correct_answer: str,
        explanation: str = "",
        category: Optional[str] = None
    ):
        """Handle /add_question command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            try:
                parsed_options = parse_options(options)
                parsed_answer = ScriptureReference.parse(correct_answer)
            except ValueError as e:
                await self.send_error_response(interaction, f"Invalid reference: {e}", "❌ Add Question")
                return

            data = {
                "passage": passage,
                "options": [option.to_dict() for option in parsed_options],
                "correctAnswer": parsed_answer.to_dict(),
                "explanation": explanation or "",
                "category": category or self.config_manager.get_category(),
            }
            result = self.admin_panel.add_question(data)
            await self._send_admin_result(interaction, result, "Add Question")

        except Exception as e:
            logger.error(f"Error in add_question command: {e}")
            await self.send_error_response(interaction, "Failed to add question", "❌ Add Question")

    async def handle_update_question(
        self,
        interaction: discord.Interaction,
        question_id: str,
        passage: Optional[str] = None,
        options: Optional[str] = None,
        correct_answer: Optional[str] = None,
        explanation: Optional[str] = None,
        category: Optional[str] = None
    ):
        """Handle /update_question command"""
        try:
            if not await self._ensure_admin(interaction):
                return

            data: Dict[str, Any] = {}
            try:
                if options is not None:
                    data["options"] = [option.to_dict() for option in parse_options(options)]
                if correct_answer is not None:
                    data["correctAnswer"] = ScriptureReference.parse(correct_answer).to_dict()
            except ValueError as e:
                await self.send_error_response(interaction, f"Invalid reference: {e}", "❌ Update Question")
                return
            if passage is not None:
                data["passage"] = passage
            if explanation is not None:
                data["explanation"] = explanation
            if category is not None:
                data["category"] = category

            if not data:
                await self.send_warning_response(interaction, "Nothing to update. Provide at least one field.")
                return

            result = self.admin_panel.update_question(question_id, data)
            await self._send_admin_result(interaction, result, "Update Question")

        except Exception as e:
            logger.error(f"Error in update_question command: {e}")
            await self.send_error_response(interaction, "Failed to update question", "❌ Update Question")

    async def handle_delete_question(self, interaction: discord.Interaction, question_id: str):
        """Handle /delete_question command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            result = self.admin_panel.delete_question(question_id)
            await self._send_admin_result(interaction, result, "Delete Question")

        except Exception as e:
            logger.error(f"Error in delete_question command: {e}")
            await self.send_error_response(interaction, "Failed to delete question", "❌ Delete Question")

    async def handle_import_questions(self, interaction: discord.Interaction, file: discord.Attachment):
        """Handle /import_questions command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            if file.size > DataManager.MAX_FILE_SIZE:
                await self.send_error_response(interaction, "The file is too large to import.", "❌ Import Questions")
                return

            try:
                text = (await file.read()).decode('utf-8')
            except UnicodeDecodeError:
                await self.send_error_response(interaction, "The file must be UTF-8 encoded JSON.", "❌ Import Questions")
                return

            result = self.admin_panel.bulk_import(text)
            if 'imported' not in result:
                await self._send_admin_result(interaction, result, "Import Questions")
                return

            embed = discord.Embed(
                title="📥 Import Questions",
                description=result['user_message'],
                color=COLOR_SUCCESS if not result['errors'] else (COLOR_WARNING if result['imported'] else COLOR_ERROR)
            )
            if result['errors']:
                error_text = "\n".join(result['errors'][:5])
                if len(result['errors']) > 5:
                    error_text += f"\n... and {len(result['errors']) - 5} more"
                embed.add_field(name="Problems", value=f"```\n{error_text}\n```", inline=False)
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in import_questions command: {e}")
            await self.send_error_response(
                interaction, "Failed to import questions. Please check your JSON format.", "❌ Import Questions"
            )

    async def handle_users(self, interaction: discord.Interaction):
        """Handle /users command"""
        try:
            if not await self._ensure_admin(interaction):
                return
            summary = self.admin_panel.dashboard_summary()
            users = self.admin_panel.list_users()
            if not summary['success'] or not users['success']:
                await self.send_error_response(interaction, "Failed to fetch data", "❌ Users")
                return

            embed = discord.Embed(title="👥 Users", color=COLOR_INFO)
            embed.add_field(name="Total Users", value=str(summary['total_users']), inline=True)
            embed.add_field(
                name="Active Users",
                value=f"{summary['active_users']} (last {self.config_manager.get_active_window_hours()}h)",
                inline=True
            )
            embed.add_field(name="Total Questions", value=str(summary['total_questions']), inline=True)

            lines = []
            for player in users['users'][:self.QUESTION_LIST_LIMIT]:
                last_active = player.last_active.strftime("%Y-%m-%d %H:%M") if player.last_active else "never"
                lines.append(f"{player.name}: {player.score} (last active {last_active})")
            embed.add_field(name="Players", value="\n".join(lines) if lines else "No players yet.", inline=False)
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error in users command: {e}")
            await self.send_error_response(interaction, "Failed to fetch data", "❌ Users")

    # Responses

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_ERROR
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send error embed: {e}")
            # Fall back to a plain message
            try:
                simple_message = f"{title}: {message}"
                if interaction.response.is_done():
                    await interaction.followup.send(simple_message, ephemeral=True)
                else:
                    await interaction.response.send_message(simple_message, ephemeral=True)
            except discord.HTTPException:
                logger.error("Failed to send fallback error message")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=self.theme_color(str(interaction.user.id), COLOR_INFO)
            )

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send info response to user")

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_WARNING
            )

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send warning response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Bible Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run_bot())
