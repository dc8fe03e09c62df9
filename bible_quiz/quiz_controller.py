"""
Quiz session controller for the Bible Quiz Bot.
Runs one quiz session per channel: store reads and writes around engine
transitions, question timers, and presentation events.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from .config_manager import ConfigManager
from .models import LeaderboardEntry, Player, QuizState, Screen
from .preferences import LAST_SCORE, PLAYER_ID, PLAYER_NAME, PreferenceStore
from .quiz_engine import (
    Advance,
    Begin,
    Cancel,
    DismissMessage,
    LeaderboardUpdated,
    QuestionsLoaded,
    QuizEngine,
    Reset,
    SelectAnswer,
    ShowLeaderboard,
    StoreFailed,
    SubmitAnswer,
    Tick,
)
from .repository import PlayerRepository, QuestionRepository

QuizEventListener = Callable[[int, str, QuizState], Awaitable[None]]

LOAD_FAILED_MESSAGE = "Failed to load questions. Please try again."
LEADERBOARD_FAILED_MESSAGE = "Failed to update leaderboard. Please try again."
LEADERBOARD_FETCH_FAILED_MESSAGE = "Failed to load the leaderboard. Please try again."


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class QuizController:
    """
    Orchestrates quiz sessions, one per channel.

    State lives in an immutable QuizState per session and only changes through
    QuizEngine.reduce. Every store call is wrapped: a failure records an error
    message on the state and leaves everything else as it was.
    """

    def __init__(
        self,
        question_repository: QuestionRepository,
        player_repository: PlayerRepository,
        config_manager: ConfigManager,
        preferences: Optional[PreferenceStore] = None,
        quiz_engine: Optional[QuizEngine] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            question_repository: Source of quiz questions
            player_repository: Store for player scores and the leaderboard
            config_manager: Instance for managing configuration
            preferences: Optional store for player display name, id and last score
            quiz_engine: Optional engine, mainly for injecting a seeded random source
        """
        self.logger = logging.getLogger(__name__)
        self.question_repository = question_repository
        self.player_repository = player_repository
        self.config_manager = config_manager
        self.preferences = preferences
        self.quiz_engine = quiz_engine or QuizEngine()

        # Seconds to keep an expired question's answer on screen before advancing
        self.reveal_delay = 0.0

        self._states: Dict[int, QuizState] = {}
        self._players: Dict[int, Player] = {}
        self._listeners: Dict[int, QuizEventListener] = {}

        self.logger.info("QuizController initialized")

    # Session access

    def get_state(self, session_id: int) -> Optional[QuizState]:
        return self._states.get(session_id)

    def get_player(self, session_id: int) -> Optional[Player]:
        return self._players.get(session_id)

    def set_listener(self, session_id: int, listener: Optional[QuizEventListener]) -> None:
        """Register the coroutine that renders events for a session."""
        if listener is None:
            self._listeners.pop(session_id, None)
        else:
            self._listeners[session_id] = listener

    def _require_state(self, session_id: int) -> QuizState:
        state = self._states.get(session_id)
        if state is None:
            raise SessionNotFoundError(f"No quiz session for channel {session_id}")
        return state

    def _dispatch(self, session_id: int, action: Any) -> QuizState:
        state = self.quiz_engine.reduce(self._require_state(session_id), action)
        self._states[session_id] = state
        return state

    async def _emit(self, session_id: int, event: str) -> None:
        listener = self._listeners.get(session_id)
        state = self._states.get(session_id)
        if listener is None or state is None:
            return
        try:
            await listener(session_id, event, state)
        except Exception as e:
            self.logger.error(f"Listener failed for event '{event}' in channel {session_id}: {e}")

    def _failure(self, message: str, **extra: Any) -> Dict[str, Any]:
        return {'success': False, 'message': message, 'user_message': message, **extra}

    # Welcome -> category

    def begin(self, session_id: int, player_name: str = "", player_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a session for a player and move to category selection.

        Args:
            session_id: Channel identifier
            player_name: Display name; falls back to the stored name
            player_id: Stable player id; falls back to the stored id or a new timestamp id
        """
        existing = self._states.get(session_id)
        if existing is not None and existing.screen == Screen.QUIZ:
            return self._failure("A quiz is already in progress in this channel. Use /cancel to abandon it.")

        scope = player_id or str(session_id)
        name = (player_name or "").strip()
        if not name and self.preferences is not None:
            name = self.preferences.get(PLAYER_NAME, "", scope=scope)
        if not name:
            return self._failure("Please enter your name to start.")

        if not player_id and self.preferences is not None:
            player_id = self.preferences.get(PLAYER_ID, scope=scope)
        if not player_id:
            player_id = str(int(time.time() * 1000))

        if self.preferences is not None:
            self.preferences.set(PLAYER_NAME, name, scope=scope)
            self.preferences.set(PLAYER_ID, player_id, scope=scope)

        settings = self.config_manager.get_quiz_settings()
        leaderboard = existing.leaderboard if existing is not None else ()
        self._states[session_id] = QuizState(
            category=settings.category,
            leaderboard=leaderboard,
            timer_duration=settings.timer_duration,
            time_left=settings.timer_duration,
        )
        self._players[session_id] = Player(id=player_id, name=name)
        state = self._dispatch(session_id, Begin(player_name=name, timer_duration=settings.timer_duration))

        self.logger.info(f"Player {player_id} began a session in channel {session_id}")
        return {
            'success': True,
            'message': f"Welcome, {name}!",
            'user_message': f"Welcome, {name}!",
            'player_id': player_id,
            'state': state,
        }

    # Category -> quiz

    async def load_questions(self, session_id: int, category: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch the category's questions, shuffle them, and enter the quiz.

        Stays on the category screen when the store fails or the category is empty.
        """
        state = self._require_state(session_id)
        if state.screen != Screen.CATEGORY:
            return self._failure("Choose a category first. Use /play to start.")

        category = category or state.category
        try:
            questions = self.question_repository.list_questions(category)
        except Exception as e:
            self.logger.error(f"Failed to load questions for '{category}' in channel {session_id}: {e}")
            self._dispatch(session_id, StoreFailed(LOAD_FAILED_MESSAGE))
            await self._emit(session_id, "error")
            return self._failure(LOAD_FAILED_MESSAGE)

        state = self._dispatch(session_id, QuestionsLoaded(category, self.quiz_engine.randomize(questions)))
        if state.screen != Screen.QUIZ:
            self.logger.info(f"No questions in category '{category}' for channel {session_id}")
            return self._failure(state.notice, no_questions=True)

        self.logger.info(f"Loaded {state.total_questions} questions for channel {session_id}")
        await self._emit(session_id, "question")
        await self._start_timer(session_id)
        return {
            'success': True,
            'message': f"Loaded {state.total_questions} questions",
            'user_message': f"📖 {state.total_questions} questions in {category}. Good luck!",
            'total_questions': state.total_questions,
        }

    # Answering

    def select_answer(self, session_id: int, option_number: int) -> Dict[str, Any]:
        """
        Mark an option as the pending answer.

        Args:
            option_number: 1-based position of the option as displayed
        """
        state = self._require_state(session_id)
        question = state.current_question
        if question is None:
            return self._failure("There is no question to answer right now.")
        if state.is_answered:
            return self._failure("This question has already been answered.", already_answered=True)
        if state.time_left <= 0:
            return self._failure("Time is up for this question.")
        if not 1 <= option_number <= len(question.options):
            return self._failure(f"Choose an option between 1 and {len(question.options)}.")

        option = question.options[option_number - 1]
        self._dispatch(session_id, SelectAnswer(option))
        return {
            'success': True,
            'message': f"Selected {option}",
            'user_message': f"Selected **{option}**. Use /submit to lock it in.",
            'option': option,
        }

    async def submit_answer(self, session_id: int) -> Dict[str, Any]:
        """Score the pending answer; further submissions for the same question do nothing."""
        state = self._require_state(session_id)
        if state.current_question is None:
            return self._failure("There is no question to answer right now.")
        if state.is_answered:
            return self._failure("This question has already been answered.", already_answered=True)

        state = self._dispatch(session_id, SubmitAnswer())
        await self.quiz_engine.cancel_timer(str(session_id))
        await self._emit(session_id, "answered")
        return self._answer_result(state)

    def _answer_result(self, state: QuizState) -> Dict[str, Any]:
        question = state.questions[state.current_index]
        return {
            'success': True,
            'correct': bool(state.last_answer_correct),
            'correct_answer': str(question.correct_answer),
            'explanation': question.explanation,
            'score': state.score,
            'is_last_question': state.is_last_question,
        }

    async def advance(self, session_id: int) -> Dict[str, Any]:
        """Move to the next question, or finish the quiz and update the leaderboard."""
        previous = self._require_state(session_id)
        state = self._dispatch(session_id, Advance())
        if state is previous:
            return self._failure("Answer the current question first.")

        if state.screen == Screen.RESULTS:
            await self.quiz_engine.cancel_timer(str(session_id))
            self.logger.info(
                f"Quiz finished in channel {session_id}: {state.score}/{state.total_questions}"
            )
            await self.update_leaderboard(session_id)
            await self._emit(session_id, "results")
            return {
                'success': True,
                'finished': True,
                'score': state.score,
                'total_questions': state.total_questions,
            }

        await self._emit(session_id, "question")
        await self._start_timer(session_id)
        return {
            'success': True,
            'finished': False,
            'question_number': state.current_index + 1,
            'total_questions': state.total_questions,
        }

    # Timer

    async def _start_timer(self, session_id: int) -> None:
        state = self._require_state(session_id)
        question_index = state.current_index

        async def on_tick(remaining: int) -> None:
            if session_id not in self._states:
                return
            self._dispatch(session_id, Tick(question_index))
            await self._emit(session_id, "tick")

        async def on_expire() -> None:
            current = self._states.get(session_id)
            if current is None or current.screen != Screen.QUIZ or current.current_index != question_index:
                return
            if not current.is_answered:
                self._dispatch(session_id, SubmitAnswer())
            self.logger.info(f"Time expired on question {question_index + 1} in channel {session_id}")
            await self._emit(session_id, "answered")
            if self.reveal_delay:
                await asyncio.sleep(self.reveal_delay)
            current = self._states.get(session_id)
            if current is not None and current.screen == Screen.QUIZ and current.current_index == question_index:
                await self.advance(session_id)

        await self.quiz_engine.start_question_timer(str(session_id), state.time_left, on_tick, on_expire)

    # Leaderboard

    async def update_leaderboard(self, session_id: int) -> Dict[str, Any]:
        """Persist the finished score and refresh the leaderboard."""
        state = self._require_state(session_id)
        player = self._players.get(session_id)
        if player is None:
            return self._failure("No player for this session.")

        size = self.config_manager.get_leaderboard_size()
        updated = Player(
            id=player.id,
            name=player.name,
            email=player.email,
            score=state.score,
            last_active=datetime.now(timezone.utc),
        )
        try:
            self.player_repository.save_player(updated)
            top = self.player_repository.top_players(size)
        except Exception as e:
            self.logger.error(f"Failed to update leaderboard for channel {session_id}: {e}")
            self._dispatch(session_id, StoreFailed(LEADERBOARD_FAILED_MESSAGE))
            await self._emit(session_id, "error")
            return self._failure(LEADERBOARD_FAILED_MESSAGE)

        self._players[session_id] = updated
        if self.preferences is not None:
            self.preferences.set(LAST_SCORE, state.score, scope=player.id)

        entries = self.quiz_engine.merge_leaderboard(
            top, LeaderboardEntry(id=updated.id, name=updated.name, score=updated.score), size
        )
        self._dispatch(session_id, LeaderboardUpdated(entries))
        return {'success': True, 'leaderboard': entries}

    async def show_leaderboard(self, session_id: int) -> Dict[str, Any]:
        """Fetch the top players and switch to the leaderboard screen."""
        if session_id not in self._states:
            self._states[session_id] = QuizState()
        state = self._states[session_id]
        if state.screen == Screen.QUIZ:
            return self._failure("Finish or cancel the current quiz first.")

        try:
            entries = self.player_repository.top_players(self.config_manager.get_leaderboard_size())
        except Exception as e:
            self.logger.error(f"Failed to fetch leaderboard for channel {session_id}: {e}")
            self._dispatch(session_id, StoreFailed(LEADERBOARD_FETCH_FAILED_MESSAGE))
            return self._failure(LEADERBOARD_FETCH_FAILED_MESSAGE)

        state = self._dispatch(session_id, ShowLeaderboard(tuple(entries)))
        return {'success': True, 'leaderboard': state.leaderboard}

    # Reset, cancel, teardown

    async def reset(self, session_id: int) -> Dict[str, Any]:
        """Return to category selection with a cleared score."""
        self._require_state(session_id)
        await self.quiz_engine.cancel_timer(str(session_id))
        self._dispatch(session_id, Reset())
        self.logger.info(f"Quiz reset in channel {session_id}")
        return {'success': True, 'message': "Quiz reset", 'user_message': "🔄 Quiz reset. Pick a category to play again."}

    async def cancel(self, session_id: int) -> Dict[str, Any]:
        """Abandon the quiz, discarding the score, and return to the welcome screen."""
        state = self._states.get(session_id)
        if state is None:
            return self._failure("No quiz session in this channel.")
        await self.quiz_engine.cancel_timer(str(session_id))
        self._dispatch(session_id, Cancel())
        self.logger.info(f"Quiz cancelled in channel {session_id}")
        return {'success': True, 'message': "Quiz cancelled", 'user_message': "🛑 Quiz cancelled."}

    def dismiss_message(self, session_id: int) -> None:
        if session_id in self._states:
            self._dispatch(session_id, DismissMessage())

    async def shutdown(self) -> None:
        cancelled = await self.quiz_engine.cancel_all_timers()
        self.logger.info(f"Controller shut down, {cancelled} timers cancelled")

    # Summaries

    def get_share_text(self, session_id: int) -> str:
        state = self._require_state(session_id)
        return (
            f"I scored {state.score} out of {state.total_questions} in the Bible Quiz! "
            f"Can you beat my score?"
        )

    def get_session_status_summary(self, session_id: int) -> str:
        state = self._states.get(session_id)
        if state is None:
            return "No quiz session. Use /play to start."
        if state.screen == Screen.QUIZ:
            return (
                f"Category: {state.category} | Question {state.current_index + 1}/{state.total_questions} | "
                f"Score: {state.score} | Time left: {state.time_left}s"
            )
        if state.screen == Screen.RESULTS:
            return f"Finished: {state.score}/{state.total_questions}"
        return f"Screen: {state.screen.value}"
