"""
Quiz engine core logic for the Bible Quiz Bot.
Handles state transitions, question and option shuffling, leaderboard merging,
and per-question countdown timers.
"""
import random
import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import LeaderboardEntry, QuizQuestion, QuizState, Screen, ScriptureReference

# Set up logger for timer operations
logger = logging.getLogger(__name__)

NO_QUESTIONS_NOTICE = "No questions available for this category."


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_created(session_id: str, duration: int) -> None:
        logger.info(
            f"Timer lifecycle: CREATED - Session {session_id}, Duration {duration}s",
            extra={
                'event_type': 'timer_created',
                'session_id': session_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(session_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer updates at the ten-second marks and during the final five seconds."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {session_id}, {remaining_time}s remaining",
                extra={
                    'event_type': 'timer_update',
                    'session_id': session_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': ((total_duration - remaining_time) / total_duration) * 100
                    if total_duration else 100,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(session_id: str, completion_type: str, total_duration: int) -> None:
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_id}, Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'session_id': session_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(session_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Session {session_id}, {from_state} -> {to_state}",
            extra={
                'event_type': 'timer_state_transition',
                'session_id': session_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_id: str, error_type: str, error_message: str, context: str = None) -> None:
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_id}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_id': session_id,
                'error_type': error_type,
                'error_message': error_message,
                'context': context,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Counts down one question, ticking once per second."""

    def __init__(self, session_id: str = None):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._is_cancelled = False
        self._session_id = session_id
        self._total_duration = 0

    async def start_countdown(
        self,
        duration: int,
        tick_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        """
        Count down from ``duration`` to zero.

        Args:
            duration: Timer duration in seconds
            tick_callback: Awaited after each elapsed second with the remaining time
            completion_callback: Awaited once when the countdown reaches zero;
                never called after cancellation
        """
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        TimerLifecycleLogger.log_timer_state_transition(self._session_id, "created", "running")

        # Ticks are scheduled from the start time so slow callbacks do not stretch the countdown
        started = time.monotonic()

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                elapsed = self._total_duration - self._remaining_time + 1
                await asyncio.sleep(max(0.0, started + elapsed - time.monotonic()))
                if self._is_cancelled:
                    break
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._session_id,
                    self._remaining_time,
                    self._total_duration
                )
                await tick_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._session_id, "cancelled", self._total_duration)
            else:
                TimerLifecycleLogger.log_timer_completion(self._session_id, "natural_expiry", self._total_duration)
                await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_id, "asyncio_cancelled", self._total_duration)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_id,
                "countdown_execution_error",
                str(e),
                "start_countdown"
            )
            raise

    def cancel(self) -> None:
        """Stop the countdown; a timer cannot cancel the task it is running in."""
        TimerLifecycleLogger.log_timer_state_transition(
            self._session_id, "running", "cancelled", "cancel requested"
        )
        self._is_cancelled = True
        if self._task and not self._task.done() and self._task is not _current_task():
            self._task.cancel()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def remaining_time(self) -> int:
        return self._remaining_time

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled


# Reducer actions

@dataclass(frozen=True)
class Begin:
    player_name: str
    timer_duration: int = 60


@dataclass(frozen=True)
class QuestionsLoaded:
    category: str
    questions: Tuple[QuizQuestion, ...]


@dataclass(frozen=True)
class StoreFailed:
    message: str


@dataclass(frozen=True)
class SelectAnswer:
    option: ScriptureReference


@dataclass(frozen=True)
class SubmitAnswer:
    pass


@dataclass(frozen=True)
class Tick:
    question_index: int


@dataclass(frozen=True)
class Advance:
    pass


@dataclass(frozen=True)
class LeaderboardUpdated:
    entries: Tuple[LeaderboardEntry, ...]


@dataclass(frozen=True)
class ShowLeaderboard:
    entries: Tuple[LeaderboardEntry, ...]


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class DismissMessage:
    pass


class QuizEngine:
    """Core quiz engine: pure state transitions, shuffling, and question timers."""

    CANCEL_TIMEOUT = 2.0

    def __init__(self, rng: Optional[random.Random] = None):
        """Initialize the quiz engine."""
        self._random = rng or random.Random()
        self._timers: Dict[str, QuizTimer] = {}  # Session ID -> Timer mapping
        self._handlers = {
            Begin: self._on_begin,
            QuestionsLoaded: self._on_questions_loaded,
            StoreFailed: self._on_store_failed,
            SelectAnswer: self._on_select_answer,
            SubmitAnswer: self._on_submit_answer,
            Tick: self._on_tick,
            Advance: self._on_advance,
            LeaderboardUpdated: self._on_leaderboard_updated,
            ShowLeaderboard: self._on_show_leaderboard,
            Reset: self._on_reset,
            Cancel: self._on_cancel,
            DismissMessage: self._on_dismiss_message,
        }

    # Shuffling

    def shuffle(self, items: Iterable[Any]) -> List[Any]:
        """Return a new list holding a uniform random permutation of ``items``."""
        shuffled = list(items)
        self._random.shuffle(shuffled)
        return shuffled

    def shuffle_options(self, question: QuizQuestion) -> QuizQuestion:
        """Copy of ``question`` with its options in random order."""
        return replace(question, options=self.shuffle(question.options))

    def randomize(self, questions: Sequence[QuizQuestion]) -> Tuple[QuizQuestion, ...]:
        """Shuffle the question order and, independently, each question's options."""
        return tuple(self.shuffle_options(question) for question in self.shuffle(questions))

    # Leaderboard

    @staticmethod
    def merge_leaderboard(
        entries: Iterable[LeaderboardEntry],
        entry: LeaderboardEntry,
        size: int = 10
    ) -> Tuple[LeaderboardEntry, ...]:
        """
        Merge a freshly updated entry into a leaderboard.

        Any existing entry for the same player is replaced. The new entry goes
        ahead of players with an equal score. The result is sorted by score,
        highest first, and holds at most ``size`` entries.
        """
        merged = [entry] + [existing for existing in entries if existing.id != entry.id]
        merged.sort(key=lambda e: e.score, reverse=True)
        return tuple(merged[:max(size, 0)])

    # Reducer

    def reduce(self, state: QuizState, action: Any) -> QuizState:
        """
        Apply one action to a state and return the resulting state.

        Actions that do not apply to the current screen return ``state`` unchanged.
        """
        handler = self._handlers.get(type(action))
        if handler is None:
            raise ValueError(f"Unknown quiz action: {action!r}")
        return handler(state, action)

    def _on_begin(self, state: QuizState, action: Begin) -> QuizState:
        if state.screen != Screen.WELCOME:
            return state
        return replace(
            state,
            screen=Screen.CATEGORY,
            player_name=action.player_name,
            timer_duration=action.timer_duration,
            time_left=action.timer_duration,
            score=0,
            error_message=None,
            notice=None,
        )

    def _on_questions_loaded(self, state: QuizState, action: QuestionsLoaded) -> QuizState:
        if state.screen != Screen.CATEGORY:
            return state
        if not action.questions:
            return replace(state, category=action.category, questions=(), notice=NO_QUESTIONS_NOTICE)
        return replace(
            state,
            screen=Screen.QUIZ,
            category=action.category,
            questions=tuple(action.questions),
            current_index=0,
            score=0,
            selected_answer=None,
            is_answered=False,
            last_answer_correct=None,
            time_left=state.timer_duration,
            error_message=None,
            notice=None,
        )

    def _on_store_failed(self, state: QuizState, action: StoreFailed) -> QuizState:
        return replace(state, error_message=action.message)

    def _on_select_answer(self, state: QuizState, action: SelectAnswer) -> QuizState:
        if state.screen != Screen.QUIZ or state.is_answered or state.time_left <= 0:
            return state
        return replace(state, selected_answer=action.option)

    def _on_submit_answer(self, state: QuizState, action: SubmitAnswer = None) -> QuizState:
        question = state.current_question
        if question is None or state.is_answered:
            return state
        correct = question.is_correct(state.selected_answer)
        return replace(
            state,
            is_answered=True,
            last_answer_correct=correct,
            score=state.score + (1 if correct else 0),
        )

    def _on_tick(self, state: QuizState, action: Tick) -> QuizState:
        if (
            state.screen != Screen.QUIZ
            or state.is_answered
            or action.question_index != state.current_index
            or state.time_left <= 0
        ):
            return state
        state = replace(state, time_left=state.time_left - 1)
        if state.time_left == 0:
            return self._on_submit_answer(state)
        return state

    def _on_advance(self, state: QuizState, action: Advance) -> QuizState:
        if state.screen != Screen.QUIZ or not state.is_answered:
            return state
        if not state.is_last_question:
            return replace(
                state,
                current_index=state.current_index + 1,
                selected_answer=None,
                is_answered=False,
                last_answer_correct=None,
                time_left=state.timer_duration,
            )
        return replace(state, screen=Screen.RESULTS, time_left=state.timer_duration)

    def _on_leaderboard_updated(self, state: QuizState, action: LeaderboardUpdated) -> QuizState:
        return replace(state, leaderboard=tuple(action.entries))

    def _on_show_leaderboard(self, state: QuizState, action: ShowLeaderboard) -> QuizState:
        if state.screen == Screen.QUIZ:
            return state
        return replace(state, screen=Screen.LEADERBOARD, leaderboard=tuple(action.entries))

    def _on_reset(self, state: QuizState, action: Reset) -> QuizState:
        return replace(
            state,
            screen=Screen.CATEGORY,
            current_index=0,
            score=0,
            selected_answer=None,
            is_answered=False,
            last_answer_correct=None,
            time_left=state.timer_duration,
            error_message=None,
            notice=None,
        )

    def _on_cancel(self, state: QuizState, action: Cancel) -> QuizState:
        return replace(
            state,
            screen=Screen.WELCOME,
            questions=(),
            current_index=0,
            score=0,
            selected_answer=None,
            is_answered=False,
            last_answer_correct=None,
            time_left=state.timer_duration,
            error_message=None,
            notice=None,
        )

    def _on_dismiss_message(self, state: QuizState, action: DismissMessage) -> QuizState:
        return replace(state, error_message=None, notice=None)

    # Timers

    def _verify_timer_readiness(self, session_id: str) -> bool:
        """
        Verify no running timer exists for the session, dropping finished ones.

        A timer whose task is the caller's own task counts as finished.
        """
        timer = self._timers.get(session_id)
        if timer is None:
            return True
        if timer.is_running and timer._task is not _current_task():
            logger.warning(f"Timer readiness check failed: active timer exists for session {session_id}")
            return False
        del self._timers[session_id]
        TimerLifecycleLogger.log_timer_state_transition(
            session_id, "inactive_exists", "cleaned", "inactive timer removed"
        )
        return True

    async def start_question_timer(
        self,
        session_id: str,
        duration: int,
        tick_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> QuizTimer:
        """
        Start a countdown for the session's current question in the background.

        Any running timer for the session is cancelled first.

        Returns:
            The started timer
        """
        if not self._verify_timer_readiness(session_id):
            await self.cancel_timer(session_id)

        timer = QuizTimer(session_id)
        self._timers[session_id] = timer
        timer._task = asyncio.create_task(
            timer.start_countdown(duration, tick_callback, completion_callback)
        )
        timer._task.add_done_callback(lambda task: self._on_timer_done(session_id, timer, task))
        TimerLifecycleLogger.log_timer_created(session_id, duration)
        return timer

    def _on_timer_done(self, session_id: str, timer: QuizTimer, task: asyncio.Task) -> None:
        if self._timers.get(session_id) is timer:
            del self._timers[session_id]
        if not task.cancelled() and task.exception() is not None:
            TimerLifecycleLogger.log_timer_error(
                session_id, "execution_error", str(task.exception()), "timer_task_execution"
            )

    async def cancel_timer(self, session_id: str) -> bool:
        """
        Cancel the session's timer and wait for its task to finish.

        Returns:
            True if a timer was cancelled, False if there was none
        """
        timer = self._timers.pop(session_id, None)
        if timer is None:
            logger.debug(f"No active timer found for session {session_id}")
            return False

        timer.cancel()
        task = timer._task
        if task is not None and task is not _current_task() and not task.done():
            done, _ = await asyncio.wait({task}, timeout=self.CANCEL_TIMEOUT)
            if not done:
                TimerLifecycleLogger.log_timer_error(
                    session_id,
                    "cancellation_timeout",
                    f"Timer task did not finish within {self.CANCEL_TIMEOUT}s",
                    "cancel_timer"
                )
        return True

    async def cancel_all_timers(self) -> int:
        """Cancel every timer; used on shutdown."""
        session_ids = list(self._timers.keys())
        for session_id in session_ids:
            await self.cancel_timer(session_id)
        return len(session_ids)

    def get_timer_status(self, session_id: str) -> Optional[dict]:
        """
        Get the status of the session's timer.

        Returns:
            Dictionary with timer status, None if no timer
        """
        timer = self._timers.get(session_id)
        if timer is None:
            return None
        return {
            'remaining_time': timer.remaining_time,
            'is_cancelled': timer.is_cancelled,
            'is_running': timer.is_running,
        }

    def has_timer(self, session_id: str) -> bool:
        return session_id in self._timers
