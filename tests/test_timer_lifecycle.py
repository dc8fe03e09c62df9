"""
Unit tests for question timer lifecycle in QuizEngine.
Covers natural expiry, cancellation, replacement, and callbacks that
start or cancel timers from inside the running timer task.
"""
import unittest
import asyncio
import time
from unittest.mock import Mock, AsyncMock

from bible_quiz.quiz_engine import QuizEngine, QuizTimer, TimerLifecycleLogger
from tests.test_fixtures import async_test


class TestTimerReadiness(unittest.TestCase):
    """Test cases for timer readiness verification."""

    def setUp(self):
        self.engine = QuizEngine()
        self.session_id = "12345"

    def test_verify_timer_readiness_no_existing_timer(self):
        self.assertTrue(self.engine._verify_timer_readiness(self.session_id))

    def test_verify_timer_readiness_with_inactive_timer(self):
        timer = QuizTimer(self.session_id)
        timer._task = Mock()
        timer._task.done.return_value = True
        self.engine._timers[self.session_id] = timer

        self.assertTrue(self.engine._verify_timer_readiness(self.session_id))
        self.assertNotIn(self.session_id, self.engine._timers)

    def test_verify_timer_readiness_with_active_timer(self):
        timer = QuizTimer(self.session_id)
        timer._task = Mock()
        timer._task.done.return_value = False
        self.engine._timers[self.session_id] = timer

        self.assertFalse(self.engine._verify_timer_readiness(self.session_id))
        self.assertIn(self.session_id, self.engine._timers)

    def test_get_timer_status_without_timer(self):
        self.assertIsNone(self.engine.get_timer_status(self.session_id))
        self.assertFalse(self.engine.has_timer(self.session_id))


class TestTimerLifecycleLogger(unittest.TestCase):
    """Test cases for structured timer logging."""

    def test_created_event_carries_structured_fields(self):
        with self.assertLogs('bible_quiz.quiz_engine', level='INFO') as captured:
            TimerLifecycleLogger.log_timer_created("12345", 30)
        record = captured.records[0]
        self.assertEqual(record.event_type, 'timer_created')
        self.assertEqual(record.session_id, "12345")
        self.assertEqual(record.duration, 30)

    def test_error_event_logged_at_error_level(self):
        with self.assertLogs('bible_quiz.quiz_engine', level='ERROR') as captured:
            TimerLifecycleLogger.log_timer_error("12345", "boom", "details", "context")
        self.assertEqual(captured.records[0].event_type, 'timer_error')


class TestQuizTimerCountdown(unittest.TestCase):
    """Test cases for running countdowns."""

    @async_test
    async def test_countdown_ticks_then_completes(self):
        timer = QuizTimer("1")
        ticks = []
        completion = AsyncMock()

        async def on_tick(remaining):
            ticks.append(remaining)

        await timer.start_countdown(2, on_tick, completion)

        self.assertEqual(ticks, [1, 0])
        completion.assert_awaited_once()
        self.assertEqual(timer.remaining_time, 0)

    @async_test
    async def test_slow_tick_callback_does_not_stretch_countdown(self):
        timer = QuizTimer("1")
        ticks = []

        async def slow_tick(remaining):
            ticks.append(remaining)
            await asyncio.sleep(0.6)

        started = time.monotonic()
        await timer.start_countdown(3, slow_tick, AsyncMock())
        elapsed = time.monotonic() - started

        self.assertEqual(ticks, [2, 1, 0])
        # Three seconds plus the final callback
        self.assertLess(elapsed, 4.2)

    @async_test
    async def test_natural_expiry_unregisters_timer(self):
        engine = QuizEngine()
        completion = AsyncMock()
        timer = await engine.start_question_timer("1", 1, AsyncMock(), completion)
        self.assertTrue(engine.has_timer("1"))

        await asyncio.wait_for(timer._task, timeout=3)
        await asyncio.sleep(0)

        completion.assert_awaited_once()
        self.assertFalse(engine.has_timer("1"))

    @async_test
    async def test_cancel_timer_stops_countdown(self):
        engine = QuizEngine()
        completion = AsyncMock()
        timer = await engine.start_question_timer("1", 30, AsyncMock(), completion)
        await asyncio.sleep(0)

        self.assertTrue(await engine.cancel_timer("1"))

        self.assertTrue(timer._task.done())
        self.assertTrue(timer.is_cancelled)
        self.assertFalse(timer.is_running)
        self.assertFalse(engine.has_timer("1"))
        completion.assert_not_awaited()

    @async_test
    async def test_cancel_timer_without_timer(self):
        engine = QuizEngine()
        self.assertFalse(await engine.cancel_timer("missing"))

    @async_test
    async def test_starting_timer_replaces_running_one(self):
        engine = QuizEngine()
        first = await engine.start_question_timer("1", 30, AsyncMock(), AsyncMock())
        await asyncio.sleep(0)
        second = await engine.start_question_timer("1", 30, AsyncMock(), AsyncMock())

        self.assertTrue(first._task.done())
        self.assertIs(engine._timers["1"], second)
        self.assertTrue(second.is_running)

        await engine.cancel_all_timers()
        self.assertFalse(engine.has_timer("1"))

    @async_test
    async def test_completion_can_start_next_timer(self):
        """A timer started from an expiring timer's callback stays registered."""
        engine = QuizEngine()
        started = {}

        async def on_expire():
            started['next'] = await engine.start_question_timer("1", 30, AsyncMock(), AsyncMock())

        first = await engine.start_question_timer("1", 1, AsyncMock(), on_expire)
        await asyncio.wait_for(first._task, timeout=3)
        await asyncio.sleep(0)

        self.assertIs(engine._timers.get("1"), started['next'])
        self.assertTrue(started['next'].is_running)
        await engine.cancel_all_timers()

    @async_test
    async def test_completion_can_cancel_own_timer(self):
        """Cancelling from inside the timer task returns without waiting on itself."""
        engine = QuizEngine()
        outcome = {}

        async def on_expire():
            outcome['cancelled'] = await engine.cancel_timer("1")

        timer = await engine.start_question_timer("1", 1, AsyncMock(), on_expire)
        await asyncio.wait_for(timer._task, timeout=3)

        self.assertTrue(outcome['cancelled'])
        self.assertFalse(engine.has_timer("1"))

    @async_test
    async def test_timer_status_while_running(self):
        engine = QuizEngine()
        await engine.start_question_timer("1", 30, AsyncMock(), AsyncMock())
        await asyncio.sleep(0)

        status = engine.get_timer_status("1")
        self.assertEqual(status['remaining_time'], 30)
        self.assertTrue(status['is_running'])
        self.assertFalse(status['is_cancelled'])

        self.assertEqual(await engine.cancel_all_timers(), 1)
        self.assertIsNone(engine.get_timer_status("1"))


if __name__ == '__main__':
    unittest.main()
