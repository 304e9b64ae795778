"""
Tests for countdown timer lifecycle: expiry, cancellation and replacement.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from cbt.quiz_engine import QuizEngine, QuizTimer, TimerLifecycleLogger
from tests.test_fixtures import AsyncTestHelpers


class TestQuizTimer(unittest.IsolatedAsyncioTestCase):
    """Test cases for a single countdown."""

    async def test_natural_expiry_fires_completion_once(self):
        timer = QuizTimer("attempt-1", tick_interval=0)
        on_expire = AsyncMock()
        on_tick = AsyncMock()

        await timer.start_countdown(5, on_expire, on_tick)

        on_expire.assert_awaited_once()
        self.assertEqual([call.args[0] for call in on_tick.await_args_list], [5, 4, 3, 2, 1])
        self.assertTrue(timer.is_expired)
        self.assertEqual(timer.remaining_time, 0)

    async def test_zero_duration_expires_immediately(self):
        timer = QuizTimer("attempt-1", tick_interval=0)
        on_expire = AsyncMock()

        await timer.start_countdown(0, on_expire)

        on_expire.assert_awaited_once()

    async def test_cancel_before_expiry_skips_completion(self):
        """Test that cancelling never fires the completion callback."""
        timer = QuizTimer("attempt-1", tick_interval=0)
        on_expire = AsyncMock()

        async def cancel_at_three(remaining):
            if remaining == 3:
                timer.cancel()

        await timer.start_countdown(10, on_expire, cancel_at_three)

        on_expire.assert_not_awaited()
        self.assertTrue(timer.is_cancelled)
        self.assertFalse(timer.is_expired)
        self.assertEqual(timer.remaining_time, 3)

    async def test_task_cancellation_propagates(self):
        timer = QuizTimer("attempt-1", tick_interval=1.0)
        on_expire = AsyncMock()
        task = asyncio.create_task(timer.start_countdown(60, on_expire))
        await asyncio.sleep(0)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        on_expire.assert_not_awaited()
        self.assertTrue(timer.is_cancelled)


class TestEngineTimers(unittest.IsolatedAsyncioTestCase):
    """Test cases for timer management keyed by attempt."""

    async def asyncSetUp(self):
        self.engine = QuizEngine(tick_interval=0)

    async def test_start_timer_runs_in_background_until_expiry(self):
        on_expire = AsyncMock()
        self.engine.start_timer("a1", 60, on_expire)

        self.assertIsNotNone(self.engine.get_timer_status("a1"))
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: on_expire.await_count == 1))

        await asyncio.sleep(0.01)
        on_expire.assert_awaited_once()
        self.assertIsNone(self.engine.get_timer_status("a1"))
        self.assertEqual(self.engine.active_timer_count, 0)

    async def test_cancel_timer(self):
        engine = QuizEngine(tick_interval=1.0)
        on_expire = AsyncMock()
        engine.start_timer("a1", 60, on_expire)
        await asyncio.sleep(0)

        self.assertTrue(await engine.cancel_timer("a1"))
        self.assertIsNone(engine.remaining_time("a1"))
        on_expire.assert_not_awaited()

    async def test_cancel_missing_timer(self):
        self.assertFalse(await self.engine.cancel_timer("nothing"))

    async def test_remaining_time_counts_down(self):
        engine = QuizEngine(tick_interval=1.0)
        engine.start_timer("a1", 90, AsyncMock())
        await asyncio.sleep(0)

        self.assertEqual(engine.remaining_time("a1"), 90)
        status = engine.get_timer_status("a1")
        self.assertFalse(status['is_cancelled'])
        self.assertFalse(status['is_expired'])
        await engine.cancel_all()

    async def test_full_duration_reported_before_first_tick(self):
        """Test that a just-started timer reports its whole duration."""
        engine = QuizEngine(tick_interval=1.0)
        timer = engine.start_timer("a1", 90, AsyncMock())

        self.assertEqual(timer.remaining_time, 90)
        self.assertEqual(engine.remaining_time("a1"), 90)
        self.assertEqual(engine.get_timer_status("a1")['remaining_time'], 90)
        await engine.cancel_all()

    async def test_restart_replaces_existing_timer(self):
        """Test that starting a timer under a used key cancels the old one."""
        engine = QuizEngine(tick_interval=1.0)
        first_expire = AsyncMock()
        first = engine.start_timer("a1", 60, first_expire)
        await asyncio.sleep(0)

        second = engine.start_timer("a1", 30, AsyncMock())
        await asyncio.sleep(0)

        self.assertTrue(first.is_cancelled)
        self.assertIsNot(first, second)
        self.assertEqual(engine.remaining_time("a1"), 30)
        self.assertEqual(engine.active_timer_count, 1)
        first_expire.assert_not_awaited()
        await engine.cancel_all()

    async def test_completion_callback_may_cancel_its_own_timer(self):
        """Test that an expiring timer's callback can cancel it without being interrupted."""
        finished = []

        async def on_expire():
            await self.engine.cancel_timer("a1")
            await asyncio.sleep(0)
            finished.append(True)

        self.engine.start_timer("a1", 3, on_expire)

        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: finished == [True]))

    async def test_cancel_all(self):
        engine = QuizEngine(tick_interval=1.0)
        for key in ("a1", "a2", "a3"):
            engine.start_timer(key, 60, AsyncMock())
        await asyncio.sleep(0)

        await engine.cancel_all()

        self.assertEqual(engine.active_timer_count, 0)

    async def test_lifecycle_events_logged(self):
        with patch.object(TimerLifecycleLogger, 'log_timer_start') as log_start, \
                patch.object(TimerLifecycleLogger, 'log_timer_completion') as log_completion:
            on_expire = AsyncMock()
            self.engine.start_timer("a1", 2, on_expire)
            await AsyncTestHelpers.wait_for(lambda: on_expire.await_count == 1)

        log_start.assert_called_once_with("a1", 2)
        log_completion.assert_called_once_with("a1", "natural_expiry", 2)

    async def test_failing_callback_is_logged(self):
        with patch.object(TimerLifecycleLogger, 'log_timer_error') as log_error:
            self.engine.start_timer("a1", 1, AsyncMock(side_effect=RuntimeError("boom")))
            await AsyncTestHelpers.wait_for(lambda: self.engine.active_timer_count == 0)
            await asyncio.sleep(0.01)

        self.assertTrue(log_error.called)


if __name__ == '__main__':
    unittest.main()
