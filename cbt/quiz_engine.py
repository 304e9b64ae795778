"""
Quiz engine core logic for the CBT quiz server.
Handles question ordering, option shuffling, grading and countdown timing.
"""
import asyncio
import dataclasses
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .models import Question, QuestionType, Quiz, StudentAnswer

# Set up logger for timer operations
logger = logging.getLogger(__name__)

T = TypeVar("T")
TickCallback = Callable[[int], Awaitable[Any]]
ExpireCallback = Callable[[], Awaitable[Any]]


def normalize_answer(value: Optional[str]) -> str:
    """Canonical form used for answer comparison."""
    return (value or "").strip().lower()


def grade(question: Question, submitted_answer: Optional[str]) -> Tuple[bool, int]:
    """
    Grade one answer.

    Comparison is exact string equality after trimming whitespace and
    ignoring case, for every question type. There is no partial credit.

    Args:
        question: Question being answered
        submitted_answer: Student's answer, None if never answered

    Returns:
        Tuple of (is_correct, points_earned)
    """
    is_correct = normalize_answer(submitted_answer) == normalize_answer(question.correct_answer)
    return is_correct, question.points if is_correct else 0


@dataclass
class GradedSubmission:
    """Graded answers for every served question plus the totals."""
    answers: List[StudentAnswer] = field(default_factory=list)
    score: int = 0
    total_points: int = 0


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(timer_key: str, duration: int) -> None:
        """Log timer countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Attempt {timer_key}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'timer_key': timer_key,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(timer_key: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 60 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Attempt {timer_key}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'timer_key': timer_key,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(timer_key: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Attempt {timer_key}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'timer_key': timer_key,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(timer_key: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.info(
            f"Timer lifecycle: STATE_TRANSITION - Attempt {timer_key}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'timer_key': timer_key,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(timer_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Attempt {timer_key}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'timer_key': timer_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Counts down whole seconds for one attempt."""

    def __init__(self, timer_key: str, tick_interval: float = 1.0, duration: int = 0):
        """
        Initialize the timer.

        Args:
            timer_key: Identifier used in logs and by the engine registry
            tick_interval: Real seconds slept per counted second
            duration: Seconds reported as remaining until the countdown starts
        """
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False
        self._is_expired = False
        self._timer_key = timer_key
        self._tick_interval = tick_interval

    async def start_countdown(
        self,
        duration: int,
        completion_callback: ExpireCallback,
        update_callback: Optional[TickCallback] = None
    ) -> None:
        """
        Run the countdown, calling update_callback each second and
        completion_callback once when time runs out.

        Args:
            duration: Countdown length in seconds
            completion_callback: Awaited on natural expiry only
            update_callback: Awaited with the remaining seconds on every tick
        """
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        TimerLifecycleLogger.log_timer_start(self._timer_key, duration)

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                TimerLifecycleLogger.log_timer_update(
                    self._timer_key,
                    self._remaining_time,
                    self._total_duration
                )
                if update_callback is not None:
                    await update_callback(self._remaining_time)
                await asyncio.sleep(self._tick_interval)
                if not self._is_cancelled:
                    self._remaining_time -= 1

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._timer_key, "cancelled", self._total_duration)
                return

            self._is_expired = True
            TimerLifecycleLogger.log_timer_completion(self._timer_key, "natural_expiry", self._total_duration)
            await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._timer_key, "asyncio_cancelled", self._total_duration)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._timer_key,
                "countdown_execution_error",
                str(e),
                "start_countdown"
            )
            raise

    def cancel(self) -> None:
        """Stop the countdown without firing the completion callback."""
        if self._is_expired:
            return
        TimerLifecycleLogger.log_timer_state_transition(
            self._timer_key,
            "running",
            "cancelled",
            "cancel requested"
        )
        self._is_cancelled = True

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def is_cancelled(self) -> bool:
        """Check if timer is cancelled."""
        return self._is_cancelled

    @property
    def is_expired(self) -> bool:
        """Check if the countdown reached zero."""
        return self._is_expired

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time


class QuizEngine:
    """Core quiz engine that handles question ordering, grading and timing."""

    def __init__(self, rng: Optional[random.Random] = None, tick_interval: float = 1.0):
        """
        Initialize the quiz engine.

        Args:
            rng: Random source used for shuffling
            tick_interval: Real seconds per counted timer second
        """
        self._rng = rng or random.Random()
        self._tick_interval = tick_interval
        self._timers: Dict[str, QuizTimer] = {}  # Attempt ID -> Timer mapping

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """
        Return a uniformly shuffled copy of items (Fisher-Yates).

        Args:
            items: Sequence to shuffle

        Returns:
            New list in random order
        """
        shuffled = list(items)
        self._rng.shuffle(shuffled)
        return shuffled

    def prepare_questions(self, quiz: Quiz, questions: Sequence[Question]) -> List[Question]:
        """
        Build the question sequence served for one attempt.

        Question order is shuffled when the quiz randomizes questions; the
        options of each multiple-choice question are shuffled independently
        when it randomizes options. Stored questions are never modified.

        Args:
            quiz: Quiz whose flags apply
            questions: Questions in stored order

        Returns:
            Served question sequence
        """
        served = list(questions)

        if quiz.randomize_questions:
            served = self.shuffle(served)

        if quiz.randomize_options:
            served = [
                dataclasses.replace(question, options=self.shuffle(question.options))
                if question.question_type == QuestionType.MCQ else question
                for question in served
            ]

        return served

    def score_answers(
        self,
        attempt_id: str,
        questions: Sequence[Question],
        answers: Mapping[str, str]
    ) -> GradedSubmission:
        """
        Grade every served question against the recorded answers.

        Unanswered questions are recorded as the empty string and earn
        nothing.

        Args:
            attempt_id: Attempt the answers belong to
            questions: Served question sequence
            answers: Question ID -> answer text

        Returns:
            GradedSubmission with one answer per question
        """
        result = GradedSubmission()
        for question in questions:
            submitted = answers.get(question.id, "")
            is_correct, points_earned = grade(question, submitted)
            result.answers.append(StudentAnswer(
                attempt_id=attempt_id,
                question_id=question.id,
                student_answer=submitted,
                is_correct=is_correct,
                points_earned=points_earned,
            ))
            result.score += points_earned
            result.total_points += question.points
        return result

    def start_timer(
        self,
        timer_key: str,
        duration: int,
        on_expire: ExpireCallback,
        on_tick: Optional[TickCallback] = None
    ) -> QuizTimer:
        """
        Start a background countdown for an attempt.

        An existing timer under the same key is cancelled first. Must be
        called from a running event loop.

        Args:
            timer_key: Attempt identifier
            duration: Countdown length in seconds
            on_expire: Awaited once when the countdown reaches zero
            on_tick: Awaited with the remaining seconds on every tick

        Returns:
            The running QuizTimer
        """
        existing = self._timers.pop(timer_key, None)
        if existing is not None:
            TimerLifecycleLogger.log_timer_state_transition(
                timer_key,
                "active",
                "replaced",
                "new timer requested for the same attempt"
            )
            self._stop(existing)

        timer = QuizTimer(timer_key, self._tick_interval, duration)
        self._timers[timer_key] = timer
        timer._task = asyncio.create_task(timer.start_countdown(duration, on_expire, on_tick))
        timer._task.add_done_callback(lambda task: self._on_timer_done(timer_key, timer, task))
        return timer

    def _on_timer_done(self, timer_key: str, timer: QuizTimer, task: asyncio.Task) -> None:
        if self._timers.get(timer_key) is timer:
            del self._timers[timer_key]
        if not task.cancelled() and task.exception() is not None:
            TimerLifecycleLogger.log_timer_error(
                timer_key,
                "task_failed",
                str(task.exception()),
                "timer_task_execution"
            )

    @staticmethod
    def _stop(timer: QuizTimer) -> Optional[asyncio.Task]:
        timer.cancel()
        task = timer.task
        # An expiring timer may cancel itself from its own completion callback
        if task is None or task.done() or task is asyncio.current_task() or timer.is_expired:
            return None
        task.cancel()
        return task

    async def cancel_timer(self, timer_key: str) -> bool:
        """
        Cancel the timer for an attempt and wait for its task to finish.

        Args:
            timer_key: Attempt identifier

        Returns:
            True if a timer was cancelled, False if no active timer
        """
        timer = self._timers.pop(timer_key, None)
        if timer is None:
            logger.debug(
                f"No active timer found for attempt {timer_key}",
                extra={
                    'event_type': 'timer_cancel_no_timer',
                    'timer_key': timer_key,
                    'timestamp': time.time()
                }
            )
            return False

        task = self._stop(timer)
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                TimerLifecycleLogger.log_timer_error(timer_key, "cleanup_exception", str(e), "cancel_timer")
        return True

    async def cancel_all(self) -> None:
        """Cancel every running timer."""
        for timer_key in list(self._timers):
            await self.cancel_timer(timer_key)

    def remaining_time(self, timer_key: str) -> Optional[int]:
        timer = self._timers.get(timer_key)
        return timer.remaining_time if timer is not None else None

    def get_timer_status(self, timer_key: str) -> Optional[dict]:
        """
        Get the status of a timer for a specific attempt.

        Args:
            timer_key: Attempt identifier

        Returns:
            Dictionary with timer status or None if no active timer
        """
        if timer_key in self._timers:
            timer = self._timers[timer_key]
            return {
                'remaining_time': timer.remaining_time,
                'is_cancelled': timer.is_cancelled,
                'is_expired': timer.is_expired
            }
        return None

    @property
    def active_timer_count(self) -> int:
        return len(self._timers)
