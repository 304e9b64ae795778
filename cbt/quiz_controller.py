"""
Attempt session controller for the CBT quiz server.
Manages in-progress quiz attempts: loading, answering, countdown and submission.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager, Transaction
from .errors import InvalidSessionStateError, SessionNotFoundError, ValidationError, WriteError
from .models import AttemptState, Question, Quiz, RequestContext, SubmitReason
from .quiz_engine import GradedSubmission, QuizEngine
from .schema import utcnow

SUBMIT_NOTICES = {
    SubmitReason.MANUAL: "Quiz submitted successfully!",
    SubmitReason.TIMEOUT: "Time's up! Your quiz has been automatically submitted.",
}
SUBMIT_FAILED_NOTICE = "Failed to submit quiz"


@dataclass
class AttemptSession:
    """Server-side state of one student's in-progress attempt."""
    attempt_id: str
    ctx: RequestContext
    quiz: Quiz
    questions: List[Question]
    duration_seconds: int
    started_at: datetime
    state: AttemptState = AttemptState.LOADING
    remaining_seconds: int = 0
    answers: Dict[str, str] = field(default_factory=dict)
    notice: Optional[str] = None
    submit_reason: Optional[SubmitReason] = None
    results_path: Optional[str] = None
    finished_at: Optional[datetime] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def question_ids(self) -> List[str]:
        return [question.id for question in self.questions]


class QuizController:
    """
    Orchestrates attempt sessions.

    Each session follows LOADING -> IN_PROGRESS -> SUBMITTING ->
    SUBMITTED or FAILED. A failed submission can be retried manually.
    """

    def __init__(self, data_manager: DataManager, config_manager: ConfigManager,
                 quiz_engine: Optional[QuizEngine] = None):
        """
        Initialize the quiz controller.

        Args:
            data_manager: Record store
            config_manager: Instance for managing configuration
            quiz_engine: Engine to use; built from configuration if None
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.config_manager = config_manager
        self.quiz_engine = quiz_engine or QuizEngine(tick_interval=config_manager.get_timer_tick_seconds())

        # Sessions mapped by attempt ID
        self._sessions: Dict[str, AttemptSession] = {}

        self.logger.info("QuizController initialized")

    def _transition(self, session: AttemptSession, to_state: AttemptState, reason: str = None) -> None:
        from_state = session.state
        session.state = to_state
        self.logger.info(
            f"Attempt {session.attempt_id}: {from_state.value} -> {to_state.value}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'attempt_state_transition',
                'attempt_id': session.attempt_id,
                'from_state': from_state.value,
                'to_state': to_state.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    async def load_quiz(self, ctx: RequestContext, quiz_id: str) -> AttemptSession:
        """
        Start an attempt: load the quiz, record the attempt and start the countdown.

        Args:
            ctx: Student context
            quiz_id: Quiz to attempt

        Returns:
            The registered session in IN_PROGRESS

        Raises:
            RecordNotFound: If the quiz does not exist or is not visible
            ValidationError: If the quiz has no questions
            FetchError, WriteError: If the store fails
        """
        quiz = Quiz.from_row(await self.data_manager.select_one(ctx, "quizzes", {"id": quiz_id}))
        question_rows = await self.data_manager.select(
            ctx, "questions", {"quiz_id": quiz_id}, order_by=["created_at", "position"]
        )
        questions = [Question.from_row(row) for row in question_rows]
        if not questions:
            raise ValidationError(f"Quiz {quiz_id} has no questions", "This quiz has no questions yet")

        served = self.quiz_engine.prepare_questions(quiz, questions)

        # The attempt exists before any answer is recorded
        attempt_row = (await self.data_manager.insert(
            ctx, "quiz_attempts", [{"quiz_id": quiz.id, "student_id": ctx.user_id}]
        ))[0]

        session = AttemptSession(
            attempt_id=attempt_row["id"],
            ctx=ctx,
            quiz=quiz,
            questions=served,
            duration_seconds=quiz.duration_seconds,
            started_at=attempt_row["started_at"],
            remaining_seconds=quiz.duration_seconds,
        )
        self._sessions[session.attempt_id] = session
        self._transition(session, AttemptState.IN_PROGRESS, "quiz loaded")

        self.quiz_engine.start_timer(
            session.attempt_id,
            session.duration_seconds,
            lambda: self._on_timeout(session.attempt_id),
            lambda remaining: self._on_tick(session, remaining)
        )

        self.logger.info(
            f"Started attempt {session.attempt_id} on quiz '{quiz.title}' "
            f"with {len(served)} questions, {quiz.duration_minutes} minutes",
            extra={
                'event_type': 'attempt_started',
                'attempt_id': session.attempt_id,
                'quiz_id': quiz.id,
                'student_id': ctx.user_id,
                'question_count': len(served),
                'timestamp': time.time()
            }
        )
        return session

    async def _on_tick(self, session: AttemptSession, remaining: int) -> None:
        session.remaining_seconds = remaining

    async def _on_timeout(self, attempt_id: str) -> None:
        session = self._sessions.get(attempt_id)
        if session is None or session.state != AttemptState.IN_PROGRESS:
            return
        session.remaining_seconds = 0
        try:
            await self.submit(session.ctx, attempt_id, SubmitReason.TIMEOUT)
        except InvalidSessionStateError:
            # A manual submit got there first
            self.logger.debug(f"Timeout for attempt {attempt_id} ignored; already submitting")

    def get_session(self, ctx: RequestContext, attempt_id: str) -> AttemptSession:
        """
        Get the caller's session for an attempt.

        Raises:
            SessionNotFoundError: If there is no such session or it belongs to someone else
        """
        session = self._sessions.get(attempt_id)
        if session is None or session.ctx.user_id != ctx.user_id:
            raise SessionNotFoundError(f"No session for attempt {attempt_id}")
        return session

    def remaining_time(self, session: AttemptSession) -> int:
        remaining = self.quiz_engine.remaining_time(session.attempt_id)
        return remaining if remaining is not None else session.remaining_seconds

    def record_answer(self, ctx: RequestContext, attempt_id: str, question_id: str, answer: str) -> AttemptSession:
        """
        Record (or overwrite) the answer to one served question. Nothing is persisted.

        Raises:
            SessionNotFoundError: If the caller has no such session
            InvalidSessionStateError: If the attempt is no longer in progress
            ValidationError: If the question is not part of the attempt
        """
        session = self.get_session(ctx, attempt_id)
        if session.state != AttemptState.IN_PROGRESS:
            raise InvalidSessionStateError(
                f"Cannot answer attempt {attempt_id} in state {session.state.value}"
            )
        if question_id not in session.question_ids:
            raise ValidationError(f"Question {question_id} is not part of attempt {attempt_id}",
                                  "That question is not part of this quiz")

        session.answers[question_id] = answer if answer is not None else ""
        self.logger.debug(f"Recorded answer for question {question_id} on attempt {attempt_id}")
        return session

    async def submit(self, ctx: RequestContext, attempt_id: str,
                     reason: SubmitReason = SubmitReason.MANUAL) -> AttemptSession:
        """
        Grade every served question and store the answers and totals atomically.

        Args:
            ctx: Student context
            attempt_id: Attempt to submit
            reason: Manual submit or timer expiry

        Returns:
            The session in SUBMITTED or FAILED

        Raises:
            SessionNotFoundError: If the caller has no such session
            InvalidSessionStateError: If the attempt is already submitting or submitted
        """
        session = self.get_session(ctx, attempt_id)

        allowed = {AttemptState.IN_PROGRESS}
        if reason == SubmitReason.MANUAL:
            allowed.add(AttemptState.FAILED)
        if session.lock.locked() or session.state not in allowed:
            raise InvalidSessionStateError(
                f"Cannot submit attempt {attempt_id} in state {session.state.value}",
                "This quiz has already been submitted"
            )

        async with session.lock:
            if session.state == AttemptState.IN_PROGRESS:
                session.remaining_seconds = self.remaining_time(session)
            self._transition(session, AttemptState.SUBMITTING, reason.value)
            await self.quiz_engine.cancel_timer(attempt_id)

            graded = self.quiz_engine.score_answers(attempt_id, session.questions, session.answers)
            time_taken = session.duration_seconds - session.remaining_seconds
            submitted_at = utcnow()

            try:
                await self.data_manager.transaction(
                    ctx,
                    lambda tx: self._store_submission(tx, attempt_id, graded, submitted_at, time_taken),
                    label="submit_attempt"
                )
            except WriteError as e:
                session.notice = SUBMIT_FAILED_NOTICE
                session.finished_at = utcnow()
                self._transition(session, AttemptState.FAILED, str(e))
                self.logger.error(
                    f"Failed to submit attempt {attempt_id}: {e}",
                    extra={
                        'event_type': 'attempt_submit_failed',
                        'attempt_id': attempt_id,
                        'reason': reason.value,
                        'timestamp': time.time()
                    }
                )
                return session

            session.submit_reason = reason
            session.notice = SUBMIT_NOTICES[reason]
            session.results_path = f"/results/{attempt_id}"
            session.finished_at = submitted_at
            self._transition(session, AttemptState.SUBMITTED, reason.value)
            self.logger.info(
                f"Submitted attempt {attempt_id}: {graded.score}/{graded.total_points} in {time_taken}s",
                extra={
                    'event_type': 'attempt_submitted',
                    'attempt_id': attempt_id,
                    'reason': reason.value,
                    'score': graded.score,
                    'total_points': graded.total_points,
                    'time_taken_seconds': time_taken,
                    'timestamp': time.time()
                }
            )
            return session

    @staticmethod
    def _store_submission(tx: Transaction, attempt_id: str, graded: GradedSubmission,
                          submitted_at: datetime, time_taken: int) -> None:
        tx.insert("student_answers", [answer.to_row() for answer in graded.answers])
        updated = tx.update(
            "quiz_attempts",
            {
                "submitted_at": submitted_at,
                "score": graded.score,
                "total_points": graded.total_points,
                "time_taken_seconds": time_taken,
            },
            {"id": attempt_id}
        )
        if not updated:
            raise WriteError(f"Attempt {attempt_id} could not be updated")

    async def abandon(self, ctx: RequestContext, attempt_id: str) -> bool:
        """
        Tear down a session without submitting it.

        The stored attempt keeps no submit time.

        Returns:
            True if the timer was still running
        """
        session = self.get_session(ctx, attempt_id)
        timer_cancelled = await self.quiz_engine.cancel_timer(attempt_id)
        # A concurrent abandon may already have removed it
        self._sessions.pop(attempt_id, None)
        self.logger.info(
            f"Abandoned attempt {attempt_id} in state {session.state.value}, timer cancelled: {timer_cancelled}",
            extra={
                'event_type': 'attempt_abandoned',
                'attempt_id': attempt_id,
                'state': session.state.value,
                'timer_cancelled': timer_cancelled,
                'timestamp': time.time()
            }
        )
        return timer_cancelled

    def cleanup_finished_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Forget submitted or failed sessions finished longer ago than the
        retention window. A failed session that is retried restarts its window.

        Returns:
            Number of sessions cleaned up
        """
        now = now or utcnow()
        retention = timedelta(minutes=self.config_manager.get_session_retention_minutes())
        finished = [
            attempt_id for attempt_id, session in self._sessions.items()
            if session.state in (AttemptState.SUBMITTED, AttemptState.FAILED)
            and session.finished_at is not None
            and now - session.finished_at >= retention
        ]
        for attempt_id in finished:
            del self._sessions[attempt_id]

        if finished:
            self.logger.info(f"Cleaned up {len(finished)} finished sessions")
        return len(finished)

    def get_all_active_sessions(self) -> Dict[str, Dict[str, Any]]:
        """Summary of every session that has not been submitted yet."""
        return {
            attempt_id: {
                'quiz_id': session.quiz.id,
                'student_id': session.ctx.user_id,
                'state': session.state.value,
                'remaining_seconds': self.remaining_time(session),
            }
            for attempt_id, session in self._sessions.items()
            if session.state != AttemptState.SUBMITTED
        }

    async def shutdown(self) -> None:
        """Cancel all timers and forget every session."""
        await self.quiz_engine.cancel_all()
        self._sessions.clear()
        self.logger.info("QuizController shut down")
