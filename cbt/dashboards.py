"""
Admin and student dashboard data.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .data_manager import DataManager
from .models import Attempt, Quiz, QuizStats, RequestContext
from .results import percentage


@dataclass
class AdminQuizSummary:
    quiz: Quiz
    stats: QuizStats


@dataclass
class StudentQuizSummary:
    quiz: Quiz
    attempted: bool = False
    score: Optional[str] = None


def compute_quiz_stats(attempt_rows: Iterable[Dict[str, Any]]) -> QuizStats:
    """
    Attempt count, mean and best percentage over submitted attempts.

    Args:
        attempt_rows: Attempt rows of one quiz; unsubmitted ones are ignored

    Returns:
        QuizStats, all zeros when nothing was submitted
    """
    scores = [
        percentage(row.get("score"), row.get("total_points"))
        for row in attempt_rows
        if row.get("submitted_at") is not None
    ]
    if not scores:
        return QuizStats()
    return QuizStats(
        attempts=len(scores),
        avg_score=sum(scores) / len(scores),
        highest_score=max(scores),
    )


async def admin_dashboard(ctx: RequestContext, data_manager: DataManager) -> List[AdminQuizSummary]:
    """The caller's quizzes, newest first, each with its attempt statistics."""
    quiz_rows = await data_manager.select(
        ctx, "quizzes", {"created_by": ctx.user_id}, order_by="created_at", descending=True
    )
    summaries = []
    for row in quiz_rows:
        attempts = await data_manager.select(ctx, "quiz_attempts", {"quiz_id": row["id"]})
        summaries.append(AdminQuizSummary(quiz=Quiz.from_row(row), stats=compute_quiz_stats(attempts)))
    return summaries


async def student_dashboard(ctx: RequestContext, data_manager: DataManager) -> List[StudentQuizSummary]:
    """
    Quizzes open to the student, newest first.

    A quiz is flagged attempted once the student has a submitted attempt on
    it; the score shown is from the latest one.
    """
    quiz_rows = await data_manager.select(
        ctx, "quizzes", {"is_active": True}, order_by="created_at", descending=True
    )
    attempts = [
        Attempt.from_row(row)
        for row in await data_manager.select(ctx, "quiz_attempts", {"student_id": ctx.user_id})
    ]
    latest: Dict[str, Attempt] = {}
    for attempt in attempts:
        if not attempt.is_submitted:
            continue
        current = latest.get(attempt.quiz_id)
        if current is None or attempt.submitted_at > current.submitted_at:
            latest[attempt.quiz_id] = attempt

    summaries = []
    for row in quiz_rows:
        summary = StudentQuizSummary(quiz=Quiz.from_row(row))
        attempt = latest.get(row["id"])
        if attempt is not None:
            summary.attempted = True
            summary.score = f"{attempt.score}/{attempt.total_points}"
        summaries.append(summary)
    return summaries
