"""
Results of a submitted attempt, answer by answer.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .data_manager import DataManager
from .errors import RecordNotFound
from .models import Attempt, Question, RequestContext, StudentAnswer


def percentage(score: Optional[int], total_points: Optional[int]) -> float:
    """Score as a percentage of the total, 0 when there is nothing to score."""
    if not total_points:
        return 0.0
    return 100.0 * (score or 0) / total_points


def format_duration(seconds: Optional[int]) -> str:
    """Format seconds as m:ss."""
    seconds = max(seconds or 0, 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


@dataclass
class AnswerReview:
    question_id: str
    student_answer: str
    is_correct: bool
    points_earned: int
    question_text: Optional[str] = None
    question_type: Optional[str] = None
    options: List[str] = field(default_factory=list)
    correct_answer: Optional[str] = None


@dataclass
class AttemptResult:
    """Everything the results page shows for one attempt."""
    attempt_id: str
    quiz_id: str
    quiz_title: Optional[str]
    score: int
    total_points: int
    percentage: float
    correct_count: int
    time_taken_seconds: int
    time_taken: str
    submitted_at: Optional[datetime]
    answers: List[AnswerReview] = field(default_factory=list)


async def get_result(ctx: RequestContext, data_manager: DataManager, attempt_id: str) -> AttemptResult:
    """
    Load a submitted attempt with its graded answers.

    Answers come back in the order they were stored, which is the order the
    questions were served.

    Raises:
        RecordNotFound: If the attempt is missing, invisible, or not submitted
    """
    attempt = Attempt.from_row(await data_manager.select_one(ctx, "quiz_attempts", {"id": attempt_id}))
    if not attempt.is_submitted:
        raise RecordNotFound(f"Attempt {attempt_id} has not been submitted", "Results not found")

    quizzes = await data_manager.select(ctx, "quizzes", {"id": attempt.quiz_id}, limit=1)
    questions = {
        row["id"]: Question.from_row(row)
        for row in await data_manager.select(ctx, "questions", {"quiz_id": attempt.quiz_id})
    }
    answers = [
        StudentAnswer.from_row(row)
        for row in await data_manager.select(ctx, "student_answers", {"attempt_id": attempt_id}, order_by="answered_at")
    ]

    def position(answer: StudentAnswer) -> int:
        question = questions.get(answer.question_id)
        return question.position if question else 0

    answers.sort(key=lambda answer: (answer.answered_at, position(answer)))

    reviews = []
    for answer in answers:
        review = AnswerReview(
            question_id=answer.question_id,
            student_answer=answer.student_answer,
            is_correct=answer.is_correct,
            points_earned=answer.points_earned,
        )
        question = questions.get(answer.question_id)
        if question is not None:
            review.question_text = question.question_text
            review.question_type = question.question_type.value
            review.options = list(question.options)
            review.correct_answer = question.correct_answer
        reviews.append(review)

    return AttemptResult(
        attempt_id=attempt.id,
        quiz_id=attempt.quiz_id,
        quiz_title=quizzes[0]["title"] if quizzes else None,
        score=attempt.score or 0,
        total_points=attempt.total_points or 0,
        percentage=round(percentage(attempt.score, attempt.total_points), 1),
        correct_count=sum(1 for answer in answers if answer.is_correct),
        time_taken_seconds=attempt.time_taken_seconds or 0,
        time_taken=format_duration(attempt.time_taken_seconds),
        submitted_at=attempt.submitted_at,
        answers=reviews,
    )
