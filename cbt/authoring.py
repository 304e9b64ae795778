"""
Quiz authoring: drafting a quiz with its questions and publishing it.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import PolicyViolation, RecordNotFound, ValidationError, WriteError
from .models import QuestionType, Quiz, RequestContext, TRUE_FALSE_OPTIONS

logger = logging.getLogger(__name__)

MCQ_OPTION_SLOTS = 4

PUBLISHED_NOTICE = "Quiz created successfully!"
PUBLISH_FAILED_NOTICE = "Failed to create quiz"
DELETED_NOTICE = "Test deleted successfully"
DELETE_FAILED_NOTICE = "Failed to delete test"


@dataclass
class QuestionDraft:
    """A question accepted into a draft but not yet stored."""
    question_text: str
    question_type: QuestionType
    correct_answer: str
    options: List[str] = field(default_factory=list)
    points: int = 1

    def to_row(self, quiz_id: str, position: int) -> Dict[str, Any]:
        return {
            "quiz_id": quiz_id,
            "question_text": self.question_text,
            "question_type": self.question_type,
            "options": list(self.options),
            "correct_answer": self.correct_answer,
            "points": self.points,
            "position": position,
        }


@dataclass
class QuizDraft:
    """
    Quiz metadata plus an ordered list of drafted questions.

    Nothing is written until ``publish`` is called.
    """
    title: str = ""
    subject: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: int = 30
    instructions: Optional[str] = None
    is_active: bool = True
    randomize_questions: bool = True
    randomize_options: bool = True
    class_label: Optional[str] = None
    questions: List[QuestionDraft] = field(default_factory=list)
    config_manager: ConfigManager = field(default_factory=ConfigManager, repr=False, compare=False)

    def add_question(self, question_text: str, question_type: QuestionType = QuestionType.MCQ,
                     correct_answer: str = "", options: Optional[List[str]] = None,
                     points: int = 1) -> QuestionDraft:
        """
        Validate a question and append it to the draft.

        True/false questions always get the options True and False;
        short-answer questions get none. Multiple-choice questions need
        every option slot filled.

        Raises:
            ValidationError: If the question is incomplete or its points are out of range
        """
        question_type = QuestionType(question_type)
        if not (question_text or "").strip() or not (correct_answer or "").strip():
            raise ValidationError("Please fill in question text and correct answer")

        if question_type == QuestionType.MCQ:
            options = list(options) if options is not None else [""] * MCQ_OPTION_SLOTS
            if not options or any(not (option or "").strip() for option in options):
                raise ValidationError("Please fill in all options for MCQ")
        elif question_type == QuestionType.TRUE_FALSE:
            options = list(TRUE_FALSE_OPTIONS)
        else:
            options = []

        error = self.config_manager.validate_points(points)
        if error:
            raise ValidationError(error)

        question = QuestionDraft(
            question_text=question_text,
            question_type=question_type,
            correct_answer=correct_answer,
            options=options,
            points=points,
        )
        self.questions.append(question)
        return question

    def remove_question(self, index: int) -> QuestionDraft:
        if not 0 <= index < len(self.questions):
            raise ValidationError(f"No drafted question at position {index}", "Question not found")
        return self.questions.pop(index)

    def validate(self) -> None:
        """Check the quiz metadata before anything is written."""
        if not (self.title or "").strip() or not self.questions:
            raise ValidationError("Please provide title and at least one question")
        error = self.config_manager.validate_duration_minutes(self.duration_minutes)
        if error:
            raise ValidationError(error)

    def quiz_row(self, created_by: str) -> Dict[str, Any]:
        return {
            "title": self.title.strip(),
            "subject": self.subject,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "instructions": self.instructions,
            "is_active": self.is_active,
            "randomize_questions": self.randomize_questions,
            "randomize_options": self.randomize_options,
            "class_label": self.class_label,
            "created_by": created_by,
        }

    async def publish(self, ctx: RequestContext, data_manager: DataManager) -> Quiz:
        """
        Store the quiz, then its questions as one batch.

        The two writes are separate: if the question batch fails the quiz
        row is left behind without questions.

        Returns:
            The stored quiz

        Raises:
            ValidationError: If the draft is incomplete
            PolicyViolation: If the caller may not create quizzes
            WriteError: If either write fails
        """
        self.validate()

        try:
            quiz = Quiz.from_row((await data_manager.insert(ctx, "quizzes", [self.quiz_row(ctx.user_id)]))[0])
        except PolicyViolation:
            raise
        except WriteError as e:
            raise WriteError(str(e), PUBLISH_FAILED_NOTICE) from e

        try:
            await data_manager.insert(
                ctx, "questions",
                [question.to_row(quiz.id, position) for position, question in enumerate(self.questions)]
            )
        except WriteError as e:
            logger.error(
                f"Quiz {quiz.id} stored without questions: {e}",
                extra={'event_type': 'quiz_orphaned', 'quiz_id': quiz.id, 'user_id': ctx.user_id}
            )
            raise WriteError(str(e), PUBLISH_FAILED_NOTICE) from e

        logger.info(
            f"Published quiz '{quiz.title}' with {len(self.questions)} questions",
            extra={
                'event_type': 'quiz_published',
                'quiz_id': quiz.id,
                'user_id': ctx.user_id,
                'question_count': len(self.questions),
            }
        )
        return quiz


async def delete_quiz(ctx: RequestContext, data_manager: DataManager, quiz_id: str) -> str:
    """
    Delete one of the caller's quizzes with its questions, attempts and answers.

    Returns:
        The notice to show

    Raises:
        RecordNotFound: If the caller owns no such quiz
    """
    try:
        deleted = await data_manager.delete(ctx, "quizzes", {"id": quiz_id})
    except WriteError as e:
        raise WriteError(str(e), DELETE_FAILED_NOTICE) from e

    if not deleted:
        raise RecordNotFound(f"No deletable quiz {quiz_id} for user {ctx.user_id}", DELETE_FAILED_NOTICE)

    logger.info(f"Deleted quiz {quiz_id}", extra={'event_type': 'quiz_deleted', 'quiz_id': quiz_id})
    return DELETED_NOTICE
