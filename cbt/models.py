"""
Core data models for the CBT quiz server.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    """Role stored on a profile."""
    STUDENT = "student"
    ADMIN = "admin"


class QuestionType(str, Enum):
    """Supported question kinds."""
    MCQ = "mcq"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class SubmitReason(str, Enum):
    """Why an attempt is being submitted."""
    MANUAL = "manual"
    TIMEOUT = "timeout"


class AttemptState(str, Enum):
    """Client-visible lifecycle of one attempt."""
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


TRUE_FALSE_OPTIONS = ["True", "False"]


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of the caller, passed explicitly into every operation that
    needs authorization.
    """
    user_id: Optional[str]
    role: Optional[Role] = None
    class_label: Optional[str] = None
    is_service: bool = False

    @classmethod
    def service(cls) -> "RequestContext":
        """Privileged context that bypasses row-level policies."""
        return cls(user_id=None, role=None, is_service=True)


@dataclass
class Profile:
    """Represents a registered user's public profile."""
    id: str
    full_name: str
    role: Role
    class_label: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(
            id=row["id"],
            full_name=row["full_name"],
            role=Role(row["role"]),
            class_label=row.get("class_label"),
            created_at=row.get("created_at"),
        )


@dataclass
class Quiz:
    """Represents a quiz definition authored by an admin."""
    id: str
    title: str
    duration_minutes: int
    created_by: str
    subject: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    is_active: bool = True
    randomize_questions: bool = True
    randomize_options: bool = True
    class_label: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Quiz":
        return cls(
            id=row["id"],
            title=row["title"],
            duration_minutes=row["duration_minutes"],
            created_by=row["created_by"],
            subject=row.get("subject"),
            description=row.get("description"),
            instructions=row.get("instructions"),
            is_active=bool(row.get("is_active", True)),
            randomize_questions=bool(row.get("randomize_questions", True)),
            randomize_options=bool(row.get("randomize_options", True)),
            class_label=row.get("class_label"),
            created_at=row.get("created_at"),
        )


@dataclass
class Question:
    """Represents a single quiz question."""
    id: str
    quiz_id: str
    question_text: str
    question_type: QuestionType
    correct_answer: str
    options: List[str] = field(default_factory=list)
    points: int = 1
    position: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Question":
        options = row.get("options")
        return cls(
            id=row["id"],
            quiz_id=row["quiz_id"],
            question_text=row["question_text"],
            question_type=QuestionType(row["question_type"]),
            correct_answer=row["correct_answer"],
            options=list(options) if isinstance(options, list) else [],
            points=row.get("points") or 1,
            position=row.get("position") or 0,
            created_at=row.get("created_at"),
        )


@dataclass
class Attempt:
    """One student's timed session against one quiz."""
    id: str
    quiz_id: str
    student_id: str
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    score: Optional[int] = None
    total_points: Optional[int] = None
    time_taken_seconds: Optional[int] = None

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Attempt":
        return cls(
            id=row["id"],
            quiz_id=row["quiz_id"],
            student_id=row["student_id"],
            started_at=row.get("started_at"),
            submitted_at=row.get("submitted_at"),
            score=row.get("score"),
            total_points=row.get("total_points"),
            time_taken_seconds=row.get("time_taken_seconds"),
        )


@dataclass
class StudentAnswer:
    """A graded answer to one question within an attempt."""
    attempt_id: str
    question_id: str
    student_answer: str
    is_correct: bool
    points_earned: int
    id: Optional[str] = None
    answered_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "question_id": self.question_id,
            "student_answer": self.student_answer,
            "is_correct": self.is_correct,
            "points_earned": self.points_earned,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StudentAnswer":
        return cls(
            id=row.get("id"),
            attempt_id=row["attempt_id"],
            question_id=row["question_id"],
            student_answer=row.get("student_answer") or "",
            is_correct=bool(row.get("is_correct")),
            points_earned=row.get("points_earned") or 0,
            answered_at=row.get("answered_at"),
        )


@dataclass
class QuizStats:
    """Aggregate results for one quiz."""
    attempts: int = 0
    avg_score: float = 0.0
    highest_score: float = 0.0
