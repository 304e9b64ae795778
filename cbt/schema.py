"""
Table definitions for the records kept by the persistence service.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Credentials live apart from profiles; no policy grants access to them.
users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

profiles = Table(
    "profiles",
    metadata,
    Column("id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("full_name", Text, nullable=False, default="User"),
    Column("role", String(16), nullable=False, default="student"),
    Column("class_label", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

quizzes = Table(
    "quizzes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", Text, nullable=False),
    Column("subject", Text),
    Column("description", Text),
    Column("duration_minutes", Integer, nullable=False),
    Column("instructions", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("randomize_questions", Boolean, nullable=False, default=True),
    Column("randomize_options", Boolean, nullable=False, default=True),
    Column("created_by", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("class_label", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

questions = Table(
    "questions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("quiz_id", String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("question_text", Text, nullable=False),
    Column("question_type", String(16), nullable=False),
    Column("options", JSON),
    Column("correct_answer", Text, nullable=False),
    Column("points", Integer, nullable=False, default=1),
    Column("position", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

quiz_attempts = Table(
    "quiz_attempts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("quiz_id", String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("student_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("submitted_at", DateTime(timezone=True)),
    Column("score", Integer),
    Column("total_points", Integer),
    Column("time_taken_seconds", Integer),
    UniqueConstraint("quiz_id", "student_id", "started_at"),
)

student_answers = Table(
    "student_answers",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("attempt_id", String(36), ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("question_id", String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False),
    Column("student_answer", Text),
    Column("is_correct", Boolean),
    Column("points_earned", Integer, default=0),
    Column("answered_at", DateTime(timezone=True), nullable=False),
)

COLLECTIONS = {
    table.name: table
    for table in (users, profiles, quizzes, questions, quiz_attempts, student_answers)
}

# Columns stamped with the current time when a row is created
CREATED_TIMESTAMPS = {
    "users": ("created_at",),
    "profiles": ("created_at", "updated_at"),
    "quizzes": ("created_at", "updated_at"),
    "questions": ("created_at",),
    "quiz_attempts": ("started_at",),
    "student_answers": ("answered_at",),
}

# Columns refreshed on every update
UPDATED_TIMESTAMPS = {
    "profiles": ("updated_at",),
    "quizzes": ("updated_at",),
}
