"""
Row-level access policies for the persistence service.

Each collection maps an operation to a predicate ``(ctx, row, lookup)``.
``lookup(collection, record_id)`` reads a single row without applying any
policy, the way a security-definer helper would. An operation with no
predicate is denied to every caller except the service context.
"""
import logging
from typing import Any, Callable, Dict, Optional

from .models import RequestContext, Role

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Lookup = Callable[[str, Optional[str]], Optional[Row]]
Predicate = Callable[[RequestContext, Row, Lookup], bool]

SELECT = "select"
INSERT = "insert"
UPDATE = "update"
DELETE = "delete"


def has_role(ctx: RequestContext, role: Role, lookup: Lookup) -> bool:
    """Check the caller's role against the stored profile, not the token."""
    profile = lookup("profiles", ctx.user_id)
    return profile is not None and profile.get("role") == role.value


def caller_class(ctx: RequestContext, lookup: Lookup) -> Optional[str]:
    profile = lookup("profiles", ctx.user_id)
    return profile.get("class_label") if profile else None


def _own_profile(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    return row.get("id") == ctx.user_id


def _can_view_quiz(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    if row.get("created_by") == ctx.user_id:
        return True
    if not row.get("is_active"):
        return False
    # NULL never equals NULL
    label = caller_class(ctx, lookup)
    return label is not None and row.get("class_label") == label


def _can_create_quiz(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    return row.get("created_by") == ctx.user_id and has_role(ctx, Role.ADMIN, lookup)


def _owns_quiz(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    return row.get("created_by") == ctx.user_id and has_role(ctx, Role.ADMIN, lookup)


def _owns_quiz_id(ctx: RequestContext, quiz_id: Optional[str], lookup: Lookup) -> bool:
    quiz = lookup("quizzes", quiz_id)
    return quiz is not None and _owns_quiz(ctx, quiz, lookup)


def _can_view_question(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    quiz = lookup("quizzes", row.get("quiz_id"))
    return quiz is not None and _can_view_quiz(ctx, quiz, lookup)


def _manages_question(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    return _owns_quiz_id(ctx, row.get("quiz_id"), lookup)


def _own_attempt(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    return row.get("student_id") == ctx.user_id


def _can_view_attempt(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    return _own_attempt(ctx, row, lookup) or _owns_quiz_id(ctx, row.get("quiz_id"), lookup)


def _answers_own_attempt(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    attempt = lookup("quiz_attempts", row.get("attempt_id"))
    return attempt is not None and attempt.get("student_id") == ctx.user_id


def _can_view_answer(ctx: RequestContext, row: Row, lookup: Lookup) -> bool:
    attempt = lookup("quiz_attempts", row.get("attempt_id"))
    if attempt is None:
        return False
    return _can_view_attempt(ctx, attempt, lookup)


POLICIES: Dict[str, Dict[str, Predicate]] = {
    "profiles": {
        SELECT: _own_profile,
        INSERT: _own_profile,
        UPDATE: _own_profile,
    },
    "quizzes": {
        SELECT: _can_view_quiz,
        INSERT: _can_create_quiz,
        UPDATE: _owns_quiz,
        DELETE: _owns_quiz,
    },
    "questions": {
        SELECT: _can_view_question,
        INSERT: _manages_question,
        UPDATE: _manages_question,
        DELETE: _manages_question,
    },
    "quiz_attempts": {
        SELECT: _can_view_attempt,
        INSERT: _own_attempt,
        UPDATE: _own_attempt,
    },
    "student_answers": {
        SELECT: _can_view_answer,
        INSERT: _answers_own_attempt,
    },
    "users": {},
}


def is_allowed(ctx: RequestContext, collection: str, operation: str, row: Row, lookup: Lookup) -> bool:
    """
    Evaluate the policy for one row.

    Args:
        ctx: Caller context
        collection: Collection name
        operation: One of select/insert/update/delete
        row: Row being read or written
        lookup: Policy-free single row reader

    Returns:
        True if the caller may perform the operation on the row
    """
    if ctx.is_service:
        return True
    if ctx.user_id is None:
        return False

    predicate = POLICIES.get(collection, {}).get(operation)
    if predicate is None:
        return False
    return predicate(ctx, row, lookup)
