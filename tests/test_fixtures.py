"""
Test fixtures and sample data for CBT quiz server tests.
"""
import asyncio
import random
from typing import Any, Dict, List, Optional

from cbt.config_manager import ConfigManager
from cbt.data_manager import DataManager
from cbt.models import Question, QuestionType, Quiz, RequestContext, Role
from cbt.quiz_controller import QuizController
from cbt.quiz_engine import QuizEngine
from cbt.schema import new_id


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    __test__ = False

    @staticmethod
    def create_data_manager() -> DataManager:
        """In-memory store with the schema created."""
        data_manager = DataManager("sqlite://")
        data_manager.create_schema()
        return data_manager

    @staticmethod
    def create_sample_quiz(quiz_id: str = "quiz-1", **overrides) -> Quiz:
        values = dict(
            id=quiz_id,
            title="General Knowledge",
            duration_minutes=1,
            created_by="admin-1",
            subject="GK",
            randomize_questions=False,
            randomize_options=False,
            class_label="JSS 1",
        )
        values.update(overrides)
        return Quiz(**values)

    @staticmethod
    def create_sample_questions(quiz_id: str = "quiz-1") -> List[Question]:
        """Three questions worth one point each, one of every type."""
        return [
            Question(
                id="q1", quiz_id=quiz_id, question_text="What is 2+2?",
                question_type=QuestionType.MCQ, correct_answer="4",
                options=["3", "4", "5", "6"], points=1, position=0,
            ),
            Question(
                id="q2", quiz_id=quiz_id, question_text="The sky is blue.",
                question_type=QuestionType.TRUE_FALSE, correct_answer="True",
                options=["True", "False"], points=1, position=1,
            ),
            Question(
                id="q3", quiz_id=quiz_id, question_text="Capital of France?",
                question_type=QuestionType.SHORT_ANSWER, correct_answer="Paris",
                points=1, position=2,
            ),
        ]

    @staticmethod
    def sample_question_rows() -> List[Dict[str, Any]]:
        """Question rows ready for insertion; quiz_id is added by the caller."""
        return [
            {"question_text": "What is 2+2?", "question_type": "mcq",
             "options": ["3", "4", "5", "6"], "correct_answer": "4", "points": 1, "position": 0},
            {"question_text": "The sky is blue.", "question_type": "true_false",
             "options": ["True", "False"], "correct_answer": "True", "points": 1, "position": 1},
            {"question_text": "Capital of France?", "question_type": "short_answer",
             "options": [], "correct_answer": "Paris", "points": 1, "position": 2},
        ]

    @staticmethod
    def create_engine(seed: int = 42, tick_interval: float = 1.0) -> QuizEngine:
        return QuizEngine(rng=random.Random(seed), tick_interval=tick_interval)

    @staticmethod
    def create_controller(data_manager: DataManager, tick_interval: float = 1.0,
                          config_manager: Optional[ConfigManager] = None) -> QuizController:
        config_manager = config_manager or ConfigManager()
        engine = TestFixtures.create_engine(tick_interval=tick_interval)
        return QuizController(data_manager, config_manager, engine)


class SeededStore:
    """
    An in-memory store seeded with one admin, two students and one quiz.

    The first student is in the quiz's class; the second is not.
    """

    __test__ = False

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.admin = RequestContext(user_id=new_id(), role=Role.ADMIN)
        self.student = RequestContext(user_id=new_id(), role=Role.STUDENT, class_label="JSS 1")
        self.other_student = RequestContext(user_id=new_id(), role=Role.STUDENT, class_label="SS 2")
        self.quiz_id: Optional[str] = None

    async def add_user(self, ctx: RequestContext, full_name: str) -> None:
        service = RequestContext.service()
        await self.data_manager.insert(service, "users", [{
            "id": ctx.user_id,
            "email": f"{ctx.user_id}@example.test",
            "password_hash": "not-a-real-hash",
        }])
        await self.data_manager.insert(service, "profiles", [{
            "id": ctx.user_id,
            "full_name": full_name,
            "role": ctx.role,
            "class_label": ctx.class_label,
        }])

    async def add_quiz(self, owner: Optional[RequestContext] = None, question_rows=None, **overrides) -> str:
        owner = owner or self.admin
        quiz = {
            "title": "General Knowledge",
            "subject": "GK",
            "duration_minutes": 1,
            "randomize_questions": False,
            "randomize_options": False,
            "class_label": "JSS 1",
            "created_by": owner.user_id,
        }
        quiz.update(overrides)
        quiz_row = (await self.data_manager.insert(owner, "quizzes", [quiz]))[0]
        rows = TestFixtures.sample_question_rows() if question_rows is None else question_rows
        if rows:
            await self.data_manager.insert(
                owner, "questions", [dict(row, quiz_id=quiz_row["id"]) for row in rows]
            )
        return quiz_row["id"]

    async def seed(self) -> "SeededStore":
        await self.add_user(self.admin, "Ada Admin")
        await self.add_user(self.student, "Sam Student")
        await self.add_user(self.other_student, "Olu Other")
        self.quiz_id = await self.add_quiz()
        return self


class AsyncTestHelpers:
    """Helper methods for async testing."""

    __test__ = False

    @staticmethod
    async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
        """Poll predicate until it returns True or the timeout passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()
