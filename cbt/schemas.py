"""
Request and response bodies of the HTTP API.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from .models import QuestionType, Role


class RegisterRequest(BaseModel):
    full_name: str = ""
    class_label: str = ""


class LoginRequest(BaseModel):
    email: str
    password: str


class QuestionCreate(BaseModel):
    question_text: str = ""
    question_type: QuestionType = QuestionType.MCQ
    options: Optional[List[str]] = None
    correct_answer: str = ""
    points: int = 1


class QuizCreateRequest(BaseModel):
    title: str = ""
    subject: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: int = 30
    instructions: Optional[str] = None
    is_active: bool = True
    randomize_questions: bool = True
    randomize_options: bool = True
    class_label: Optional[str] = None
    questions: List[QuestionCreate] = []


class AnswerRequest(BaseModel):
    answer: str = ""


class NoticeResponse(BaseModel):
    notice: Optional[str] = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    role: Role
    class_label: Optional[str] = None


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    profile: ProfileResponse
    notice: Optional[str] = None


class QuizResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    subject: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: int
    instructions: Optional[str] = None
    is_active: bool
    randomize_questions: bool
    randomize_options: bool
    class_label: Optional[str] = None
    created_at: Optional[datetime] = None


class ServedQuestion(BaseModel):
    """A question as shown to a student; the correct answer never leaves the server."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    question_text: str
    question_type: QuestionType
    options: List[str] = []
    points: int


class AttemptResponse(BaseModel):
    attempt_id: str
    state: str
    quiz: QuizResponse
    questions: List[ServedQuestion]
    answers: Dict[str, str] = {}
    started_at: datetime
    duration_seconds: int
    remaining_seconds: int
    notice: Optional[str] = None
    results_path: Optional[str] = None


class QuizStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempts: int
    avg_score: float
    highest_score: float


class AdminQuizResponse(BaseModel):
    quiz: QuizResponse
    stats: QuizStatsResponse


class AdminDashboardResponse(BaseModel):
    quizzes: List[AdminQuizResponse]


class StudentQuizResponse(BaseModel):
    quiz: QuizResponse
    attempted: bool
    score: Optional[str] = None


class StudentDashboardResponse(BaseModel):
    profile: ProfileResponse
    quizzes: List[StudentQuizResponse]


class PublishResponse(BaseModel):
    quiz: QuizResponse
    question_count: int
    notice: str


class AnswerReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: str
    question_text: Optional[str] = None
    question_type: Optional[str] = None
    options: List[str] = []
    correct_answer: Optional[str] = None
    student_answer: str
    is_correct: bool
    points_earned: int


class ResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempt_id: str
    quiz_id: str
    quiz_title: Optional[str] = None
    score: int
    total_points: int
    percentage: float
    correct_count: int
    time_taken_seconds: int
    time_taken: str
    submitted_at: Optional[datetime] = None
    answers: List[AnswerReviewResponse]
