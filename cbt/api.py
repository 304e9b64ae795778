"""
HTTP API of the CBT quiz server.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import authoring, dashboards, results
from .auth import REGISTRATION_NOTICE, AuthService, AuthSession
from .authoring import QuizDraft
from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import (
    AuthError,
    CBTError,
    FetchError,
    InvalidSessionStateError,
    PolicyViolation,
    RecordNotFound,
    SessionNotFoundError,
    ValidationError,
    WriteError,
)
from .models import AttemptState, RequestContext, Role, SubmitReason
from .quiz_controller import SUBMIT_FAILED_NOTICE, AttemptSession, QuizController
from .quiz_engine import QuizEngine
from .schemas import (
    AdminDashboardResponse,
    AdminQuizResponse,
    AnswerRequest,
    AttemptResponse,
    LoginRequest,
    NoticeResponse,
    ProfileResponse,
    PublishResponse,
    QuizCreateRequest,
    QuizResponse,
    QuizStatsResponse,
    RegisterRequest,
    ResultResponse,
    ServedQuestion,
    SessionResponse,
    StudentDashboardResponse,
    StudentQuizResponse,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (AuthError, 401),
    (PolicyViolation, 403),
    (RecordNotFound, 404),
    (SessionNotFoundError, 404),
    (InvalidSessionStateError, 409),
    (FetchError, 500),
    (WriteError, 500),
)

LOAD_QUIZ_FAILED_NOTICE = "Failed to load quiz"
LOAD_TESTS_FAILED_NOTICE = "Failed to load tests"
CLEANUP_INTERVAL_SECONDS = 60


def status_code_for(error: CBTError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def _with_notice(error: CBTError, notice: str) -> CBTError:
    """Same error type, shown to the user with a different notice."""
    return type(error)(str(error), notice)


def _session_response(session: AuthSession, notice: Optional[str] = None) -> SessionResponse:
    return SessionResponse(
        access_token=session.access_token,
        token_type=session.token_type,
        profile=ProfileResponse.model_validate(session.profile),
        notice=notice,
    )


def _attempt_response(controller: QuizController, session: AttemptSession) -> AttemptResponse:
    return AttemptResponse(
        attempt_id=session.attempt_id,
        state=session.state.value,
        quiz=QuizResponse.model_validate(session.quiz),
        questions=[ServedQuestion.model_validate(question) for question in session.questions],
        answers=dict(session.answers),
        started_at=session.started_at,
        duration_seconds=session.duration_seconds,
        remaining_seconds=controller.remaining_time(session),
        notice=session.notice,
        results_path=session.results_path,
    )


def create_app(config_manager: Optional[ConfigManager] = None,
               data_manager: Optional[DataManager] = None,
               quiz_engine: Optional[QuizEngine] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config_manager: Settings; defaults are used if None
        data_manager: Record store; built from the configured database URL if None
        quiz_engine: Engine for the attempt controller; built from settings if None

    Returns:
        Configured application
    """
    config_manager = config_manager or ConfigManager()
    data_manager = data_manager or DataManager(config_manager.get_database_url())
    auth = AuthService(data_manager, config_manager)
    controller = QuizController(data_manager, config_manager, quiz_engine)

    async def periodic_cleanup() -> None:
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            controller.cleanup_finished_sessions()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: create tables and the bootstrap admin
        logger.info("Creating database tables...")
        data_manager.create_schema()
        admin = config_manager.get_bootstrap_admin()
        if admin:
            await auth.ensure_admin(admin['email'], admin['password'], admin['full_name'])
        cleanup_task = asyncio.create_task(periodic_cleanup())
        yield
        # Shutdown
        logger.info("Shutting down...")
        cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cleanup_task
        await controller.shutdown()

    app = FastAPI(
        title="CBT Quiz Server",
        description="Timed computer-based tests for schools",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config_manager = config_manager
    app.state.data_manager = data_manager
    app.state.auth = auth
    app.state.controller = controller

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CBTError)
    async def handle_cbt_error(request: Request, exc: CBTError):
        status_code = status_code_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"{request.method} {request.url.path} failed: {exc}",
            extra={
                'event_type': 'request_failed',
                'status_code': status_code,
                'error_type': type(exc).__name__,
                'path': request.url.path,
            }
        )
        return JSONResponse(status_code=status_code, content={"notice": exc.user_message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.errors()}")
        return JSONResponse(status_code=400, content={"notice": "Please check the form and try again"})

    bearer = HTTPBearer(auto_error=False)

    async def current_context(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)
    ) -> RequestContext:
        if credentials is None:
            raise AuthError("Missing bearer token", "Please sign in")
        return await auth.resolve(credentials.credentials)

    def require_role(role: Role):
        async def dependency(ctx: RequestContext = Depends(current_context)) -> RequestContext:
            if ctx.role != role:
                raise PolicyViolation(
                    f"User {ctx.user_id} with role {ctx.role} tried a {role.value} route",
                    "Access denied"
                )
            return ctx
        return dependency

    student_context = require_role(Role.STUDENT)
    admin_context = require_role(Role.ADMIN)

    # Auth

    @app.post("/auth/register", response_model=SessionResponse)
    async def register(payload: RegisterRequest):
        session = await auth.register_student(payload.full_name, payload.class_label)
        return _session_response(session, REGISTRATION_NOTICE)

    @app.post("/auth/login", response_model=SessionResponse)
    async def login(payload: LoginRequest):
        return _session_response(await auth.sign_in(payload.email, payload.password))

    @app.get("/auth/me", response_model=ProfileResponse)
    async def me(ctx: RequestContext = Depends(current_context)):
        return ProfileResponse.model_validate(await auth.get_profile(ctx))

    # Dashboards

    @app.get("/student/quizzes", response_model=StudentDashboardResponse)
    async def student_quizzes(ctx: RequestContext = Depends(student_context)):
        profile = await auth.get_profile(ctx)
        summaries = await dashboards.student_dashboard(ctx, data_manager)
        return StudentDashboardResponse(
            profile=ProfileResponse.model_validate(profile),
            quizzes=[
                StudentQuizResponse(
                    quiz=QuizResponse.model_validate(summary.quiz),
                    attempted=summary.attempted,
                    score=summary.score,
                )
                for summary in summaries
            ]
        )

    @app.get("/admin/quizzes", response_model=AdminDashboardResponse)
    async def admin_quizzes(ctx: RequestContext = Depends(admin_context)):
        try:
            summaries = await dashboards.admin_dashboard(ctx, data_manager)
        except FetchError as e:
            raise _with_notice(e, LOAD_TESTS_FAILED_NOTICE) from e
        return AdminDashboardResponse(quizzes=[
            AdminQuizResponse(
                quiz=QuizResponse.model_validate(summary.quiz),
                stats=QuizStatsResponse.model_validate(summary.stats),
            )
            for summary in summaries
        ])

    # Authoring

    @app.post("/admin/quizzes", response_model=PublishResponse, status_code=201)
    async def create_quiz(payload: QuizCreateRequest, ctx: RequestContext = Depends(admin_context)):
        draft = QuizDraft(
            title=payload.title,
            subject=payload.subject,
            description=payload.description,
            duration_minutes=payload.duration_minutes,
            instructions=payload.instructions,
            is_active=payload.is_active,
            randomize_questions=payload.randomize_questions,
            randomize_options=payload.randomize_options,
            class_label=payload.class_label,
            config_manager=config_manager,
        )
        for question in payload.questions:
            draft.add_question(
                question.question_text,
                question.question_type,
                question.correct_answer,
                question.options,
                question.points,
            )
        quiz = await draft.publish(ctx, data_manager)
        return PublishResponse(
            quiz=QuizResponse.model_validate(quiz),
            question_count=len(draft.questions),
            notice=authoring.PUBLISHED_NOTICE,
        )

    @app.delete("/admin/quizzes/{quiz_id}", response_model=NoticeResponse)
    async def delete_quiz(quiz_id: str, ctx: RequestContext = Depends(admin_context)):
        return NoticeResponse(notice=await authoring.delete_quiz(ctx, data_manager, quiz_id))

    # Attempts

    @app.post("/quizzes/{quiz_id}/attempts", response_model=AttemptResponse, status_code=201)
    async def start_attempt(quiz_id: str, ctx: RequestContext = Depends(student_context)):
        try:
            session = await controller.load_quiz(ctx, quiz_id)
        except (FetchError, WriteError) as e:
            raise _with_notice(e, LOAD_QUIZ_FAILED_NOTICE) from e
        return _attempt_response(controller, session)

    @app.get("/attempts/{attempt_id}", response_model=AttemptResponse)
    async def get_attempt(attempt_id: str, ctx: RequestContext = Depends(student_context)):
        return _attempt_response(controller, controller.get_session(ctx, attempt_id))

    @app.put("/attempts/{attempt_id}/answers/{question_id}", response_model=AttemptResponse)
    async def record_answer(attempt_id: str, question_id: str, payload: AnswerRequest,
                            ctx: RequestContext = Depends(student_context)):
        session = controller.record_answer(ctx, attempt_id, question_id, payload.answer)
        return _attempt_response(controller, session)

    @app.post("/attempts/{attempt_id}/submit", response_model=AttemptResponse)
    async def submit_attempt(attempt_id: str, ctx: RequestContext = Depends(student_context)):
        session = await controller.submit(ctx, attempt_id, SubmitReason.MANUAL)
        if session.state == AttemptState.FAILED:
            raise WriteError(f"Attempt {attempt_id} could not be stored", SUBMIT_FAILED_NOTICE)
        return _attempt_response(controller, session)

    @app.delete("/attempts/{attempt_id}", response_model=NoticeResponse)
    async def abandon_attempt(attempt_id: str, ctx: RequestContext = Depends(student_context)):
        await controller.abandon(ctx, attempt_id)
        return NoticeResponse(notice="Attempt closed")

    # Results

    @app.get("/results/{attempt_id}", response_model=ResultResponse)
    async def get_result(attempt_id: str, ctx: RequestContext = Depends(current_context)):
        return ResultResponse.model_validate(await results.get_result(ctx, data_manager, attempt_id))

    @app.get("/health")
    async def health():
        health_check = config_manager.get_configuration_health_check()
        return {
            **health_check,
            'active_sessions': len(controller.get_all_active_sessions()),
            'active_timers': controller.quiz_engine.active_timer_count,
        }

    return app
