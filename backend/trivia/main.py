import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .adaptive import AdaptiveSelector, RecentQuestionCache
from .content import ContentSource
from .db import Settings, connect_database, get_settings
from .errors import SessionNotFound, TriviaError
from .models import ANONYMOUS_USER, Session, UserId
from .profiles import ProfileStore
from .schemas import (
    AnswerIn,
    AnswerOut,
    CreateSessionIn,
    HealthOut,
    PublicQuestion,
    ResultsOut,
    SessionOut,
    SessionStateOut,
)
from .scoring import PenaltyPolicy
from .sessions import SessionManager
from .storage import StorageFactory
from .telemetry import QuestionTelemetry

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(exc: TriviaError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail())


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=config.LOG_LEVEL.upper())

        storage_factory = StorageFactory(config)
        storage = await storage_factory.initialize()

        database, mongo_client = connect_database(config)
        content = ContentSource(database, default_slug=config.DEFAULT_COLLECTION_SLUG)
        if mongo_client is None:
            await content.seed()

        recent = RecentQuestionCache(
            per_user=config.RECENT_QUESTIONS_PER_USER,
            max_users=config.RECENT_QUESTIONS_MAX_USERS,
        )
        manager = SessionManager(
            storage,
            profiles=ProfileStore(database),
            telemetry=QuestionTelemetry(database),
            selector=AdaptiveSelector(recent=recent),
            ttl_seconds=config.SESSION_TTL_SECONDS,
            round_length=config.ROUND_LENGTH,
            question_duration=config.QUESTION_DURATION,
            final_question_duration=config.FINAL_QUESTION_DURATION,
            penalty=PenaltyPolicy(config.PENALTY_BASE_FACTOR, config.PENALTY_SPEED_FACTOR),
        )

        app.state.storage_factory = storage_factory
        app.state.content = content
        app.state.session_manager = manager
        logger.info("Trivia service ready (storage=%s, degraded=%s)", storage.name, storage.degraded)
        try:
            yield
        finally:
            await manager.aclose()
            await storage_factory.shutdown()
            if mongo_client is not None:
                await mongo_client.close()

    app = FastAPI(title="Trivia Game API", lifespan=lifespan)

    origins = [o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_origin_regex=config.CORS_ORIGIN_REGEX or None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


def get_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_content(request: Request) -> ContentSource:
    return request.app.state.content


def get_user_id(x_user_id: Optional[int] = Header(default=None)) -> UserId:
    # Stand-in for the auth middleware: no header means anonymous play
    return x_user_id if x_user_id is not None else ANONYMOUS_USER


def _session_out(s: Session, degraded: bool) -> dict:
    return dict(
        session_id=s.session_id,
        mode=s.mode,
        questions=[PublicQuestion.from_question(q) for q in s.questions],
        total_questions=s.round_length,
        collection=s.collection,
        degraded=degraded,
    )


@router.get("/health", response_model=HealthOut)
async def health(manager: SessionManager = Depends(get_manager)):
    storage = manager.storage
    return HealthOut(
        status="degraded" if storage.degraded else "ok",
        storage=storage.name,
        sessions=await storage.count(),
    )


@router.post("/api/game/session", response_model=SessionOut)
async def create_session(
    payload: CreateSessionIn,
    manager: SessionManager = Depends(get_manager),
    content: ContentSource = Depends(get_content),
    user_id: UserId = Depends(get_user_id),
):
    exclude = manager.recent_question_ids(user_id)
    try:
        collection = await content.get_collection(payload.collection_id)
        if payload.mode == "adaptive":
            first, pools = await content.select_adaptive(collection.id, exclude)
            session_id = await manager.create_adaptive_session(user_id, first, pools, collection)
        else:
            questions = await content.select_questions(collection.id, exclude, manager.round_length)
            session_id = await manager.create_session(user_id, questions, collection)
    except TriviaError as exc:
        raise _http_error(exc) from exc

    s = await manager.get_session(session_id)
    return SessionOut(**_session_out(s, manager.degraded))


@router.get("/api/game/session/{session_id}", response_model=SessionStateOut)
async def get_session(session_id: str, manager: SessionManager = Depends(get_manager)):
    s = await manager.get_session(session_id)
    if not s:
        raise _http_error(SessionNotFound(session_id))
    return SessionStateOut(**_session_out(s, manager.degraded), answered=len(s.answers), total_score=s.total_score)


@router.post("/api/game/answer", response_model=AnswerOut)
async def answer(payload: AnswerIn, manager: SessionManager = Depends(get_manager)):
    try:
        a = await manager.submit_answer(
            payload.session_id,
            payload.question_id,
            payload.selected_option,
            payload.time_remaining,
            payload.wager,
        )
    except TriviaError as exc:
        raise _http_error(exc) from exc

    s = await manager.get_session(payload.session_id)
    if s is None:
        raise _http_error(SessionNotFound(payload.session_id))
    index, question = s.locate(payload.question_id)
    next_question = s.questions[index + 1] if index + 1 < len(s.questions) else None

    return AnswerOut(
        **a.public(),
        correct=a.is_correct,
        correct_answer=question.correct_answer,
        explanation=question.explanation,
        learning_content=question.learning_content,
        next_question=PublicQuestion.from_question(next_question) if next_question else None,
        degraded=manager.degraded,
    )


@router.get("/api/game/results/{session_id}", response_model=ResultsOut)
async def results(session_id: str, manager: SessionManager = Depends(get_manager)):
    try:
        r = await manager.get_results(session_id)
    except TriviaError as exc:
        raise _http_error(exc) from exc

    progression = await manager.award_progression(session_id, r)
    # flagged is internal telemetry and never leaves the service
    return ResultsOut(
        **r.model_dump(exclude={"answers": {"__all__": {"flagged"}}}),
        progression=progression,
        degraded=manager.degraded,
    )


app = create_app()
