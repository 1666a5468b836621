from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .answers import AnswerChecker
from .db import Settings, get_settings
from .errors import InternalError, TriviaError, ValidationError
from .explanations import ExplanationProvider, build_explanation_provider
from .leaderboard import DEFAULT_TOP_LIMIT, Leaderboard
from .leaderboard_store import build_leaderboard_store
from .questions import QuestionStore, normalize_topic
from .schemas import (
    CheckAnswerIn,
    CheckAnswerOut,
    ExplanationOut,
    HealthOut,
    LeaderboardCountOut,
    LeaderboardRowOut,
    QuestionOut,
    ScoreIn,
    SuccessOut,
)
from .utils import iso_ts, now_ts

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Internal server error"


@dataclass
class Services:
    questions: QuestionStore
    explanations: ExplanationProvider
    answers: AnswerChecker
    leaderboard: Leaderboard


def build_services(settings: Settings) -> Services:
    questions = QuestionStore(settings.QUESTIONS_DIR, normalize_topic(settings.DEFAULT_TOPIC))
    explanations = build_explanation_provider(settings)
    return Services(
        questions=questions,
        explanations=explanations,
        answers=AnswerChecker(questions, explanations),
        leaderboard=Leaderboard(build_leaderboard_store(settings), settings.LEADERBOARD_MAX_ENTRIES),
    )


def configure_logging(level: str) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)-12s %(levelname)-8s %(message)s"))
        root.addHandler(handler)
    root.setLevel(level.upper())


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_admin(request: Request, x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != request.app.state.settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


async def read_json_object(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def parse_limit(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return DEFAULT_TOP_LIMIT
    try:
        limit = int(raw)
    except ValueError as exc:
        raise ValidationError("limit must be an integer") from exc
    if limit < 0:
        raise ValidationError("limit must not be negative")
    return limit


async def handle_trivia_error(request: Request, exc: TriviaError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})


@asynccontextmanager
async def lifespan(app: FastAPI):
    # services handed to create_app belong to the caller; only close what we build
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(app.state.settings)
    try:
        yield
    finally:
        if owned:
            await app.state.services.leaderboard.close()
            app.state.services = None


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Trivia API", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TriviaError, handle_trivia_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/api/health", response_model=HealthOut)
    async def health():
        return HealthOut(status="ok", timestamp=iso_ts(now_ts()))

    @app.get("/api/question", response_model=QuestionOut)
    async def random_question(topic: Optional[str] = None, services: Services = Depends(get_services)):
        q = services.questions.get_random_question(topic)
        return QuestionOut(id=q.id, question=q.question, options=list(q.options))

    @app.post("/api/check-answer", response_model=CheckAnswerOut)
    async def check_answer(request: Request, services: Services = Depends(get_services)):
        payload = CheckAnswerIn.model_validate(await read_json_object(request))
        result = await services.answers.check(payload.topic, payload.questionId, payload.selectedAnswer)
        return CheckAnswerOut(
            correct=result.correct,
            correctAnswer=result.correct_index,
            explanation=result.explanation,
        )

    @app.get("/api/explain/{question_id}", response_model=ExplanationOut)
    async def explain(question_id: str, topic: Optional[str] = None, services: Services = Depends(get_services)):
        q = services.questions.get_question(topic, question_id)
        text, source = await services.explanations.explain_with_source(
            q.id, q.question, q.options[q.correct_index], q.explanation
        )
        return ExplanationOut(explanation=text, source=source)

    @app.post("/api/leaderboard", response_model=SuccessOut)
    async def submit_score(request: Request, services: Services = Depends(get_services)):
        payload = ScoreIn.model_validate(await read_json_object(request))
        await services.leaderboard.add_score(payload.name, payload.score)
        return SuccessOut()

    @app.get("/api/leaderboard", response_model=List[LeaderboardRowOut])
    async def top_scores(limit: Optional[str] = None, services: Services = Depends(get_services)):
        rows = await services.leaderboard.get_top_scores(parse_limit(limit))
        return [
            LeaderboardRowOut(rank=r.rank, name=r.name, score=r.score, timestamp=iso_ts(r.timestamp))
            for r in rows
        ]

    @app.get("/api/leaderboard/count", response_model=LeaderboardCountOut)
    async def leaderboard_count(services: Services = Depends(get_services)):
        return LeaderboardCountOut(count=await services.leaderboard.count())

    @app.delete("/api/admin/leaderboard")
    async def clear_leaderboard(_: None = Depends(require_admin), services: Services = Depends(get_services)):
        await services.leaderboard.clear()
        return {"ok": True}

    return app


app = create_app()
