from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from config import config
from db import create_db_engine, create_session_factory, init_db
from engine import MatchEngine
from errors import Internal, Invalid, MatchError
from models import (
    AnswerRequest,
    AnswerResponse,
    BuzzRequest,
    CategoryItem,
    CreateMatchRequest,
    CreateMatchResponse,
    DifficultyItem,
    EventFeed,
    JoinRequest,
    JoinResponse,
    MatchSnapshot,
    OkResponse,
    StartRequest,
)
from question_bank import SqlQuestionBank
from logger import (
    setup_logging, get_logger,
    summarize_game_events, set_request_id,
)

# Initialise structured, file-based logging
setup_logging(console_level=logging.INFO)
logger = get_logger("buzzer")


def build_engine(database_url: Optional[str] = None) -> MatchEngine:
    """Wire a MatchEngine against DATABASE_URL with the SQL-backed question bank."""
    db_engine = create_db_engine(database_url)
    init_db(db_engine)
    sessions = create_session_factory(db_engine)
    return MatchEngine(sessions, SqlQuestionBank(sessions))


def get_engine(request: Request) -> MatchEngine:
    return request.app.state.engine


router = APIRouter()


# --- Buzzer match endpoints ---
# Plain `def` handlers: the engine talks to the database synchronously, so
# FastAPI runs these in its threadpool.

@router.post("/api/buzzer/matches", response_model=CreateMatchResponse)
def create_match(request: CreateMatchRequest, engine: MatchEngine = Depends(get_engine)):
    """Create a new match; the caller becomes its host"""
    return engine.create_match(
        category=request.category,
        difficulty=request.difficulty,
        question_count=request.questionCount,
        host_name=request.hostName,
    )


@router.post("/api/buzzer/join", response_model=JoinResponse)
def join_match(request: JoinRequest, engine: MatchEngine = Depends(get_engine)):
    """Join a waiting match by id or join code"""
    return engine.join(name=request.name, match_id=request.matchId, join_code=request.joinCode)


@router.post("/api/buzzer/start", response_model=OkResponse)
def start_match(request: StartRequest, engine: MatchEngine = Depends(get_engine)):
    """Start the match (host only)"""
    return engine.start(match_id=request.matchId, token=request.token)


@router.post("/api/buzzer/buzz", response_model=OkResponse)
def buzz(request: BuzzRequest, engine: MatchEngine = Depends(get_engine)):
    """Buzz in for the current question"""
    return engine.buzz(match_id=request.matchId, token=request.token)


@router.post("/api/buzzer/answer", response_model=AnswerResponse, response_model_exclude_none=True)
def answer(request: AnswerRequest, engine: MatchEngine = Depends(get_engine)):
    """Answer the current question (lock holder, or first answer when nobody buzzed)"""
    return engine.answer(
        match_id=request.matchId,
        token=request.token,
        answer_index=request.answerIndex,
        question_index=request.questionIndex,
    )


# --- Polling endpoints ---

@router.get("/api/buzzer/state", response_model=MatchSnapshot)
def get_match_state(matchId: str = Query(min_length=1), engine: MatchEngine = Depends(get_engine)):
    """Current match snapshot (no answer key while the match is live)"""
    return engine.get_state(matchId)


@router.get("/api/buzzer/events", response_model=EventFeed)
def get_match_events(
    matchId: str = Query(min_length=1),
    since_id: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    engine: MatchEngine = Depends(get_engine),
):
    """Events since a given event ID (incremental polling)"""
    return engine.list_events(matchId, since_id=since_id, limit=limit)


# --- Catalog ---

@router.get("/api/categories")
def list_categories(engine: MatchEngine = Depends(get_engine)) -> dict[str, list[CategoryItem]]:
    return {"items": engine.list_categories()}


@router.get("/api/difficulties")
def list_difficulties(engine: MatchEngine = Depends(get_engine)) -> dict[str, list[DifficultyItem]]:
    return {"items": engine.list_difficulties()}


# --- Health / diagnostics ---

@router.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok"}


@router.get("/api/game-events/summary")
async def get_game_event_summary(hours: float = 24):
    """Return aggregated match activity from the game-events JSONL log."""
    return summarize_game_events(since_hours=hours)


def create_app(match_engine: Optional[MatchEngine] = None) -> FastAPI:
    app = FastAPI(title="Buzzer Quiz API")
    app.state.engine = match_engine or build_engine()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=False,  # Must be False when using allow_origins=["*"]
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        rid = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    @app.exception_handler(MatchError)
    async def match_error_handler(request: Request, exc: MatchError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        err = Invalid(f"Invalid request: {problems}")
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        err = Internal()
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    print(f"\n🔔 Buzzer Quiz Server")
    print(f"   Database: {config.DATABASE_URL}")
    print(f"   URL: http://localhost:8000\n")
    uvicorn.run(app, host="0.0.0.0", port=8000)
