# main.py
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import config
from db import init_db
from errors import AppError, RequestValidationFailed
from llm import DistractorGenerator, with_ai_deadline
from log import correlation_id_var, get_logger, setup_logging
from persistence import QuizRepository
from pipeline import Aborted, GenerationOrchestrator, GenerationRequest
import schemas
from utils import new_correlation_id, schema_violations

logger = get_logger(__name__)

# How often a running generation checks whether the client went away
DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    yield


# -----------------------------------------------------------------------------
# App & CORS
# -----------------------------------------------------------------------------
app = FastAPI(title="flashquiz – flashcard set to quiz generator", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or new_correlation_id()
    request.state.correlation_id = correlation_id
    token = correlation_id_var.set(correlation_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or correlation_id_var.get()


# -----------------------------------------------------------------------------
# Error responses: {"error": {"code", "message", "details"}}
# -----------------------------------------------------------------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.info("Request failed: %s %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(),
        headers={"X-Correlation-ID": _correlation_id(request)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = RequestValidationFailed("Invalid request data.", {"violations": schema_violations(exc)})
    return await app_error_handler(request, error)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)
    logger.exception("Unhandled error")
    return JSONResponse(
        status_code=500,
        content={"error": {
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
            "details": {"correlationId": correlation_id},
        }},
        headers={"X-Correlation-ID": correlation_id},
    )


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
def get_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    return (x_user_id or "").strip() or config.DEFAULT_OWNER_ID


def get_orchestrator() -> GenerationOrchestrator:
    return GenerationOrchestrator()


def get_repository() -> QuizRepository:
    return QuizRepository()


def get_generator() -> DistractorGenerator:
    return DistractorGenerator()


async def _cancel_on_disconnect(request: Request, coro):
    """Run ``coro`` but cancel it if the client disconnects first. Returns None on disconnect."""
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.warning("Client disconnected; cancelling generation")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                return None
    finally:
        if not task.done():
            task.cancel()


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------
@app.get("/api/health")
def health():
    return {"status": "ok"}


# -----------------------------------------------------------------------------
# Generate quiz (locate + scrape/import + LLM + store + return)
# -----------------------------------------------------------------------------
@app.post(
    "/api/generate",
    response_model=schemas.QuizSummary,
    status_code=201,
    responses={400: {"model": schemas.ErrorOut}, 424: {"model": schemas.ErrorOut}},
)
@app.post("/generate", response_model=schemas.QuizSummary, status_code=201, include_in_schema=False)
async def generate_quiz(
    payload: schemas.GenerateIn,
    request: Request,
    owner: str = Depends(get_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    generation = GenerationRequest(
        source_url=payload.source_url.strip(),
        title=payload.title.strip() if payload.title else None,
        manual_payload=payload.manual_payload,
    )
    result = await _cancel_on_disconnect(
        request, orchestrator.run(generation, owner, _correlation_id(request)),
    )
    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    if isinstance(result, Aborted):
        raise result.error
    return result.summary


# -----------------------------------------------------------------------------
# History list / detail
# -----------------------------------------------------------------------------
@app.get("/api/quizzes", response_model=schemas.QuizListOut)
async def list_quizzes(
    status: Optional[schemas.QuizStatus] = None,
    owner: str = Depends(get_owner),
    repo: QuizRepository = Depends(get_repository),
):
    items = await run_in_threadpool(repo.list_quizzes, owner, status)
    return {"items": items}


@app.get("/api/quizzes/{quiz_id}", response_model=schemas.QuizOut)
async def get_quiz(
    quiz_id: int,
    owner: str = Depends(get_owner),
    repo: QuizRepository = Depends(get_repository),
):
    return await run_in_threadpool(repo.get_quiz, owner, quiz_id)


@app.get("/api/questions/{question_id}", response_model=schemas.QuestionOut)
async def get_question(
    question_id: int,
    owner: str = Depends(get_owner),
    repo: QuizRepository = Depends(get_repository),
):
    return await run_in_threadpool(repo.get_question, owner, question_id)


# -----------------------------------------------------------------------------
# Regenerate the incorrect answers of one question
# -----------------------------------------------------------------------------
@app.post("/api/questions/{question_id}/regenerate", response_model=schemas.QuestionOut)
async def regenerate_answers(
    question_id: int,
    payload: Optional[schemas.RegenerateIn] = None,
    owner: str = Depends(get_owner),
    repo: QuizRepository = Depends(get_repository),
    generator: DistractorGenerator = Depends(get_generator),
):
    payload = payload or schemas.RegenerateIn()
    question_text, correct_answer = await run_in_threadpool(repo.question_context, owner, question_id)
    result = await with_ai_deadline(
        generator.generate(question_text, correct_answer, payload.temperature, payload.seed),
    )
    return await run_in_threadpool(repo.replace_incorrect_answers, owner, question_id, result)


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=config.APP_PORT)
