import asyncio
import logging
import secrets
from typing import Optional

from fastapi import Depends, FastAPI, Form, Header, HTTPException, Request, UploadFile

from quizgen.errors import (
    ExtractionError,
    GenerationError,
    GenerationErrorKind,
    ParseError,
    PipelineError,
    UnsupportedFormatError,
)
from quizgen.schemas import (
    GenerateQuestionsRequest,
    GenerateQuestionsResponse,
    QuizPrompt,
    QuizUploadResponse,
    SaveQuizRequest,
    SaveQuizResponse,
    UploadedDocument,
)
from quizgen.services.gemini_client import QuizGenerationClient
from quizgen.services.quiz_service import QuizPipeline, save_quiz
from quizgen.services.quiz_store import InMemoryQuizStore
from quizgen.utils.config import settings
from quizgen.utils.temp_storage import TemporaryUploadStorage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_title)
quiz_store = InMemoryQuizStore()

GEMINI_CHECK_PROMPT = "Say hello and respond with just the word TEST"


def require_admin(x_admin_key: str = Header(default="")):
    if settings.admin_api_key and not secrets.compare_digest(
        x_admin_key.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        raise HTTPException(403, "Admin access required")


def get_pipeline() -> QuizPipeline:
    if not settings.gemini_api_key:
        raise HTTPException(503, "Gemini API key is not configured")
    client = QuizGenerationClient(
        api_key=settings.gemini_api_key,
        model=settings.llm_model,
        base_url=settings.gemini_base_url,
        timeout=settings.request_timeout,
    )
    return QuizPipeline(
        client,
        storage=TemporaryUploadStorage(settings.upload_dir),
        prompt_max_chars=settings.prompt_max_chars,
        question_count=settings.question_count,
    )


def get_quiz_store() -> InMemoryQuizStore:
    return quiz_store


def _question_count(value: Optional[int]) -> int:
    if value is None:
        return settings.question_count
    if not 1 <= value <= settings.max_question_count:
        raise HTTPException(400, f"Question count must be between 1 and {settings.max_question_count}")
    return value


def _http_error(error: PipelineError) -> HTTPException:
    cause = error.cause
    if isinstance(cause, UnsupportedFormatError):
        status = 415
    elif isinstance(cause, ExtractionError):
        status = 422
    elif isinstance(cause, GenerationError):
        status = 504 if cause.kind == GenerationErrorKind.TIMEOUT else 502
    elif isinstance(cause, ParseError):
        status = 502
    else:
        status = 500
    return HTTPException(status, f"Quiz generation failed at {error.step.value}: {cause}")


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event):
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling quiz generation")
            cancel_event.set()
            return
        await asyncio.sleep(0.5)


async def _run_pipeline(
    pipeline: QuizPipeline, document: UploadedDocument, count: int, request: Request
):
    cancel_event = asyncio.Event()
    watcher = asyncio.ensure_future(_watch_disconnect(request, cancel_event))
    try:
        return await pipeline.run(document, question_count=count, cancel_event=cancel_event)
    except PipelineError as e:
        raise _http_error(e) from e
    finally:
        watcher.cancel()


@app.get("/")
async def root():
    return {"message": "QuizHub quiz generator is running"}


@app.get("/test-api-key", dependencies=[Depends(require_admin)])
async def test_api_key():
    return {
        "hasApiKey": bool(settings.gemini_api_key),
        "apiKeyLength": len(settings.gemini_api_key),
    }


@app.get("/test-gemini", dependencies=[Depends(require_admin)])
async def test_gemini(pipeline: QuizPipeline = Depends(get_pipeline)):
    prompt = QuizPrompt(text=GEMINI_CHECK_PROMPT, excerpt="")
    try:
        response = await pipeline.client.generate(prompt)
    except GenerationError as e:
        raise HTTPException(504 if e.kind == GenerationErrorKind.TIMEOUT else 502, str(e)) from e
    return {"success": True, "result": response.text}


@app.post("/upload", response_model=QuizUploadResponse, dependencies=[Depends(require_admin)])
async def upload(
    request: Request,
    file: UploadFile,
    question_count: Optional[int] = Form(default=None, alias="questionCount"),
    pipeline: QuizPipeline = Depends(get_pipeline),
):
    count = _question_count(question_count)
    file_bytes = await file.read()
    if len(file_bytes) > settings.max_upload_size:
        raise HTTPException(413, "Uploaded file is too large")

    document = UploadedDocument(
        content=file_bytes,
        content_type=file.content_type or "",
        filename=file.filename or "",
    )
    quiz = await _run_pipeline(pipeline, document, count, request)
    return {"quiz": quiz.model_dump(by_alias=True)}


@app.post(
    "/generate-questions",
    response_model=GenerateQuestionsResponse,
    dependencies=[Depends(require_admin)],
)
async def generate_questions(
    request: Request,
    body: GenerateQuestionsRequest,
    pipeline: QuizPipeline = Depends(get_pipeline),
):
    count = _question_count(body.question_count)
    document = UploadedDocument(
        content=body.text.encode("utf-8"), content_type="text/plain", filename="input.txt"
    )
    quiz = await _run_pipeline(pipeline, document, count, request)
    return {
        "success": True,
        "questions": quiz.model_dump(by_alias=True)["questions"],
        "message": f"{count} questions generated successfully using AI",
    }


@app.post("/save", response_model=SaveQuizResponse, dependencies=[Depends(require_admin)])
async def save(body: SaveQuizRequest, store: InMemoryQuizStore = Depends(get_quiz_store)):
    try:
        quiz_id = save_quiz(body.quiz, body.meta, store)
    except PipelineError as e:
        raise _http_error(e) from e
    return {"success": True, "id": quiz_id}
