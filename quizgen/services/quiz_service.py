import asyncio
import inspect
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from quizgen.errors import PipelineError, QuizPipelineError
from quizgen.schemas import Quiz, UploadedDocument
from quizgen.services.gemini_client import QuizGenerationClient
from quizgen.services.prompt_builder import PromptBuilder
from quizgen.services.quiz_parser import QuizResponseParser
from quizgen.services.quiz_store import QuizStore
from quizgen.utils.file_processing import detect_format, extract_text
from quizgen.utils.temp_storage import TemporaryUploadStorage

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Quiz generation pipeline stages"""
    RECEIVED = "received"
    DETECTED = "detected"
    EXTRACTED = "extracted"
    PROMPT_BUILT = "prompt_built"
    MODEL_INVOKED = "model_invoked"
    PARSED = "parsed"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStep(str, Enum):
    DETECT = "detect"
    EXTRACT = "extract"
    BUILD_PROMPT = "build_prompt"
    GENERATE = "generate"
    PARSE = "parse"
    COMPLETE = "complete"
    PERSIST = "persist"


# stage -> (step allowed from it, stage reached when that step succeeds)
TRANSITIONS = {
    PipelineStage.RECEIVED: (PipelineStep.DETECT, PipelineStage.DETECTED),
    PipelineStage.DETECTED: (PipelineStep.EXTRACT, PipelineStage.EXTRACTED),
    PipelineStage.EXTRACTED: (PipelineStep.BUILD_PROMPT, PipelineStage.PROMPT_BUILT),
    PipelineStage.PROMPT_BUILT: (PipelineStep.GENERATE, PipelineStage.MODEL_INVOKED),
    PipelineStage.MODEL_INVOKED: (PipelineStep.PARSE, PipelineStage.PARSED),
    PipelineStage.PARSED: (PipelineStep.COMPLETE, PipelineStage.COMPLETED),
}


class PipelineRun:
    """State of one pass of the pipeline over a single upload"""

    def __init__(self, document: UploadedDocument):
        self.document = document
        self.stage = PipelineStage.RECEIVED
        self.failed_step: Optional[PipelineStep] = None
        self.error: Optional[BaseException] = None

    def expect(self, step: PipelineStep) -> PipelineStage:
        if self.stage not in TRANSITIONS or TRANSITIONS[self.stage][0] is not step:
            raise RuntimeError(f"Cannot {step.value} a run in stage '{self.stage.value}'")
        return TRANSITIONS[self.stage][1]

    def advance(self, step: PipelineStep) -> None:
        self.stage = self.expect(step)

    def fail(self, step: PipelineStep, error: BaseException) -> None:
        self.stage = PipelineStage.FAILED
        self.failed_step = step
        self.error = error


def save_quiz(quiz: Quiz, metadata: Optional[dict], store: QuizStore) -> str:
    """Merge caller metadata with the quiz and write it once"""
    now = datetime.now(timezone.utc).isoformat()
    record = {
        **(metadata or {}),
        **quiz.model_dump(by_alias=True),
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        return store.save(record)
    except Exception as e:
        logger.error(f"Failed to store quiz: {str(e)}")
        raise PipelineError(PipelineStep.PERSIST, e) from e


class QuizPipeline:
    def __init__(
        self,
        client: QuizGenerationClient,
        storage: Optional[TemporaryUploadStorage] = None,
        prompt_max_chars: int = 4000,
        question_count: int = 5,
    ):
        self.client = client
        self.storage = storage or TemporaryUploadStorage()
        self.prompt_max_chars = prompt_max_chars
        self.question_count = question_count

    async def run(
        self,
        document: UploadedDocument,
        question_count: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Quiz:
        """Generate a quiz from an uploaded document"""
        count = question_count or self.question_count
        run = PipelineRun(document)
        logger.info(f"Received {document.filename!r} ({len(document.content)} bytes), {count} questions requested")

        with self.storage.stage(document) as path:
            fmt = await self._step(
                run, PipelineStep.DETECT, detect_format, document.content_type, document.filename
            )
            extracted = await self._step(
                run, PipelineStep.EXTRACT, asyncio.to_thread, extract_text, path, fmt
            )
            builder = PromptBuilder(max_chars=self.prompt_max_chars, question_count=count)
            prompt = await self._step(run, PipelineStep.BUILD_PROMPT, builder.build, extracted)
            raw = await self._step(run, PipelineStep.GENERATE, self.client.generate, prompt, cancel_event)
            parser = QuizResponseParser(question_count=count)
            quiz = await self._step(run, PipelineStep.PARSE, parser.parse, raw)
            run.advance(PipelineStep.COMPLETE)

        logger.info(f"Quiz generated from {document.filename!r}")
        return quiz

    async def generate_and_save(
        self,
        document: UploadedDocument,
        metadata: Optional[dict],
        store: QuizStore,
        question_count: Optional[int] = None,
    ) -> str:
        quiz = await self.run(document, question_count=question_count)
        return save_quiz(quiz, metadata, store)

    async def _step(self, run: PipelineRun, step: PipelineStep, func, *args):
        run.expect(step)
        try:
            result = func(*args)
            if inspect.isawaitable(result):
                result = await result
        except QuizPipelineError as e:
            run.fail(step, e)
            logger.error(f"Quiz pipeline failed at {step.value}: {str(e)}")
            raise PipelineError(step, e) from e
        except BaseException as e:
            run.fail(step, e)
            raise

        run.advance(step)
        logger.debug(f"Run for {run.document.filename!r} reached stage {run.stage.value}")
        return result
