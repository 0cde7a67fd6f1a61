from enum import Enum
from typing import Optional

from quizgen.schemas import DocumentFormat


class QuizPipelineError(Exception):
    """Base class for failures of a single quiz generation run"""


class UnsupportedFormatError(QuizPipelineError):
    def __init__(self, content_type: str, filename: str):
        self.content_type = content_type
        self.filename = filename
        super().__init__(
            f"Unsupported file type: {filename!r} ({content_type or 'no content type'})"
        )


class ExtractionError(QuizPipelineError):
    def __init__(self, fmt: DocumentFormat, cause: str):
        self.format = fmt
        self.cause = cause
        super().__init__(f"Failed to extract text from {fmt.value.upper()}: {cause}")


class GenerationErrorKind(str, Enum):
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    MALFORMED_ENVELOPE = "malformed_envelope"
    TRANSPORT = "transport"
    CANCELLED = "cancelled"


class GenerationError(QuizPipelineError):
    def __init__(self, kind: GenerationErrorKind, cause: str, status_code: Optional[int] = None):
        self.kind = kind
        self.cause = cause
        self.status_code = status_code
        message = f"Quiz generation failed ({kind.value}): {cause}"
        if status_code is not None:
            message = f"Quiz generation failed ({kind.value} {status_code}): {cause}"
        super().__init__(message)


class ParseErrorKind(str, Enum):
    MALFORMED = "malformed"
    WRONG_QUESTION_COUNT = "wrong_question_count"
    INVALID_QUESTION = "invalid_question"


class ParseError(QuizPipelineError):
    def __init__(self, kind: ParseErrorKind, detail: str, index: Optional[int] = None):
        self.kind = kind
        self.detail = detail
        self.index = index
        if index is not None:
            super().__init__(f"Invalid quiz response ({kind.value}, question {index + 1}): {detail}")
        else:
            super().__init__(f"Invalid quiz response ({kind.value}): {detail}")


class PipelineError(Exception):
    """Raised by the pipeline when a run fails; carries the failing step and its cause"""

    def __init__(self, step, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"Quiz pipeline failed at '{step.value}': {cause}")
