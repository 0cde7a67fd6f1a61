from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from quizgen.utils.config import settings


class DocumentFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TEXT = "text"


@dataclass
class UploadedDocument:
    content: bytes
    content_type: str
    filename: str


@dataclass(frozen=True)
class ExtractedText:
    text: str
    source_format: DocumentFormat


@dataclass(frozen=True)
class QuizPrompt:
    text: str
    excerpt: str


@dataclass(frozen=True)
class RawModelResponse:
    text: str


# Pydantic models for structured output
class Question(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=4, max_length=4)
    correct_index: int = Field(alias="correctIndex", ge=0, le=3)


class Quiz(BaseModel):
    questions: list[Question] = Field(min_length=1, max_length=settings.max_question_count)


class GenerateQuestionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    question_count: Optional[int] = Field(default=None, alias="questionCount")


class SaveQuizRequest(BaseModel):
    quiz: Quiz
    meta: dict = Field(default_factory=dict)  # {title, createdBy, ...}


class QuizUploadResponse(BaseModel):
    quiz: dict


class GenerateQuestionsResponse(BaseModel):
    success: bool
    questions: list
    message: str


class SaveQuizResponse(BaseModel):
    success: bool
    id: str
