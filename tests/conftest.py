import json
from contextlib import contextmanager
from io import BytesIO

import docx
import fitz
import pytest

from quizgen.errors import GenerationError, GenerationErrorKind
from quizgen.schemas import RawModelResponse
from quizgen.utils.temp_storage import TemporaryUploadStorage


def build_quiz_payload(count=5):
    return json.dumps({
        "questions": [
            {
                "question": f"Which statement about topic {i + 1} is correct?",
                "options": [f"Answer {i}-{n}" for n in range(4)],
                "correctIndex": i % 4,
            }
            for i in range(count)
        ]
    })


class StubGenerationClient:
    def __init__(self, text):
        self.text = text
        self.prompts = []

    async def generate(self, prompt, cancel_event=None):
        self.prompts.append(prompt)
        return RawModelResponse(text=self.text)


class TimeoutGenerationClient:
    def __init__(self):
        self.calls = 0

    async def generate(self, prompt, cancel_event=None):
        self.calls += 1
        raise GenerationError(GenerationErrorKind.TIMEOUT, "no response within 0.01 seconds")


class TrackingStorage(TemporaryUploadStorage):
    """Records every staged file and how many are currently held"""

    def __init__(self, directory):
        super().__init__(str(directory))
        self.staged = []
        self.active = 0

    @contextmanager
    def stage(self, document):
        with super().stage(document) as path:
            self.staged.append(path)
            self.active += 1
            try:
                yield path
            finally:
                self.active -= 1


@pytest.fixture
def quiz_payload():
    return build_quiz_payload


@pytest.fixture
def make_stub_client():
    return StubGenerationClient


@pytest.fixture
def stub_client(quiz_payload):
    return StubGenerationClient(quiz_payload(5))


@pytest.fixture
def timeout_client():
    return TimeoutGenerationClient()


@pytest.fixture
def tracking_storage(tmp_path):
    return TrackingStorage(tmp_path)


@pytest.fixture
def make_pdf():
    def _make(pages):
        doc = fitz.open()
        for text in pages:
            page = doc.new_page()
            page.insert_text((72, 72), text)
        data = doc.tobytes()
        doc.close()
        return data
    return _make


@pytest.fixture
def make_docx():
    def _make(paragraphs):
        document = docx.Document()
        for text in paragraphs:
            document.add_paragraph(text)
        buffer = BytesIO()
        document.save(buffer)
        return buffer.getvalue()
    return _make


@pytest.fixture
def three_page_text():
    pages = [
        "Chapter 1. The water cycle describes how water evaporates from oceans, "
        "condenses into clouds and falls back to the surface as precipitation.",
        "Chapter 2. Photosynthesis lets plants convert light energy, water and carbon "
        "dioxide into glucose and oxygen inside their chloroplasts.",
        "Chapter 3. Plate tectonics explains how the lithosphere is split into plates "
        "that drift slowly over the mantle, causing earthquakes and mountain building.",
    ]
    return "\f\n".join(pages).encode("utf-8")
