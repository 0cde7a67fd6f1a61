import uuid
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class QuizStore(Protocol):
    def save(self, record: dict) -> str:
        """Write one quiz record and return its assigned id"""
        ...


class InMemoryQuizStore:
    """Process-local quiz store; stands in for the external document database"""

    def __init__(self):
        self.quizzes = {}

    def save(self, record: dict) -> str:
        quiz_id = f"quiz_{uuid.uuid4().hex[:12]}"
        self.quizzes[quiz_id] = dict(record)
        logger.info(f"Stored quiz {quiz_id} ({len(record.get('questions', []))} questions)")
        return quiz_id
