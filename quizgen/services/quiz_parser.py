import json
import re
import logging
from typing import Any

from pydantic import ValidationError

from quizgen.errors import ParseError, ParseErrorKind
from quizgen.schemas import Question, Quiz, RawModelResponse

logger = logging.getLogger(__name__)

OPTION_COUNT = 4
LETTERS = "ABCD"

_FENCE = re.compile(r"^```[A-Za-z]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)

TEXT_KEYS = ("question", "prompt", "text")
INDEX_KEYS = ("correctIndex", "correct_index", "answerIndex")
ANSWER_KEYS = ("answer", "correct", "correctAnswer", "correct_answer")
FLAG_KEYS = ("isCorrect", "is_correct", "correct")


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    match = _FENCE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def extract_json(text: str) -> Any:
    """Decode the model output, falling back to the first balanced JSON value inside it"""
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\[{]", cleaned):
        try:
            value, _ = decoder.raw_decode(cleaned, match.start())
        except json.JSONDecodeError:
            continue
        logger.warning("Model output contained text around the JSON payload; using the first JSON value")
        return value

    logger.error(f"Failed to extract JSON from: {text[:200]}")
    raise ParseError(ParseErrorKind.MALFORMED, "response is not valid JSON")


class QuizResponseParser:
    def __init__(self, question_count: int = 5):
        self.question_count = question_count

    def parse(self, raw: RawModelResponse) -> Quiz:
        data = extract_json(raw.text)

        if isinstance(data, dict):
            questions = data.get("questions")
        else:
            questions = data
        if not isinstance(questions, list):
            raise ParseError(ParseErrorKind.MALFORMED, "response has no 'questions' array")

        if len(questions) != self.question_count:
            raise ParseError(
                ParseErrorKind.WRONG_QUESTION_COUNT,
                f"expected {self.question_count} questions, got {len(questions)}",
            )

        return Quiz(questions=[self._parse_question(item, i) for i, item in enumerate(questions)])

    def _parse_question(self, item: Any, index: int) -> Question:
        if not isinstance(item, dict):
            raise ParseError(ParseErrorKind.INVALID_QUESTION, "question is not an object", index)

        text = next((item[key] for key in TEXT_KEYS if isinstance(item.get(key), str)), None)
        if not text or not text.strip():
            raise ParseError(ParseErrorKind.INVALID_QUESTION, "missing question text", index)

        options, flagged = self._parse_options(item.get("options"), index)
        markers = set(flagged)
        if len(flagged) > 1:
            raise ParseError(ParseErrorKind.INVALID_QUESTION, "more than one option marked correct", index)

        for key in INDEX_KEYS:
            value = item.get(key)
            if value is not None:
                markers.add(self._index_marker(value, index))

        for key in ANSWER_KEYS:
            value = item.get(key)
            # a boolean "correct" belongs to an option object, not a question
            if value is not None and not isinstance(value, bool):
                markers.add(self._answer_marker(value, options, index))

        if not markers:
            raise ParseError(ParseErrorKind.INVALID_QUESTION, "no correct option designated", index)
        if len(markers) > 1:
            raise ParseError(
                ParseErrorKind.INVALID_QUESTION, "conflicting correct option markers", index
            )

        try:
            return Question(question=text.strip(), options=options, correct_index=markers.pop())
        except ValidationError as e:
            raise ParseError(ParseErrorKind.INVALID_QUESTION, str(e), index) from e

    def _parse_options(self, raw_options: Any, index: int) -> tuple[list[str], list[int]]:
        if isinstance(raw_options, dict):
            # letter-keyed options, e.g. {"A": "...", "B": "..."}
            raw_options = [raw_options[key] for key in sorted(raw_options)]
        if not isinstance(raw_options, list):
            raise ParseError(ParseErrorKind.INVALID_QUESTION, "options must be a list", index)
        if len(raw_options) != OPTION_COUNT:
            raise ParseError(
                ParseErrorKind.INVALID_QUESTION,
                f"expected {OPTION_COUNT} options, got {len(raw_options)}",
                index,
            )

        options, flagged = [], []
        for position, option in enumerate(raw_options):
            if isinstance(option, dict):
                if any(option.get(key) is True for key in FLAG_KEYS):
                    flagged.append(position)
                option = option.get("text", option.get("option"))
            if isinstance(option, (int, float)) and not isinstance(option, bool):
                option = str(option)
            if not isinstance(option, str):
                raise ParseError(
                    ParseErrorKind.INVALID_QUESTION, f"option {position + 1} is not text", index
                )
            options.append(option.strip())
        return options, flagged

    def _index_marker(self, value: Any, index: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < OPTION_COUNT:
            raise ParseError(
                ParseErrorKind.INVALID_QUESTION, f"correct index {value!r} is out of range", index
            )
        return value

    def _answer_marker(self, value: Any, options: list[str], index: int) -> int:
        if isinstance(value, list):
            if len(value) != 1:
                raise ParseError(
                    ParseErrorKind.INVALID_QUESTION, "expected exactly one correct answer", index
                )
            value = value[0]
        if isinstance(value, int) and not isinstance(value, bool):
            return self._index_marker(value, index)
        if not isinstance(value, str):
            raise ParseError(ParseErrorKind.INVALID_QUESTION, "unrecognised answer format", index)

        answer = value.strip()
        if len(answer) == 1 and answer.upper() in LETTERS:
            return LETTERS.index(answer.upper())

        matches = [i for i, option in enumerate(options) if option == answer]
        if not matches:
            matches = [i for i, option in enumerate(options) if option.lower() == answer.lower()]
        if len(matches) != 1:
            reason = "matches no option" if not matches else "matches more than one option"
            raise ParseError(ParseErrorKind.INVALID_QUESTION, f"answer {answer!r} {reason}", index)
        return matches[0]
