import json

import pytest

from quizgen.errors import ParseError, ParseErrorKind
from quizgen.schemas import RawModelResponse
from quizgen.services.quiz_parser import QuizResponseParser, extract_json


def _question(**overrides):
    question = {
        "question": "What is the capital of France?",
        "options": ["Paris", "Rome", "Berlin", "Madrid"],
        "correctIndex": 0,
    }
    question.update(overrides)
    for key in [k for k, v in question.items() if v is None]:
        del question[key]
    return question


def _raw(questions):
    return RawModelResponse(text=json.dumps({"questions": questions}))


def _parse(questions, count=None):
    count = len(questions) if count is None else count
    return QuizResponseParser(question_count=count).parse(_raw(questions))


def test_parses_canonical_payload(quiz_payload):
    quiz = QuizResponseParser().parse(RawModelResponse(text=quiz_payload(5)))

    assert len(quiz.questions) == 5
    for i, question in enumerate(quiz.questions):
        assert len(question.options) == 4
        assert question.correct_index == i % 4


def test_strips_code_fence(quiz_payload):
    text = "```json\n" + quiz_payload(5) + "\n```"
    assert len(QuizResponseParser().parse(RawModelResponse(text=text)).questions) == 5


def test_extracts_json_wrapped_in_prose(quiz_payload):
    text = "Sure! Here is your quiz:\n" + quiz_payload(5) + "\nGood luck with your studies."
    assert len(QuizResponseParser().parse(RawModelResponse(text=text)).questions) == 5


def test_accepts_bare_array():
    raw = RawModelResponse(text=json.dumps([_question(), _question()]))
    assert len(QuizResponseParser(question_count=2).parse(raw).questions) == 2


@pytest.mark.parametrize("text", ["", "not json at all", "{\"questions\": [", "[unclosed"])
def test_malformed_output(text):
    with pytest.raises(ParseError) as exc:
        QuizResponseParser().parse(RawModelResponse(text=text))
    assert exc.value.kind == ParseErrorKind.MALFORMED


def test_missing_questions_array():
    with pytest.raises(ParseError) as exc:
        QuizResponseParser().parse(RawModelResponse(text='{"quiz": "nope"}'))
    assert exc.value.kind == ParseErrorKind.MALFORMED


@pytest.mark.parametrize("count", [4, 6])
def test_wrong_question_count(count):
    with pytest.raises(ParseError) as exc:
        _parse([_question() for _ in range(count)], count=5)
    assert exc.value.kind == ParseErrorKind.WRONG_QUESTION_COUNT


def test_answer_as_letter():
    quiz = _parse([_question(correctIndex=None, answer="c")])
    assert quiz.questions[0].correct_index == 2


def test_answer_as_option_text():
    quiz = _parse([_question(correctIndex=None, correctAnswer="Berlin")])
    assert quiz.questions[0].correct_index == 2


def test_letter_keyed_options():
    item = {
        "question": "Largest planet?",
        "options": {"A": "Mars", "B": "Jupiter", "C": "Venus", "D": "Earth"},
        "correct": "B",
    }
    quiz = _parse([item])
    assert quiz.questions[0].options == ["Mars", "Jupiter", "Venus", "Earth"]
    assert quiz.questions[0].correct_index == 1


def test_option_objects_with_flags():
    options = [{"text": t, "isCorrect": t == "Rome"} for t in ["Paris", "Rome", "Oslo", "Bern"]]
    quiz = _parse([_question(correctIndex=None, options=options)])
    assert quiz.questions[0].correct_index == 1


def test_duplicate_option_text_is_tolerated():
    quiz = _parse([_question(options=["Paris", "Paris", "Berlin", "Madrid"], correctIndex=0)])
    assert quiz.questions[0].options[1] == "Paris"


@pytest.mark.parametrize("overrides, reason", [
    ({"options": ["a", "b", "c"]}, "options"),
    ({"options": ["a", "b", "c", "d", "e"]}, "options"),
    ({"options": "a, b, c, d"}, "options"),
    ({"correctIndex": None}, "no correct option"),
    ({"correctIndex": 4}, "out of range"),
    ({"correctIndex": True}, "out of range"),
    ({"answer": "Madrid"}, "conflicting"),
    ({"correctIndex": None, "answer": "Lisbon"}, "matches no option"),
    ({"correctIndex": None, "answer": ["A", "B"]}, "exactly one"),
    ({"question": None}, "question text"),
    ({"options": ["Paris", None, "Berlin", "Madrid"]}, "not text"),
])
def test_invalid_question(overrides, reason):
    questions = [_question(), _question(**overrides)]
    with pytest.raises(ParseError, match=reason) as exc:
        _parse(questions)
    assert exc.value.kind == ParseErrorKind.INVALID_QUESTION
    assert exc.value.index == 1


def test_two_flagged_options_rejected():
    options = [{"text": t, "isCorrect": True} for t in ["a", "b"]] + ["c", "d"]
    with pytest.raises(ParseError) as exc:
        _parse([_question(correctIndex=None, options=options)])
    assert exc.value.kind == ParseErrorKind.INVALID_QUESTION


def test_answer_text_matching_duplicate_options_rejected():
    with pytest.raises(ParseError, match="more than one"):
        _parse([_question(options=["Paris", "Paris", "Rome", "Oslo"], correctIndex=None, answer="Paris")])


def test_verdict_is_deterministic(quiz_payload):
    parser = QuizResponseParser()
    raw = RawModelResponse(text=quiz_payload(5))
    assert parser.parse(raw) == parser.parse(raw)

    bad = RawModelResponse(text=quiz_payload(3))
    verdicts = []
    for _ in range(2):
        with pytest.raises(ParseError) as exc:
            parser.parse(bad)
        verdicts.append((exc.value.kind, exc.value.detail))
    assert verdicts[0] == verdicts[1]


def test_extract_json_prefers_whole_document():
    assert extract_json('  {"a": [1, 2]}  ') == {"a": [1, 2]}
