"""Quiz models and parsing of the model's JSON quiz answers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from study_summarizer.llm.client import ProviderError
from study_summarizer.logging import get_logger

log = get_logger("study_summarizer.llm.quiz")

TRUE_ANSWER = "True"
FALSE_ANSWER = "False"
_TRUE_SPELLINGS = frozenset({"true", "t", "vero", "v"})
_FALSE_SPELLINGS = frozenset({"false", "f", "falso"})


class QuizQuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"


class QuizParseError(ProviderError):
    """The model's quiz answer could not be parsed."""


@dataclass
class QuizQuestion:
    """A single quiz question.

    Attributes:
        question: Question text (a statement for true/false items).
        type: Question kind.
        correct_answer: The right option, or ``True``/``False``.
        explanation: Why the answer is right.
        options: Four options for multiple choice, empty otherwise.
    """

    question: str
    type: QuizQuestionType
    correct_answer: str
    explanation: str
    options: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "question": self.question,
            "type": self.type.value,
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }
        if self.type is QuizQuestionType.MULTIPLE_CHOICE:
            data["options"] = list(self.options)
        return data


def _strip_code_fence(response: str) -> str:
    cleaned = response.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _required_str(item: dict[str, Any], key: str, index: int) -> str:
    value = item.get(key)
    if not value or not isinstance(value, str):
        raise ValueError(f"Question {index} is missing the '{key}' field")
    return value


def _parse_question(item: Any, index: int) -> QuizQuestion:
    if not isinstance(item, dict):
        raise ValueError(f"Question {index} is not an object")

    question = _required_str(item, "question", index)
    try:
        kind = QuizQuestionType(item.get("type"))
    except ValueError as e:
        raise ValueError(f"Question {index} has invalid type: {item.get('type')}") from e
    correct_answer = _required_str(item, "correctAnswer", index)
    explanation = _required_str(item, "explanation", index)

    if kind is QuizQuestionType.MULTIPLE_CHOICE:
        options = item.get("options")
        if not isinstance(options, list) or len(options) != 4:
            raise ValueError(f"Question {index} (multiple_choice) must have exactly 4 options")
        options = [str(option) for option in options]
        if correct_answer not in options:
            wanted = correct_answer.strip().lower()
            match = next((opt for opt in options if opt.strip().lower() == wanted), None)
            if match is not None:
                correct_answer = match
            else:
                log.warning("quiz_answer_not_in_options", index=index)
        return QuizQuestion(question, kind, correct_answer, explanation, options)

    normalized = correct_answer.strip().lower()
    if normalized in _TRUE_SPELLINGS:
        correct_answer = TRUE_ANSWER
    elif normalized in _FALSE_SPELLINGS:
        correct_answer = FALSE_ANSWER
    return QuizQuestion(question, kind, correct_answer, explanation)


def parse_quiz_response(response: str) -> list[QuizQuestion]:
    """Parse the JSON array of questions out of a model answer.

    Tolerates markdown code fences and text around the array.

    Raises:
        QuizParseError: ``INVALID_JSON_FORMAT`` when no array is present,
            ``JSON_PARSE_ERROR`` when the array is malformed or invalid.
    """
    cleaned = _strip_code_fence(response)
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end == -1 or end < start:
        raise QuizParseError(
            "Response does not contain a valid JSON array", code="INVALID_JSON_FORMAT"
        )

    try:
        items = json.loads(cleaned[start : end + 1])
        if not isinstance(items, list):
            raise ValueError("Response is not an array")
        return [_parse_question(item, index) for index, item in enumerate(items, start=1)]
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        raise QuizParseError(f"Quiz parsing failed: {e}", code="JSON_PARSE_ERROR") from e
