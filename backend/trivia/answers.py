from __future__ import annotations

import logging
import math
from typing import Any

from .errors import ValidationError
from .explanations import PLACEHOLDER_EXPLANATION, ExplanationProvider
from .models import AnswerResult
from .questions import QuestionStore

logger = logging.getLogger(__name__)

NO_ANSWER = -1


def parse_selected_index(value: Any) -> int:
    """Coerce a submitted option index, accepting -1 as the no-answer sentinel."""

    if value is None:
        raise ValidationError("selectedAnswer is required")
    if isinstance(value, bool):
        raise ValidationError("selectedAnswer must be an integer")

    if isinstance(value, int):
        index = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValidationError("selectedAnswer must be an integer")
        index = int(value)
    elif isinstance(value, str):
        try:
            index = int(value.strip())
        except ValueError as exc:
            raise ValidationError("selectedAnswer must be an integer") from exc
    else:
        raise ValidationError("selectedAnswer must be an integer")

    if index < NO_ANSWER:
        raise ValidationError("selectedAnswer must be -1 or a non-negative option index")
    return index


def parse_question_id(value: Any) -> Any:
    if value is None or isinstance(value, (bool, list, dict)):
        raise ValidationError("questionId is required")
    if isinstance(value, str) and not value.strip():
        raise ValidationError("questionId is required")
    return value


class AnswerChecker:
    def __init__(self, questions: QuestionStore, explanations: ExplanationProvider):
        self.questions = questions
        self.explanations = explanations

    async def check(self, topic: Any, question_id: Any, selected_index: Any) -> AnswerResult:
        question_id = parse_question_id(question_id)
        index = parse_selected_index(selected_index)
        question = self.questions.get_question(topic, question_id)

        correct = index != NO_ANSWER and index == question.correct_index
        fallback = question.explanation or PLACEHOLDER_EXPLANATION
        try:
            explanation = await self.explanations.explain(
                question.id,
                question.question,
                question.options[question.correct_index],
                question.explanation,
            )
        except Exception:
            logger.exception("Explanation provider raised for question %s", question.id)
            explanation = fallback

        return AnswerResult(
            correct=correct,
            correct_index=question.correct_index,
            explanation=explanation or fallback,
        )
