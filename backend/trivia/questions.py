from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .errors import InternalError, NotFoundError
from .models import PublicQuestion, Question, Topic
from .utils import canonical_id

logger = logging.getLogger(__name__)


def normalize_topic(value: Any, default: Topic = Topic.GENERAL) -> Topic:
    """Map any client-supplied topic onto a known one, never failing."""

    if isinstance(value, Topic):
        return value
    if isinstance(value, str):
        try:
            return Topic(value.strip().lower())
        except ValueError:
            pass
    return default


class QuestionStore:
    """Per-topic question sets, loaded on first use and kept for the process lifetime."""

    def __init__(
        self,
        questions_dir: Path,
        default_topic: Topic = Topic.GENERAL,
        rng: Optional[random.Random] = None,
    ):
        self.questions_dir = Path(questions_dir)
        self.default_topic = default_topic
        self._rng = rng or random.Random()
        self._cache: Dict[Topic, Tuple[Question, ...]] = {}

    def resolve_topic(self, topic: Any) -> Topic:
        return normalize_topic(topic, self.default_topic)

    def questions(self, topic: Any) -> Tuple[Question, ...]:
        resolved = self.resolve_topic(topic)
        cached = self._cache.get(resolved)
        if cached is not None:
            return cached

        loaded = self._load(resolved)
        # a concurrent loader may have won; keep whichever landed first
        return self._cache.setdefault(resolved, loaded)

    def get_random_question(self, topic: Any) -> PublicQuestion:
        resolved = self.resolve_topic(topic)
        questions = self.questions(resolved)
        if not questions:
            raise NotFoundError(f"No questions available for topic '{resolved.value}'")
        return self._rng.choice(questions).public()

    def get_question(self, topic: Any, question_id: Any) -> Question:
        resolved = self.resolve_topic(topic)
        wanted = canonical_id(question_id)
        for question in self.questions(resolved):
            if canonical_id(question.id) == wanted:
                return question
        raise NotFoundError(f"Question '{wanted}' not found in topic '{resolved.value}'")

    def _load(self, topic: Topic) -> Tuple[Question, ...]:
        path = self.questions_dir / f"{topic.value}.json"
        try:
            with path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not load questions for topic %s from %s: %s", topic.value, path, exc)
            return ()

        if not isinstance(raw, list):
            raise InternalError(f"Question file {path} must contain a JSON list")

        try:
            questions = tuple(Question.model_validate(item) for item in raw)
        except PydanticValidationError as exc:
            raise InternalError(f"Malformed question in {path}: {exc}") from exc

        logger.info("Loaded %d questions for topic %s", len(questions), topic.value)
        return questions
