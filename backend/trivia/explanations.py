from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Optional, Tuple

from openai import AsyncOpenAI, OpenAIError

from .db import Settings
from .errors import ExternalServiceError
from .utils import canonical_id

logger = logging.getLogger(__name__)

PLACEHOLDER_EXPLANATION = "No explanation is available for this question."

SOURCE_AI = "ai"
SOURCE_CACHED = "cached"
SOURCE_PLACEHOLDER = "placeholder"


class ExplanationSource(ABC):
    """Something that can write an explanation for a question on demand."""

    @abstractmethod
    async def generate(self, prompt_text: str, correct_option_text: str) -> str:
        ...


class OpenAIExplanationSource(ExplanationSource):
    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def generate(self, prompt_text: str, correct_option_text: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": "You explain trivia answers in two short sentences for a general audience.",
                    },
                    {
                        "role": "user",
                        "content": f"Question: {prompt_text}\nCorrect answer: {correct_option_text}\nWhy is this correct?",
                    },
                ],
                temperature=0.2,
                max_tokens=200,
            )
        except OpenAIError as exc:
            raise ExternalServiceError(f"OpenAI request failed: {exc}") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise ExternalServiceError("OpenAI returned a malformed response") from exc

        if not isinstance(content, str) or not content.strip():
            raise ExternalServiceError("OpenAI returned an empty explanation")
        return content.strip()


class ExplanationProvider:
    """Two-tier chain: the enrichment source first, then the canned text.

    ``explain`` always returns a non-empty string. Failures of the primary
    source, including running past ``timeout`` seconds, are logged and
    absorbed.
    """

    def __init__(
        self,
        primary: Optional[ExplanationSource] = None,
        *,
        timeout: float = 5.0,
        cache_size: int = 256,
    ):
        self.primary = primary
        self.timeout = timeout
        self.cache_size = cache_size
        self._cache: "OrderedDict[Tuple[str, str], str]" = OrderedDict()

    async def explain(
        self,
        question_id: Any,
        prompt_text: str,
        correct_option_text: str,
        fallback_text: Optional[str],
    ) -> str:
        text, _ = await self.explain_with_source(question_id, prompt_text, correct_option_text, fallback_text)
        return text

    async def explain_with_source(
        self,
        question_id: Any,
        prompt_text: str,
        correct_option_text: str,
        fallback_text: Optional[str],
    ) -> Tuple[str, str]:
        if self.primary is not None:
            key = (canonical_id(question_id), prompt_text)
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached, SOURCE_AI

            try:
                text = await self._generate(self.primary, prompt_text, correct_option_text)
            except ExternalServiceError as exc:
                logger.warning("Explanation enrichment for question %s failed: %s", key[0], exc.message)
            else:
                self._remember(key, text)
                return text, SOURCE_AI

        if fallback_text and fallback_text.strip():
            return fallback_text, SOURCE_CACHED
        return PLACEHOLDER_EXPLANATION, SOURCE_PLACEHOLDER

    async def _generate(self, source: ExplanationSource, prompt_text: str, correct_option_text: str) -> str:
        try:
            return await asyncio.wait_for(
                source.generate(prompt_text, correct_option_text),
                timeout=self.timeout,
            )
        except ExternalServiceError:
            raise
        except asyncio.TimeoutError as exc:
            raise ExternalServiceError(f"timed out after {self.timeout}s") from exc
        except Exception as exc:
            # any other failure of the enrichment source degrades the same way
            raise ExternalServiceError(f"{type(exc).__name__}: {exc}") from exc

    def _remember(self, key: Tuple[str, str], text: str) -> None:
        if self.cache_size <= 0:
            return
        self._cache[key] = text
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)


def build_explanation_provider(settings: Settings) -> ExplanationProvider:
    primary: Optional[ExplanationSource] = None
    if settings.OPENAI_API_KEY:
        client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.EXPLANATION_TIMEOUT_SECONDS)
        primary = OpenAIExplanationSource(client, settings.OPENAI_MODEL)
    else:
        logger.info("OPENAI_API_KEY not set; explanations use canned text only")
    return ExplanationProvider(primary, timeout=settings.EXPLANATION_TIMEOUT_SECONDS)
