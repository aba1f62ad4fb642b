"""Analysis service backed by an OpenAI-compatible chat completions endpoint."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import AnalysisServiceError, MalformedPayloadError
from ..suggestions.models import Suggestion, SuggestionCategory
from ..suggestions.payloads import coerce_suggestions, parse_envelope, parse_prompt
from .prompts import CRITICAL_THINKING_PROMPT, EVIDENCE_PROMPT, system_prompt_for

LOGGER = logging.getLogger(__name__)

_QUOTED = re.compile(r"\"([^\"]+)\"|“([^”]+)”")
_EVIDENCE_CONTEXT_CHARS = 200
_DEFAULT_EVIDENCE_TIP = "Introduce this quote and explain its importance."
# Short paragraphs carry no claim worth questioning.
_MIN_PARAGRAPH_CHARS = 20
_PROMPT_TEMPERATURE = 0.7

__all__ = ["ClientSettings", "OpenAIAnalysisService", "find_quotes"]


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the analysis client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float = 0.2
    request_timeout: float | None = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


def find_quotes(text: str) -> list[tuple[str, int, int]]:
    """Return ``(quote, start, end)`` for every double-quoted passage.

    ``start``/``end`` delimit the whole match including the quote marks;
    ``quote`` is the inner text.
    """

    quotes: list[tuple[str, int, int]] = []
    for match in _QUOTED.finditer(text):
        inner = match.group(1) or match.group(2) or ""
        if inner.strip():
            quotes.append((inner, match.start(), match.end()))
    return quotes


class OpenAIAnalysisService:
    """Runs one chat completion per analysis and validates the JSON answer."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def analyze(self, category: SuggestionCategory | str, text: str) -> list[Suggestion]:
        """Return suggestions for ``text``.

        Raises:
            AnalysisServiceError: When the request fails after retries.
            MalformedPayloadError: When the answer is not the expected JSON.
        """

        resolved = SuggestionCategory.coerce(category)
        if not text.strip():
            return []
        if resolved is SuggestionCategory.EVIDENCE:
            return await self._analyze_evidence(text)
        if resolved is SuggestionCategory.CRITICAL_THINKING:
            return await self._question_paragraph(text)
        temperature = 0.0 if resolved.is_coaching else self._settings.temperature
        payload = await self._complete_json(resolved, system_prompt_for(resolved), text, temperature)
        suggestions = parse_envelope(resolved, payload)
        LOGGER.debug("%s analysis returned %d suggestion(s)", resolved.value, len(suggestions))
        return suggestions

    async def _analyze_evidence(self, text: str) -> list[Suggestion]:
        quotes = find_quotes(text)
        if not quotes:
            return []
        verdicts = await asyncio.gather(
            *(self._check_quote(text, quote, start, end) for quote, start, end in quotes)
        )
        items = [verdict for verdict in verdicts if verdict is not None]
        return coerce_suggestions(SuggestionCategory.EVIDENCE, items)

    async def _question_paragraph(self, paragraph: str) -> list[Suggestion]:
        if len(paragraph.strip()) < _MIN_PARAGRAPH_CHARS:
            return []
        message = json.dumps({"paragraph": paragraph}, ensure_ascii=False)
        payload = await self._complete_json(
            SuggestionCategory.CRITICAL_THINKING,
            CRITICAL_THINKING_PROMPT,
            message,
            _PROMPT_TEMPERATURE,
        )
        return parse_prompt(SuggestionCategory.CRITICAL_THINKING, payload, paragraph)

    async def _check_quote(self, text: str, quote: str, start: int, end: int) -> Dict[str, Any] | None:
        surrounding = text[max(0, start - _EVIDENCE_CONTEXT_CHARS) : end + _EVIDENCE_CONTEXT_CHARS]
        message = json.dumps({"surroundingText": surrounding, "quote": quote}, ensure_ascii=False)
        verdict = await self._complete_json(SuggestionCategory.EVIDENCE, EVIDENCE_PROMPT, message, 0.0)
        if not isinstance(verdict, Mapping):
            raise MalformedPayloadError("Evidence verdict must be a JSON object", category="evidence")
        if not verdict.get("isDropped"):
            return None
        explanation = verdict.get("explanation")
        return {
            "original": quote,
            "suggestion": "",
            "explanation": explanation if isinstance(explanation, str) and explanation else _DEFAULT_EVIDENCE_TIP,
        }

    async def _complete_json(
        self,
        category: SuggestionCategory,
        system_prompt: str,
        user_content: str,
        temperature: float,
    ) -> Any:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": self._build_messages(system_prompt, user_content),
            "response_format": {"type": "json_object"},
            "temperature": temperature,
        }
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            async for attempt in self._retrying():
                with attempt:
                    completion = await self._client.chat.completions.create(**payload)
        except (APIError, httpx.HTTPError) as exc:
            raise AnalysisServiceError(
                f"{category.value} analysis request failed: {exc}", category=category.value
            ) from exc

        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise MalformedPayloadError("Analysis response had no content", category=category.value)
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise MalformedPayloadError(
                f"Analysis response was not valid JSON: {exc}", category=category.value
            ) from exc

    @staticmethod
    def _build_messages(system_prompt: str, user_content: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Analysis payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Analysis payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover
            LOGGER.debug("Analysis client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result
