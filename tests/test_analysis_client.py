"""Tests for the OpenAI-backed analysis service."""

from __future__ import annotations

import json
import logging
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from scribemark.errors import AnalysisServiceError, MalformedPayloadError
from scribemark.services.analysis_client import ClientSettings, OpenAIAnalysisService, find_quotes
from scribemark.services.prompts import CRITICAL_THINKING_PROMPT, EVIDENCE_PROMPT, GRAMMAR_PROMPT
from scribemark.suggestions.models import SuggestionCategory
from tests.helpers import GRAMMAR_FIXES, SCENARIO_TEXT


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.test/v1/chat/completions"))


@pytest.fixture
def client_settings() -> ClientSettings:
    return ClientSettings(
        base_url="https://api.test/v1",
        api_key="sk-test",
        model="gpt-test",
        max_retries=3,
        retry_min_seconds=0,
        retry_max_seconds=0,
    )


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=_completion(json.dumps({"suggestions": GRAMMAR_FIXES}))
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def service(client_settings: ClientSettings, mock_client: MagicMock) -> OpenAIAnalysisService:
    return OpenAIAnalysisService(client_settings, client=mock_client)


# =============================================================================
# Rewrite categories
# =============================================================================


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_grammar_request_and_parsing(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        suggestions = await service.analyze("grammar", SCENARIO_TEXT)

        assert [(s.original, s.replacement) for s in suggestions] == [
            ("Me and my friend", "My friend and I"),
            ("thinks", "think"),
        ]
        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"] == [
            {"role": "system", "content": GRAMMAR_PROMPT},
            {"role": "user", "content": SCENARIO_TEXT},
        ]

    @pytest.mark.asyncio
    async def test_coaching_runs_deterministically(
        self, service: OpenAIAnalysisService, mock_client: MagicMock
    ) -> None:
        mock_client.chat.completions.create.return_value = _completion(
            json.dumps({"suggestions": [{"original": "Everyone agrees.", "category": "claim_support"}]})
        )

        (suggestion,) = await service.analyze(SuggestionCategory.ARGUMENT, "Everyone agrees. So it is true.")

        assert suggestion.is_coaching
        assert suggestion.subcategory == "claim_support"
        assert mock_client.chat.completions.create.await_args.kwargs["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_blank_text_skips_the_request(
        self, service: OpenAIAnalysisService, mock_client: MagicMock
    ) -> None:
        assert await service.analyze("grammar", "  \n ") == []
        mock_client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "not json", json.dumps({"items": []})])
    async def test_malformed_answers(
        self, service: OpenAIAnalysisService, mock_client: MagicMock, content: str | None
    ) -> None:
        mock_client.chat.completions.create.return_value = _completion(content)

        with pytest.raises(MalformedPayloadError) as excinfo:
            await service.analyze("grammar", SCENARIO_TEXT)
        assert excinfo.value.category == "grammar"

    @pytest.mark.asyncio
    async def test_debug_logging_dumps_payload(
        self, client_settings: ClientSettings, mock_client: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        client_settings.debug_logging = True
        service = OpenAIAnalysisService(client_settings, client=mock_client)

        with caplog.at_level(logging.DEBUG, logger="scribemark.services.analysis_client"):
            await service.analyze("grammar", SCENARIO_TEXT)

        assert "Analysis payload" in caplog.text


# =============================================================================
# Evidence checks
# =============================================================================


class TestEvidence:
    @pytest.mark.asyncio
    async def test_one_request_per_quote(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        text = 'Hamlet says "to be or not to be" in the play. Later, “the rest is silence” ends it.'

        async def verdict(**kwargs: Any) -> SimpleNamespace:
            message = json.loads(kwargs["messages"][1]["content"])
            dropped = message["quote"] == "to be or not to be"
            return _completion(json.dumps({"isDropped": dropped, "explanation": "Explain who says it."}))

        mock_client.chat.completions.create.side_effect = verdict

        suggestions = await service.analyze("evidence", text)

        assert [(s.original, s.explanation) for s in suggestions] == [
            ("to be or not to be", "Explain who says it.")
        ]
        assert suggestions[0].is_coaching
        calls = mock_client.chat.completions.create.await_args_list
        assert len(calls) == 2
        assert all(call.kwargs["messages"][0]["content"] == EVIDENCE_PROMPT for call in calls)
        assert "surroundingText" in calls[0].kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_missing_explanation_gets_default_tip(
        self, service: OpenAIAnalysisService, mock_client: MagicMock
    ) -> None:
        mock_client.chat.completions.create.return_value = _completion(json.dumps({"isDropped": True}))

        (suggestion,) = await service.analyze("evidence", 'He wrote "all is well" once.')

        assert suggestion.explanation == "Introduce this quote and explain its importance."

    @pytest.mark.asyncio
    async def test_text_without_quotes(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        assert await service.analyze("evidence", SCENARIO_TEXT) == []
        mock_client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verdict_must_be_an_object(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        mock_client.chat.completions.create.return_value = _completion("[true]")
        with pytest.raises(MalformedPayloadError):
            await service.analyze("evidence", 'He wrote "all is well" once.')


class TestCriticalThinking:
    PARAGRAPH = "Social media makes people lonelier because they compare themselves to others."

    @pytest.mark.asyncio
    async def test_paragraph_is_sent_as_json(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        mock_client.chat.completions.create.return_value = _completion(
            json.dumps({"prompt": {"question": "Is comparison the only cause?", "type": "causation"}})
        )

        (suggestion,) = await service.analyze("critical_thinking", self.PARAGRAPH)

        assert suggestion.original == self.PARAGRAPH
        assert suggestion.subcategory == "causation"
        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert kwargs["temperature"] == 0.7
        assert kwargs["messages"][0] == {"role": "system", "content": CRITICAL_THINKING_PROMPT}
        assert json.loads(kwargs["messages"][1]["content"]) == {"paragraph": self.PARAGRAPH}

    @pytest.mark.asyncio
    async def test_null_prompt_and_short_paragraphs(
        self, service: OpenAIAnalysisService, mock_client: MagicMock
    ) -> None:
        mock_client.chat.completions.create.return_value = _completion(json.dumps({"prompt": None}))

        assert await service.analyze("critical_thinking", self.PARAGRAPH) == []
        assert await service.analyze("critical_thinking", "Too short.") == []
        assert mock_client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_prompt(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        mock_client.chat.completions.create.return_value = _completion(json.dumps({"question": "Why?"}))
        with pytest.raises(MalformedPayloadError):
            await service.analyze("critical_thinking", self.PARAGRAPH)


def test_find_quotes() -> None:
    text = 'He said "hi there" and “curly one” but not " ".'
    assert find_quotes(text) == [("hi there", 8, 18), ("curly one", 23, 34)]


# =============================================================================
# Failures and retries
# =============================================================================


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(
        self, service: OpenAIAnalysisService, mock_client: MagicMock
    ) -> None:
        mock_client.chat.completions.create.side_effect = [
            _connection_error(),
            _completion(json.dumps({"suggestions": GRAMMAR_FIXES})),
        ]

        suggestions = await service.analyze("grammar", SCENARIO_TEXT)

        assert len(suggestions) == 2
        assert mock_client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_service_error(
        self, service: OpenAIAnalysisService, mock_client: MagicMock
    ) -> None:
        mock_client.chat.completions.create.side_effect = _connection_error()

        with pytest.raises(AnalysisServiceError) as excinfo:
            await service.analyze("grammar", SCENARIO_TEXT)

        assert not isinstance(excinfo.value, MalformedPayloadError)
        assert isinstance(excinfo.value.__cause__, APIConnectionError)
        assert excinfo.value.category == "grammar"
        assert mock_client.chat.completions.create.await_count == 3

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self, service: OpenAIAnalysisService, mock_client: MagicMock) -> None:
        await service.aclose()
        mock_client.close.assert_awaited_once()
