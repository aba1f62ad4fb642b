"""Shared test helpers and stub classes."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

from scribemark.suggestions.models import SuggestionCategory

SCENARIO_TEXT = "Me and my friend thinks this is good."

GRAMMAR_FIXES: list[dict[str, Any]] = [
    {"original": "Me and my friend", "suggestion": "My friend and I", "explanation": "Use the subject form."},
    {"original": "thinks", "suggestion": "think", "explanation": "The verb must agree with a plural subject."},
]


class FakeAnalysisService:
    """In-memory analysis service returning canned payloads per category.

    Set ``gate`` to hold calls until the event is set, or ``error`` to make
    every call raise.
    """

    def __init__(self, responses: Mapping[str, Sequence[Mapping[str, Any]]] | None = None) -> None:
        self.responses: dict[str, list[Mapping[str, Any]]] = {
            key: list(value) for key, value in (responses or {}).items()
        }
        self.calls: list[tuple[str, str]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def analyze(self, category: SuggestionCategory, text: str) -> list[Mapping[str, Any]]:
        self.calls.append((category.value, text))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.responses.get(category.value, []))


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Spin the event loop until ``predicate()`` holds."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


LIST_PAYLOAD: dict[str, Any] = {
    "type": "doc",
    "content": [
        {"type": "paragraph", "content": [{"type": "text", "text": "Intro"}]},
        {
            "type": "bulletList",
            "content": [
                {
                    "type": "listItem",
                    "content": [
                        {"type": "paragraph", "content": [{"type": "text", "text": "Item"}]},
                    ],
                }
            ],
        },
    ],
}
