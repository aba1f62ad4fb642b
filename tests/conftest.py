"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from scribemark.editor.document_model import StructuredDocument
from scribemark.suggestions.scheduler import SchedulingConfig
from scribemark.suggestions.window import WindowConfig
from tests.helpers import GRAMMAR_FIXES, SCENARIO_TEXT, FakeAnalysisService


@pytest.fixture
def scenario_document() -> StructuredDocument:
    return StructuredDocument.from_text(SCENARIO_TEXT)


@pytest.fixture
def fake_service() -> FakeAnalysisService:
    return FakeAnalysisService({"grammar": GRAMMAR_FIXES})


@pytest.fixture
def fast_scheduling() -> SchedulingConfig:
    """Debounce values small enough for real-time tests."""
    return SchedulingConfig(
        base_debounce=0.05,
        short_debounce=0.05,
        max_debounce=0.2,
        window=WindowConfig(),
    )
