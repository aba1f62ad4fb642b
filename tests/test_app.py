"""Tests for the bootstrap helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from scribemark import app
from scribemark.editor.document_model import StructuredDocument
from scribemark.services.analysis_client import OpenAIAnalysisService
from scribemark.services.settings import EngineSettings, SettingsStore
from scribemark.suggestions.models import SuggestionCategory
from scribemark.utils import logging as logging_utils
from tests.helpers import FakeAnalysisService


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch: pytest.MonkeyPatch):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.setattr(logging_utils, "_CONFIGURED", False)
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    monkeypatch.delenv("SCRIBEMARK_API_KEY", raising=False)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


class BrokenStore(SettingsStore):
    def load(self, *, overrides=None) -> EngineSettings:
        raise OSError("disk unavailable")


def test_load_settings_falls_back_to_defaults(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    settings = app.load_settings(store=BrokenStore(tmp_path / "settings.json"))

    assert settings == EngineSettings()
    assert "Failed to load settings" in caplog.text


def test_load_settings_applies_overrides(tmp_path: Path) -> None:
    settings = app.load_settings(tmp_path / "settings.json", overrides={"model": "gpt-runtime"})
    assert settings.model == "gpt-runtime"


def test_configure_logging_follows_settings(tmp_path: Path) -> None:
    log_path = app.configure_logging(EngineSettings(debug_logging=True, log_dir=str(tmp_path)), console=False)

    assert log_path == tmp_path / "scribemark.log"
    assert logging.getLogger().level == logging.DEBUG


class TestBuildController:
    @pytest.mark.asyncio
    async def test_settings_reach_every_component(self) -> None:
        settings = EngineSettings(
            enabled_categories=["grammar", "evidence"],
            base_debounce=0.5,
            cache_max_entries=7,
            slow_request_ms=250.0,
            request_interval=0.0,
        )
        document = StructuredDocument.from_text("Me and my friend thinks this is good.")

        controller = app.build_controller(document, settings, analysis_service=FakeAnalysisService())

        assert controller.scheduler.categories == (SuggestionCategory.GRAMMAR, SuggestionCategory.EVIDENCE)
        assert controller.scheduler.config.base_debounce == 0.5
        assert controller.cache.config.max_entries == 7
        assert controller.metrics.slow_request_ms == 250.0
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_default_service_uses_openai(self) -> None:
        controller = app.build_controller(
            StructuredDocument.from_text("Some text."), EngineSettings(api_key="sk-test")
        )

        assert isinstance(controller._service, OpenAIAnalysisService)
        assert controller._service.settings.api_key == "sk-test"
        await controller.aclose()
