"""Bootstrap helpers for hosts embedding the suggestion engine."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from .editor.document_model import StructuredDocument
from .events import EventBus
from .services.analysis_client import OpenAIAnalysisService
from .services.settings import EngineSettings, SettingsStore
from .suggestions.cache import SuggestionCache
from .suggestions.controller import AnalysisService, SuggestionLifecycleController
from .utils import logging as logging_utils

__all__ = ["build_controller", "configure_logging", "load_settings"]

_LOGGER = logging.getLogger(__name__)


def configure_logging(settings: EngineSettings | None = None, *, console: bool = True, force: bool = False) -> Path:
    """Configure logging from ``settings``; defaults apply before settings exist."""

    options = (
        logging_utils.LoggingOptions.from_settings(settings, console=console)
        if settings is not None
        else logging_utils.LoggingOptions(console=console)
    )
    log_path = logging_utils.setup_logging(options, force=force)
    _LOGGER.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(options.level), log_path)
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> EngineSettings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return EngineSettings()


def build_controller(
    document: StructuredDocument,
    settings: EngineSettings,
    *,
    analysis_service: AnalysisService | None = None,
    event_bus: EventBus | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> SuggestionLifecycleController:
    """Wire a lifecycle controller for ``document`` from ``settings``.

    An OpenAI-backed service is created unless ``analysis_service`` is given.
    """

    service = analysis_service or OpenAIAnalysisService(settings.to_client_settings())
    controller = SuggestionLifecycleController(
        document,
        service,
        categories=settings.categories(),
        cache=SuggestionCache(settings.to_cache_config()),
        scheduling=settings.to_scheduling_config(),
        event_bus=event_bus,
        metrics=settings.to_request_metrics(),
        pacer=settings.to_request_pacer(),
        strict_positions=settings.strict_positions,
        loop=loop,
    )
    _LOGGER.debug(
        "Controller ready (model=%s, categories=%s)",
        settings.model,
        ", ".join(category.value for category in settings.categories()),
    )
    return controller
