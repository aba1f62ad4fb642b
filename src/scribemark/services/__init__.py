"""Service layer helpers (settings, prompts, analysis client)."""

from .analysis_client import ClientSettings, OpenAIAnalysisService
from .settings import EngineSettings, SettingsStore, redact_secret

__all__ = [
    "ClientSettings",
    "EngineSettings",
    "OpenAIAnalysisService",
    "SettingsStore",
    "redact_secret",
]
