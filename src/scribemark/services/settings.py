"""Engine settings and their JSON persistence."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..suggestions.cache import SuggestionCacheConfig
from ..suggestions.metrics import RequestMetrics, RequestPacer
from ..suggestions.models import DEFAULT_CATEGORIES, SuggestionCategory
from ..suggestions.scheduler import SchedulingConfig
from ..suggestions.window import WindowConfig

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .analysis_client import ClientSettings

__all__ = [
    "EngineSettings",
    "SecretVault",
    "SettingsStore",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".scribemark"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_API_KEY_FIELD = "api_key_ciphertext"
_ENV_OVERRIDES: Mapping[str, str] = {
    "SCRIBEMARK_API_KEY": "api_key",
    "SCRIBEMARK_BASE_URL": "base_url",
    "SCRIBEMARK_MODEL": "model",
    "SCRIBEMARK_ORGANIZATION": "organization",
    "SCRIBEMARK_LOG_DIR": "log_dir",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SCRIBEMARK_DEBUG_LOGGING": "debug_logging",
    "SCRIBEMARK_STRICT_POSITIONS": "strict_positions",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SCRIBEMARK_REQUEST_TIMEOUT": "request_timeout",
    "SCRIBEMARK_TEMPERATURE": "temperature",
    "SCRIBEMARK_DEBOUNCE_SECONDS": "base_debounce",
    "SCRIBEMARK_CACHE_TTL": "cache_ttl_seconds",
    "SCRIBEMARK_REQUEST_INTERVAL": "request_interval",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SCRIBEMARK_MAX_RETRIES": "max_retries",
    "SCRIBEMARK_CACHE_ENTRIES": "cache_max_entries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class EngineSettings:
    """User-configurable settings for the suggestion engine."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    temperature: float = 0.2
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    cache_max_entries: int = 100
    cache_ttl_seconds: float = 300.0
    base_debounce: float = 2.0
    short_debounce: float = 1.0
    max_debounce: float = 5.0
    large_edit_chars: int = 40
    long_document_chars: int = 5000
    length_threshold: int = 1
    max_window_chars: int = 1200
    fallback_radius: int = 400
    edge_margin: int = 300
    min_window_chars: int = 12
    min_window_words: int = 3
    max_document_chars: int = 8000
    request_interval: float = 0.1
    slow_request_ms: float = 1000.0
    enabled_categories: list[str] = field(default_factory=lambda: [c.value for c in DEFAULT_CATEGORIES])
    strict_positions: bool = False
    debug_logging: bool = False
    log_dir: str | None = None

    def categories(self) -> tuple[SuggestionCategory, ...]:
        """Return the enabled categories, skipping unknown names."""

        resolved: list[SuggestionCategory] = []
        for name in self.enabled_categories:
            try:
                category = SuggestionCategory.coerce(name)
            except ValueError:
                LOGGER.warning("Ignoring unknown suggestion category %r", name)
                continue
            if category not in resolved:
                resolved.append(category)
        return tuple(resolved)

    def to_window_config(self) -> WindowConfig:
        return WindowConfig(
            max_window_chars=self.max_window_chars,
            fallback_radius=self.fallback_radius,
            edge_margin=self.edge_margin,
            min_window_chars=self.min_window_chars,
            min_window_words=self.min_window_words,
            max_document_chars=self.max_document_chars,
        )

    def to_scheduling_config(self) -> SchedulingConfig:
        return SchedulingConfig(
            base_debounce=self.base_debounce,
            short_debounce=self.short_debounce,
            max_debounce=self.max_debounce,
            large_edit_chars=self.large_edit_chars,
            long_document_chars=self.long_document_chars,
            length_threshold=self.length_threshold,
            window=self.to_window_config(),
        )

    def to_cache_config(self) -> SuggestionCacheConfig:
        return SuggestionCacheConfig(max_entries=self.cache_max_entries, ttl_seconds=self.cache_ttl_seconds)

    def to_request_metrics(self) -> RequestMetrics:
        return RequestMetrics(slow_request_ms=self.slow_request_ms)

    def to_request_pacer(self) -> RequestPacer:
        return RequestPacer(self.request_interval)

    def to_client_settings(self) -> ClientSettings:
        from .analysis_client import ClientSettings

        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            temperature=self.temperature,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=dict(self.default_headers) or None,
            debug_logging=self.debug_logging,
        )


class SecretVault:
    """Encrypts the API key with a Fernet key kept next to the settings file."""

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`EngineSettings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> EngineSettings:
        """Load settings from disk, then apply runtime and environment overrides."""

        payload = self._read_payload()
        settings = EngineSettings()
        if payload:
            api_key = self._decrypt_api_key(payload.pop(_API_KEY_FIELD, None))
            data = _filter_fields(payload)
            try:
                settings = EngineSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = EngineSettings()
            if api_key:
                settings = replace(settings, api_key=api_key)
        LOGGER.debug("Settings loaded from %s (model=%s)", self._path, settings.model)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")
        return self._apply_env_overrides(settings)

    def save(self, settings: EngineSettings) -> Path:
        """Persist settings with an atomic replace; the API key is stored encrypted."""

        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (api key %s)", self._path, redact_secret(api_key) or "unset")
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not hold an object", self._path)
            return {}
        return payload

    def _decrypt_api_key(self, ciphertext: str | None) -> str:
        if not ciphertext:
            return ""
        try:
            return self._vault.decrypt(ciphertext)
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt API key: %s", exc)
            return ""

    def _apply_overrides(
        self,
        settings: EngineSettings,
        overrides: Mapping[str, Any],
        *,
        source: str,
    ) -> EngineSettings:
        allowed = {item.name for item in fields(EngineSettings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: EngineSettings) -> EngineSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(EngineSettings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
