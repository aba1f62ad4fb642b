"""Logging setup driven by :class:`~scribemark.services.settings.EngineSettings`."""

from __future__ import annotations

import logging
import logging.handlers
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ..services.settings import redact_secret

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..services.settings import EngineSettings

__all__ = ["LoggingOptions", "SecretRedactingFilter", "get_log_path", "setup_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".scribemark" / "logs"
_LOG_FILE_NAME = "scribemark.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONFIGURED = False
_LOG_PATH: Path | None = None


@dataclass(slots=True, frozen=True)
class LoggingOptions:
    """Where and how verbosely the engine logs.

    Attributes:
        level: Threshold for the root logger and every installed handler.
        log_dir: Directory of the rotating log file; ``None`` selects
            ``~/.scribemark/logs``.
        console: Whether records are echoed to stderr as well.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files to keep.
        secrets: Values masked wherever they appear in a log message.
    """

    level: int = logging.INFO
    log_dir: Path | str | None = None
    console: bool = True
    max_bytes: int = 1_000_000
    backup_count: int = 3
    secrets: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: "EngineSettings", *, console: bool = True) -> "LoggingOptions":
        secrets = tuple(value for value in (settings.api_key.strip(),) if value)
        return cls(
            level=logging.DEBUG if settings.debug_logging else logging.INFO,
            log_dir=settings.log_dir or None,
            console=console,
            secrets=secrets,
        )

    def resolved_log_dir(self) -> Path:
        return Path(self.log_dir or _DEFAULT_LOG_DIR).expanduser()


class SecretRedactingFilter(logging.Filter):
    """Masks configured secrets in the rendered message of every record."""

    def __init__(self, secrets: tuple[str, ...] = ()) -> None:
        super().__init__()
        # Longest first so a secret containing another is masked whole.
        self._secrets = tuple(sorted({s for s in secrets if s}, key=len, reverse=True))

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            redacted = redacted.replace(secret, redact_secret(secret))
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(options: LoggingOptions | None = None, *, force: bool = False) -> Path:
    """Route root logging to a rotating file and, optionally, the console.

    Repeated calls are no-ops unless ``force`` is set, which lets an
    application re-apply logging once persisted settings are loaded.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    options = options or LoggingOptions()
    target_dir = options.resolved_log_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME
    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    redactor = SecretRedactingFilter(options.secrets)

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=options.max_bytes, backupCount=options.backup_count, encoding="utf-8"
        )
    ]
    if options.console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(options.level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)

    logging.basicConfig(level=options.level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_libraries(options.level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the configured log file, if :func:`setup_logging` ran."""

    return _LOG_PATH


def _quiet_libraries(root_level: int) -> None:
    # HTTP client chatter stays at WARNING even when the engine logs DEBUG.
    quiet_level = max(root_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
