"""Shared helpers."""

from .logging import LoggingOptions, SecretRedactingFilter, get_log_path, setup_logging

__all__ = ["LoggingOptions", "SecretRedactingFilter", "get_log_path", "setup_logging"]
