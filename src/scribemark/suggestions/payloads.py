"""Boundary validation for loosely typed analysis payloads."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from jsonschema import Draft202012Validator

from ..errors import MalformedPayloadError
from .models import (
    ARGUMENT_SUBCATEGORIES,
    CRITICAL_THINKING_SUBCATEGORIES,
    Severity,
    Suggestion,
    SuggestionCategory,
)

LOGGER = logging.getLogger(__name__)

ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["suggestions"],
    "properties": {"suggestions": {"type": "array"}},
}

SUGGESTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["original"],
    "properties": {
        "original": {"type": "string", "pattern": r"\S"},
        "suggestion": {"type": ["string", "null"]},
        "replacement": {"type": ["string", "null"]},
        "explanation": {"type": ["string", "null"]},
        "category": {"type": ["string", "null"]},
        "severity": {"type": ["string", "null"]},
    },
}

PROMPT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["prompt"],
    "properties": {
        "prompt": {
            "oneOf": [
                {"type": "null"},
                {
                    "type": "object",
                    "required": ["question"],
                    "properties": {
                        "question": {"type": "string", "pattern": r"\S"},
                        "type": {"type": ["string", "null"]},
                        "explanation": {"type": ["string", "null"]},
                    },
                },
            ]
        }
    },
}

_ENVELOPE_VALIDATOR = Draft202012Validator(ENVELOPE_SCHEMA)
_SUGGESTION_VALIDATOR = Draft202012Validator(SUGGESTION_SCHEMA)
_PROMPT_VALIDATOR = Draft202012Validator(PROMPT_SCHEMA)

__all__ = [
    "ENVELOPE_SCHEMA",
    "PROMPT_SCHEMA",
    "SUGGESTION_SCHEMA",
    "coerce_suggestions",
    "parse_envelope",
    "parse_prompt",
]


def parse_envelope(category: SuggestionCategory | str, payload: Any) -> list[Suggestion]:
    """Validate a ``{"suggestions": [...]}`` envelope and return typed suggestions.

    Raises:
        MalformedPayloadError: If the envelope itself is structurally invalid.
    """

    resolved = SuggestionCategory.coerce(category)
    errors = sorted(_ENVELOPE_VALIDATOR.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        raise MalformedPayloadError(
            f"Invalid analysis payload: {errors[0].message}",
            category=resolved.value,
        )
    return coerce_suggestions(resolved, payload["suggestions"])


def parse_prompt(category: SuggestionCategory | str, payload: Any, paragraph: str) -> list[Suggestion]:
    """Turn a ``{"prompt": {...} | null}`` answer into at most one suggestion.

    The prompt is anchored on the whole paragraph it was asked about. Its
    question becomes the explanation, followed by the reason when one is given.

    Raises:
        MalformedPayloadError: If the answer does not follow the prompt shape.
    """

    resolved = SuggestionCategory.coerce(category)
    errors = sorted(_PROMPT_VALIDATOR.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        raise MalformedPayloadError(
            f"Invalid prompt payload: {errors[0].message}",
            category=resolved.value,
        )
    prompt = payload["prompt"]
    if prompt is None or not paragraph.strip():
        return []
    explanation = prompt["question"].strip()
    reason = prompt.get("explanation")
    if isinstance(reason, str) and reason.strip():
        explanation = f"{explanation}\n\n{reason.strip()}"
    item = {
        "original": paragraph.strip(),
        "suggestion": "",
        "explanation": explanation,
        "category": prompt.get("type"),
    }
    return coerce_suggestions(resolved, [item])


def coerce_suggestions(
    category: SuggestionCategory | str,
    items: Iterable[Suggestion | Mapping[str, Any]] | None,
) -> list[Suggestion]:
    """Convert raw items into :class:`Suggestion` values stamped with ``category``.

    Structurally invalid items are dropped. Duplicates (same original and
    replacement) keep their first occurrence.
    """

    resolved = SuggestionCategory.coerce(category)
    suggestions: list[Suggestion] = []
    seen: set[tuple[str, str, str]] = set()
    for item in items or ():
        suggestion = _coerce_item(resolved, item)
        if suggestion is None:
            continue
        if suggestion.key in seen:
            continue
        seen.add(suggestion.key)
        suggestions.append(suggestion)
    return suggestions


def _coerce_item(category: SuggestionCategory, item: Suggestion | Mapping[str, Any]) -> Suggestion | None:
    if isinstance(item, Suggestion):
        if item.category is category:
            return item
        return Suggestion(
            original=item.original,
            replacement=item.replacement,
            explanation=item.explanation,
            category=category,
            severity=item.severity,
            subcategory=item.subcategory,
        )
    if not isinstance(item, Mapping) or not _SUGGESTION_VALIDATOR.is_valid(item):
        LOGGER.debug("Dropping invalid %s suggestion payload: %r", category.value, item)
        return None

    original = str(item["original"])
    replacement = _first_text(item, ("replacement", "suggestion"))
    explanation = _first_text(item, ("explanation",))
    if category.is_coaching:
        replacement = ""
    elif not replacement or replacement == original:
        LOGGER.debug("Dropping %s suggestion without a usable replacement: %r", category.value, original)
        return None

    return Suggestion(
        original=original,
        replacement=replacement,
        explanation=explanation,
        category=category,
        severity=_coerce_severity(item.get("severity")),
        subcategory=_coerce_subcategory(category, item.get("category")),
    )


def _first_text(item: Mapping[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _coerce_severity(value: Any) -> Severity | None:
    if not isinstance(value, str):
        return None
    try:
        return Severity(value.strip().lower())
    except ValueError:
        return None


def _coerce_subcategory(category: SuggestionCategory, reported: Any) -> str | None:
    # Only coaching categories may refine themselves; everything else is stamped.
    if not category.is_coaching or not isinstance(reported, str):
        return None
    value = reported.strip().lower()
    if category is SuggestionCategory.ARGUMENT and value not in ARGUMENT_SUBCATEGORIES:
        return None
    if category is SuggestionCategory.CRITICAL_THINKING and value not in CRITICAL_THINKING_SUBCATEGORIES:
        return None
    if value == category.value:
        return None
    return value or None
