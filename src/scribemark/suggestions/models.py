"""Value types for suggestions and the annotations projected from them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SuggestionCategory(str, Enum):
    """Partition of the annotation overlay."""

    GRAMMAR = "grammar"
    ACADEMIC_VOICE = "academic_voice"
    EVIDENCE = "evidence"
    ARGUMENT = "argument"
    CRITICAL_THINKING = "critical_thinking"

    @property
    def is_coaching(self) -> bool:
        """Coaching categories comment on text without proposing a rewrite."""

        return self in COACHING_CATEGORIES

    @property
    def mark_layer(self) -> int:
        """Paint order of the category's marks; lower layers are painted first.

        Paragraph-wide prompts sit underneath so narrower annotations keep
        their marks where the two overlap.
        """

        return 0 if self is SuggestionCategory.CRITICAL_THINKING else 1

    @classmethod
    def coerce(cls, value: SuggestionCategory | str) -> SuggestionCategory:
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


COACHING_CATEGORIES = frozenset(
    {SuggestionCategory.EVIDENCE, SuggestionCategory.ARGUMENT, SuggestionCategory.CRITICAL_THINKING}
)
DEFAULT_CATEGORIES: tuple[SuggestionCategory, ...] = (
    SuggestionCategory.GRAMMAR,
    SuggestionCategory.ACADEMIC_VOICE,
    SuggestionCategory.EVIDENCE,
    SuggestionCategory.ARGUMENT,
)
ARGUMENT_SUBCATEGORIES = frozenset({"claim_support", "fallacy", "consistency", "logical_flow"})
CRITICAL_THINKING_SUBCATEGORIES = frozenset(
    {"evidence", "counter-argument", "assumption", "implication", "perspective", "causation"}
)


@dataclass(slots=True, frozen=True)
class Suggestion:
    """Immutable result of one analysis call."""

    original: str
    replacement: str
    explanation: str
    category: SuggestionCategory
    severity: Severity | None = None
    subcategory: str | None = None

    @property
    def is_coaching(self) -> bool:
        return not self.replacement

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity used for de-duplication and dismissal memory."""

        return (self.category.value, " ".join(self.original.split()), self.replacement)

    @property
    def effective_severity(self) -> Severity:
        return self.severity or default_severity(self.category, self.original)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "original": self.original,
            "replacement": self.replacement,
            "explanation": self.explanation,
            "category": self.category.value,
        }
        if self.severity is not None:
            payload["severity"] = self.severity.value
        if self.subcategory:
            payload["subcategory"] = self.subcategory
        return payload


def default_severity(category: SuggestionCategory, original: str) -> Severity:
    """Severity used when the service does not report one."""

    if category is SuggestionCategory.GRAMMAR:
        return Severity.HIGH if len(original) < 5 else Severity.MEDIUM
    if category is SuggestionCategory.ARGUMENT:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass(slots=True)
class Annotation:
    """Live projection of a :class:`Suggestion` onto a document range."""

    suggestion: Suggestion
    start: int
    end: int
    annotation_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def category(self) -> SuggestionCategory:
        return self.suggestion.category

    @property
    def range(self) -> tuple[int, int]:
        return (self.start, self.end)

    def overlaps(self, start: int, end: int) -> bool:
        if start == end:
            return self.start < start < self.end
        return self.start < end and start < self.end

    def mark_attrs(self) -> dict[str, Any]:
        """Attributes stored on the document mark that renders this annotation."""

        suggestion = self.suggestion
        return {
            "annotation_id": self.annotation_id,
            "category": suggestion.category.value,
            "original": suggestion.original,
            "replacement": suggestion.replacement,
            "explanation": suggestion.explanation,
            "severity": suggestion.effective_severity.value,
        }


__all__ = [
    "ARGUMENT_SUBCATEGORIES",
    "COACHING_CATEGORIES",
    "CRITICAL_THINKING_SUBCATEGORIES",
    "DEFAULT_CATEGORIES",
    "Annotation",
    "Severity",
    "Suggestion",
    "SuggestionCategory",
    "default_severity",
]
