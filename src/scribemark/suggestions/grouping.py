"""Sidebar-style summaries of the active annotations."""

from __future__ import annotations

from typing import Iterable

from .models import Annotation, Severity, SuggestionCategory

__all__ = ["category_counts", "group_by_severity"]


def group_by_severity(
    annotations: Iterable[Annotation],
    category: SuggestionCategory | str | None = None,
) -> dict[Severity, list[Annotation]]:
    """Bucket annotations by effective severity, highest first, in document order."""

    wanted = SuggestionCategory.coerce(category) if category is not None else None
    groups: dict[Severity, list[Annotation]] = {severity: [] for severity in Severity}
    for annotation in sorted(annotations, key=lambda item: (item.start, item.end)):
        if wanted is not None and annotation.category is not wanted:
            continue
        groups[annotation.suggestion.effective_severity].append(annotation)
    return groups


def category_counts(annotations: Iterable[Annotation]) -> dict[str, int]:
    counts = {category.value: 0 for category in SuggestionCategory}
    for annotation in annotations:
        counts[annotation.category.value] += 1
    return counts
