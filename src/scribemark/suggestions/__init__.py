"""Suggestion lifecycle: location, overlay, scheduling, caching and control."""

from .cache import SuggestionCache, SuggestionCacheConfig, SuggestionCacheStats, compute_fingerprint
from .controller import AnalysisService, CategoryStatus, SuggestionLifecycleController
from .grouping import category_counts, group_by_severity
from .locator import closest_occurrence, find_occurrences, matches_exactly
from .metrics import LatencySummary, RequestMetrics, RequestPacer
from .models import (
    COACHING_CATEGORIES,
    DEFAULT_CATEGORIES,
    Annotation,
    Severity,
    Suggestion,
    SuggestionCategory,
)
from .overlay import AnnotationOverlayManager
from .payloads import coerce_suggestions, parse_envelope, parse_prompt
from .scheduler import AnalysisScheduler, CategoryPolicy, CategoryState, SchedulingConfig
from .window import AnalysisWindow, WindowConfig, extract_window, paragraph_window

__all__ = [
    "COACHING_CATEGORIES",
    "DEFAULT_CATEGORIES",
    "AnalysisScheduler",
    "AnalysisService",
    "AnalysisWindow",
    "Annotation",
    "AnnotationOverlayManager",
    "CategoryPolicy",
    "CategoryState",
    "CategoryStatus",
    "LatencySummary",
    "RequestMetrics",
    "RequestPacer",
    "SchedulingConfig",
    "Severity",
    "Suggestion",
    "SuggestionCache",
    "SuggestionCacheConfig",
    "SuggestionCacheStats",
    "SuggestionCategory",
    "SuggestionLifecycleController",
    "WindowConfig",
    "category_counts",
    "closest_occurrence",
    "coerce_suggestions",
    "compute_fingerprint",
    "extract_window",
    "find_occurrences",
    "group_by_severity",
    "matches_exactly",
    "paragraph_window",
    "parse_envelope",
    "parse_prompt",
]
