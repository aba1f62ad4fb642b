"""Suggestion reconciliation engine for structured documents."""

from .editor.document_model import StructuredDocument
from .editor.position_mapper import DocumentAddress, PositionMapper
from .errors import (
    AnalysisServiceError,
    DocumentPositionError,
    MalformedPayloadError,
    OffsetOutOfRangeError,
    ScribemarkError,
)
from .events import EventBus
from .suggestions.cache import SuggestionCache, SuggestionCacheConfig, compute_fingerprint
from .suggestions.controller import CategoryStatus, SuggestionLifecycleController
from .suggestions.locator import find_occurrences
from .suggestions.metrics import RequestMetrics, RequestPacer
from .suggestions.models import Annotation, Severity, Suggestion, SuggestionCategory
from .suggestions.overlay import AnnotationOverlayManager
from .suggestions.scheduler import AnalysisScheduler, CategoryState, SchedulingConfig

__version__ = "0.1.0"

__all__ = [
    "AnalysisScheduler",
    "AnalysisServiceError",
    "Annotation",
    "AnnotationOverlayManager",
    "CategoryState",
    "CategoryStatus",
    "DocumentAddress",
    "DocumentPositionError",
    "EventBus",
    "MalformedPayloadError",
    "OffsetOutOfRangeError",
    "PositionMapper",
    "RequestMetrics",
    "RequestPacer",
    "SchedulingConfig",
    "ScribemarkError",
    "Severity",
    "StructuredDocument",
    "Suggestion",
    "SuggestionCache",
    "SuggestionCacheConfig",
    "SuggestionCategory",
    "SuggestionLifecycleController",
    "__version__",
    "compute_fingerprint",
    "find_occurrences",
]
