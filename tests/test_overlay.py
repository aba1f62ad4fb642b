"""Tests for the annotation overlay manager."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from scribemark.editor.document_model import StructuredDocument
from scribemark.editor.position_mapper import PositionMapper
from scribemark.events import AnnotationsChanged, EventBus
from scribemark.suggestions.models import Annotation, Suggestion, SuggestionCategory
from scribemark.suggestions.overlay import AnnotationOverlayManager


def _annotation(
    original: str,
    start: int,
    end: int,
    category: SuggestionCategory = SuggestionCategory.GRAMMAR,
    replacement: str = "fix",
) -> Annotation:
    return Annotation(Suggestion(original, replacement, "", category), start, end)


def _friend() -> Annotation:
    return _annotation("Me and my friend", 1, 17, replacement="My friend and I")


def _thinks() -> Annotation:
    return _annotation("thinks", 18, 24, replacement="think")


def _spans(document: StructuredDocument) -> list[tuple[int, int, str]]:
    return [(start, end, mark.attrs["annotation_id"]) for start, end, mark in document.mark_spans("suggestion")]


@pytest.fixture
def overlay(scenario_document: StructuredDocument) -> AnnotationOverlayManager:
    return AnnotationOverlayManager(scenario_document)


# =============================================================================
# Category refresh
# =============================================================================


class TestReplaceCategory:
    def test_installs_marks(self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument) -> None:
        friend, thinks = _friend(), _thinks()

        installed = overlay.replace_category("grammar", [thinks, friend])

        assert installed == [friend, thinks]
        assert _spans(scenario_document) == [
            (1, 17, friend.annotation_id),
            (18, 24, thinks.annotation_id),
        ]
        assert overlay.list_active() == (friend, thinks)
        assert overlay.get(thinks.annotation_id) is thinks
        assert overlay.counts() == {"grammar": 2}

    def test_refresh_is_idempotent(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        overlay.replace_category("grammar", [_friend(), _thinks()])
        overlay.replace_category("grammar", [_friend(), _thinks()])

        assert len(overlay) == 2
        assert [(start, end) for start, end, _ in _spans(scenario_document)] == [(1, 17), (18, 24)]

    def test_other_categories_are_untouched(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        voice = _annotation("good", 33, 37, SuggestionCategory.ACADEMIC_VOICE, "beneficial")
        overlay.replace_category("grammar", [_friend()])
        overlay.replace_category("academic_voice", [voice])

        overlay.replace_category("grammar", [])

        assert overlay.list_active() == (voice,)
        assert _spans(scenario_document) == [(33, 37, voice.annotation_id)]

    def test_overlaps_within_a_category_keep_the_first(self, overlay: AnnotationOverlayManager) -> None:
        friend = _friend()
        inner = _annotation("my friend", 8, 17)

        installed = overlay.replace_category("grammar", [inner, friend])

        assert installed == [friend]

    def test_wrong_category_is_ignored(
        self, overlay: AnnotationOverlayManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        voice = _annotation("good", 33, 37, SuggestionCategory.ACADEMIC_VOICE)
        assert overlay.replace_category("grammar", [voice]) == []
        assert "Ignoring academic_voice annotation" in caplog.text

    def test_invalid_range_is_skipped(
        self, overlay: AnnotationOverlayManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        installed = overlay.replace_category("grammar", [_annotation("x", 30, 100), _friend()])

        assert [annotation.range for annotation in installed] == [(1, 17)]
        assert "invalid range" in caplog.text

    def test_failing_mark_application_is_contained(
        self,
        overlay: AnnotationOverlayManager,
        scenario_document: StructuredDocument,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        monkeypatch.setattr(scenario_document, "add_mark", MagicMock(side_effect=RuntimeError("editor busy")))

        assert overlay.replace_category("grammar", [_friend()]) == []
        assert len(overlay) == 0
        assert "Failed to apply grammar annotation" in caplog.text

    def test_newest_category_wins_shared_text(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        friend = _friend()
        voice = _annotation("my friend", 8, 17, SuggestionCategory.ACADEMIC_VOICE, "my companion")
        overlay.replace_category("grammar", [friend])
        overlay.replace_category("academic_voice", [voice])

        assert _spans(scenario_document) == [
            (1, 8, friend.annotation_id),
            (8, 17, voice.annotation_id),
        ]

        refreshed = _friend()
        overlay.replace_category("grammar", [refreshed])

        assert _spans(scenario_document) == [(1, 17, refreshed.annotation_id)]
        assert len(overlay) == 2

    def test_paragraph_prompts_stay_beneath_other_marks(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        friend, thinks = _friend(), _thinks()
        prompt = _annotation(
            "Me and my friend thinks this is good.", 1, 38, SuggestionCategory.CRITICAL_THINKING, ""
        )
        overlay.replace_category("grammar", [friend, thinks])
        overlay.replace_category("critical_thinking", [prompt])

        assert _spans(scenario_document) == [
            (1, 17, friend.annotation_id),
            (17, 18, prompt.annotation_id),
            (18, 24, thinks.annotation_id),
            (24, 38, prompt.annotation_id),
        ]
        assert len(overlay) == 3

    def test_publishes_counts(self, scenario_document: StructuredDocument) -> None:
        bus = EventBus()
        seen: list[AnnotationsChanged] = []
        bus.subscribe(AnnotationsChanged, seen.append)
        overlay = AnnotationOverlayManager(scenario_document, event_bus=bus)

        overlay.replace_category("grammar", [_friend(), _thinks()])
        overlay.clear()

        assert [(event.category, event.count) for event in seen] == [("grammar", 2), ("grammar", 0)]


# =============================================================================
# Removal
# =============================================================================


class TestRemoval:
    def test_remove_in_range(self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument) -> None:
        friend, thinks = _friend(), _thinks()
        overlay.replace_category("grammar", [friend, thinks])

        removed = overlay.remove_annotations_in_range(20, 22)

        assert removed == [thinks]
        assert _spans(scenario_document) == [(1, 17, friend.annotation_id)]

    def test_collapsed_range_hits_enclosing_annotation_only(self, overlay: AnnotationOverlayManager) -> None:
        friend = _friend()
        overlay.replace_category("grammar", [friend, _thinks()])

        assert overlay.remove_annotations_in_range(17, 17) == []
        assert overlay.remove_annotations_in_range(10, 10) == [friend]

    def test_removal_restores_overlapped_marks(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        friend = _friend()
        voice = _annotation("my friend", 8, 17, SuggestionCategory.ACADEMIC_VOICE, "my companion")
        overlay.replace_category("grammar", [friend])
        overlay.replace_category("academic_voice", [voice])

        assert overlay.remove_annotation(voice)

        assert _spans(scenario_document) == [(1, 17, friend.annotation_id)]
        assert not overlay.remove_annotation(voice)

    def test_clear(self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument) -> None:
        overlay.replace_category("grammar", [_friend(), _thinks()])
        overlay.clear()
        assert len(overlay) == 0
        assert scenario_document.mark_spans("suggestion") == []


# =============================================================================
# Following edits
# =============================================================================


class TestEditTracking:
    @pytest.fixture
    def tracked(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> AnnotationOverlayManager:
        def follow(document: StructuredDocument, event) -> None:
            for change in event.changes:
                overlay.map_change(change)

        scenario_document.add_listener(follow)
        return overlay

    def test_insertion_before_shifts_annotations(
        self, tracked: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        friend, thinks = _friend(), _thinks()
        tracked.replace_category("grammar", [friend, thinks])

        scenario_document.insert_text(1, "Well, ")

        assert (friend.range, thinks.range) == ((7, 23), (24, 30))
        assert scenario_document.text_between(*friend.range) == "Me and my friend"
        assert scenario_document.text_between(*thinks.range) == "thinks"

    def test_insertion_at_annotation_end_does_not_grow_it(
        self, tracked: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        thinks = _thinks()
        tracked.replace_category("grammar", [thinks])

        scenario_document.insert_text(24, "!")

        assert thinks.range == (18, 24)

    def test_edit_inside_destroys_annotation(
        self, tracked: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        friend, thinks = _friend(), _thinks()
        tracked.replace_category("grammar", [friend, thinks])

        scenario_document.delete_range(3, 5)

        assert tracked.list_active() == (thinks,)
        assert thinks.range == (16, 22)
        assert _spans(scenario_document) == [(16, 22, thinks.annotation_id)]

    def test_mark_changes_are_ignored(self, tracked: AnnotationOverlayManager) -> None:
        friend = _friend()
        tracked.replace_category("grammar", [friend])
        assert friend.range == (1, 17)

    def test_prune_unconfirmed(
        self, overlay: AnnotationOverlayManager, scenario_document: StructuredDocument
    ) -> None:
        friend, thinks = _friend(), _thinks()
        overlay.replace_category("grammar", [friend, thinks])
        scenario_document.replace_range(18, 24, "thinkz")

        pruned = overlay.prune_unconfirmed(PositionMapper(scenario_document))

        assert pruned == [thinks]
        assert overlay.list_active() == (friend,)
