"""
Tests for the Pattern Library.

A pattern must prove itself against its own examples before it is stored:
every positive example normalizes to the expected reference and no
negative example matches.
"""

from __future__ import annotations

import re

import pytest

from storyq.pipeline.errors import PatternValidationError, StoryQError
from storyq.pipeline.pattern_library import (
    PatternLibrary,
    build_library,
    default_library,
    validate_pattern,
)
from storyq.pipeline.patterns import template_normalizer
from storyq.pipeline.types import (
    ConfidenceLevel,
    ErrorCode,
    PatternExample,
    ReferencePattern,
    ToolType,
)


def ticket_pattern(
    pattern_id: str = "ticket-v1",
    version: int = 1,
    examples: tuple[PatternExample, ...] = (PatternExample("Fixed AUTH-123", "AUTH-123"),),
    negative_examples: tuple[str, ...] = ("auth-123",),
    confidence: ConfidenceLevel = ConfidenceLevel.HIGH,
    supersedes: str | None = None,
    tool_type: ToolType = ToolType.JIRA,
) -> ReferencePattern:
    return ReferencePattern(
        id=pattern_id,
        name="Ticket",
        version=version,
        regex=re.compile(r"\b([A-Z]{2,10})-(\d+)\b"),
        tool_type=tool_type,
        normalize=template_normalizer("{1}-{2}"),
        confidence=confidence,
        examples=examples,
        negative_examples=negative_examples,
        supersedes=supersedes,
    )


class TestValidatePattern:
    def test_valid_pattern_has_no_failures(self):
        assert validate_pattern(ticket_pattern()) == []

    def test_wrong_expected_ref_is_reported(self):
        pattern = ticket_pattern(examples=(PatternExample("Fixed AUTH-123", "AUTH-124"),))
        failures = validate_pattern(pattern)
        assert len(failures) == 1
        assert "AUTH-124" in failures[0]

    def test_example_without_match_is_reported(self):
        pattern = ticket_pattern(examples=(PatternExample("nothing here", "AUTH-1"),))
        assert any("no match" in f for f in validate_pattern(pattern))

    def test_matching_negative_example_is_reported(self):
        pattern = ticket_pattern(negative_examples=("Mentions CORE-9",))
        failures = validate_pattern(pattern)
        assert failures == ["negative example 'Mentions CORE-9' matched 'CORE-9'"]

    def test_pattern_without_examples_is_invalid(self):
        assert validate_pattern(ticket_pattern(examples=())) == ["pattern declares no positive examples"]

    def test_extra_refs_in_positive_example_are_reported(self):
        pattern = ticket_pattern(examples=(PatternExample("AUTH-1 blocks CORE-2", "CORE-2"),))
        failures = validate_pattern(pattern)

        assert len(failures) == 1
        assert "['AUTH-1', 'CORE-2']" in failures[0]

    def test_repeated_expected_ref_is_valid(self):
        pattern = ticket_pattern(examples=(PatternExample("AUTH-1, see AUTH-1 again", "AUTH-1"),))
        assert validate_pattern(pattern) == []

    def test_overbroad_regex_is_rejected(self):
        pattern = ReferencePattern(
            id="word-v1",
            name="Any word",
            version=1,
            regex=re.compile(r"\b[A-Za-z]+(?:-\d+)?\b"),
            tool_type=ToolType.JIRA,
            normalize=template_normalizer("{0}"),
            confidence=ConfidenceLevel.LOW,
            examples=(PatternExample("Fixed bug in AUTH-123", "AUTH-123"),),
        )

        with pytest.raises(PatternValidationError) as exc_info:
            PatternLibrary().register(pattern)
        assert "expected only 'AUTH-123'" in exc_info.value.failures[0]


class TestPatternLibraryRegistration:
    def test_register_valid_pattern(self):
        library = PatternLibrary()
        library.register(ticket_pattern())
        assert "ticket-v1" in library
        assert library.get("ticket-v1").version == 1
        assert len(library) == 1

    def test_invalid_pattern_is_rejected_and_not_stored(self):
        library = PatternLibrary()
        bad = ticket_pattern(negative_examples=("CORE-9",))

        with pytest.raises(PatternValidationError) as exc_info:
            library.register(bad)

        assert exc_info.value.pattern_id == "ticket-v1"
        assert exc_info.value.code is ErrorCode.PATTERN_VALIDATION_FAILED
        assert exc_info.value.failures
        assert "ticket-v1" not in library

    def test_duplicate_id_is_rejected(self):
        library = PatternLibrary([ticket_pattern()])
        with pytest.raises(StoryQError, match="Duplicate"):
            library.register(ticket_pattern())

    def test_frozen_library_rejects_registration(self):
        library = PatternLibrary([ticket_pattern()]).freeze()
        assert library.frozen
        with pytest.raises(StoryQError, match="frozen"):
            library.register(ticket_pattern("ticket-v2", version=2))


class TestListActive:
    def test_superseded_pattern_is_hidden_but_still_registered(self):
        library = PatternLibrary(
            [ticket_pattern(), ticket_pattern("ticket-v2", version=2, supersedes="ticket-v1")]
        )
        assert [p.id for p in library.list_active()] == ["ticket-v2"]
        assert library.get("ticket-v1") is not None

    def test_filter_by_tool_type(self):
        library = PatternLibrary(
            [ticket_pattern(), ticket_pattern("gh-v1", tool_type=ToolType.GITHUB)]
        )
        assert [p.id for p in library.list_active(tool_types=[ToolType.GITHUB])] == ["gh-v1"]
        assert [p.id for p in library.list_active(tool_types=["jira"])] == ["ticket-v1"]

    def test_filter_by_min_confidence(self):
        library = PatternLibrary(
            [
                ticket_pattern("high-v1"),
                ticket_pattern("medium-v1", confidence=ConfidenceLevel.MEDIUM),
                ticket_pattern("low-v1", confidence=ConfidenceLevel.LOW),
            ]
        )
        ids = {p.id for p in library.list_active(min_confidence=ConfidenceLevel.MEDIUM)}
        assert ids == {"high-v1", "medium-v1"}

    def test_newest_version_first_within_tool_type(self):
        library = PatternLibrary([ticket_pattern("a-v1", version=1), ticket_pattern("b-v3", version=3)])
        assert [p.id for p in library.list_active()] == ["b-v3", "a-v1"]


class TestDefaultLibrary:
    """The shipped catalogue must load and every entry must pass its own examples."""

    def test_default_library_is_frozen_and_cached(self):
        library = default_library()
        assert library.frozen
        assert default_library() is library

    def test_every_shipped_pattern_validates(self):
        for pattern in default_library().all():
            assert validate_pattern(pattern) == [], pattern.id

    def test_every_shipped_pattern_has_negative_examples(self):
        for pattern in default_library().all():
            assert pattern.negative_examples, pattern.id

    def test_catalogue_covers_core_tools(self):
        tools = {p.tool_type for p in default_library().all()}
        assert {ToolType.JIRA, ToolType.GITHUB, ToolType.CONFLUENCE, ToolType.SLACK, ToolType.GOOGLE} <= tools

    def test_jira_v1_is_superseded_by_v2(self):
        active = {p.id for p in default_library().list_active()}
        assert "jira-ticket-v2" in active
        assert "jira-ticket-v1" not in active
        assert "jira-ticket-v1" in default_library()

    def test_build_library_from_missing_file_is_empty(self, tmp_path):
        library = build_library(tmp_path / "missing.yaml")
        assert len(library) == 0
        assert library.frozen
