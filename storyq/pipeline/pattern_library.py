"""
Pattern Library - versioned, self-validating reference extraction rules.

A pattern is only allowed to run against real activity text after it has
proven itself against its own fixtures: every positive example must
normalize to its expected reference and no negative example may match.
register() enforces this; a failing pattern is never stored.

The default library is built from the YAML catalogue once per process and
frozen, so concurrent readers need no locking.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter
from storyq.pipeline.errors import PatternValidationError, StoryQError
from storyq.pipeline.patterns import load_pattern_catalogue
from storyq.pipeline.types import ConfidenceLevel, ReferencePattern, ToolType

logger = get_logger(__name__)


def validate_pattern(pattern: ReferencePattern) -> list[str]:
    """
    Run a pattern against its own examples.

    Returns:
        Human-readable failures. Empty means the pattern is valid.

    Side Effects:
        None (pure function)
    """
    failures: list[str] = []

    if not pattern.examples:
        failures.append("pattern declares no positive examples")

    for example in pattern.examples:
        try:
            refs = [pattern.normalize(m) for m in pattern.regex.finditer(example.input)]
        except Exception as e:
            failures.append(f"normalize raised on {example.input!r}: {e}")
            continue
        if not refs:
            failures.append(f"no match in {example.input!r} (expected {example.expected_ref!r})")
        elif set(refs) != {example.expected_ref}:
            # Every match in a positive example must normalize to the expected ref
            failures.append(
                f"{example.input!r} normalized to {sorted(set(refs))!r}, expected only {example.expected_ref!r}"
            )

    for negative in pattern.negative_examples:
        match = pattern.regex.search(negative)
        if match is not None:
            failures.append(f"negative example {negative!r} matched {match.group(0)!r}")

    return failures


class PatternLibrary:
    """Registry of validated patterns keyed by id."""

    def __init__(self, patterns: Iterable[ReferencePattern] = ()) -> None:
        self._patterns: dict[str, ReferencePattern] = {}
        self._frozen = False
        for pattern in patterns:
            self.register(pattern)

    def register(self, pattern: ReferencePattern) -> None:
        """
        Validate and store a pattern.

        Raises:
            PatternValidationError: If the pattern fails its examples
            StoryQError: If the id is taken or the library is frozen
        """
        if self._frozen:
            raise StoryQError(f"Pattern library is frozen; cannot register {pattern.id!r}")
        if pattern.id in self._patterns:
            raise StoryQError(f"Duplicate pattern id {pattern.id!r}")

        failures = validate_pattern(pattern)
        if failures:
            counter("patterns.rejected")
            logger.error("Rejected pattern %s: %s", pattern.id, "; ".join(failures))
            raise PatternValidationError(pattern.id, failures)

        self._patterns[pattern.id] = pattern
        counter("patterns.registered")
        logger.debug("Registered pattern %s v%d (%s)", pattern.id, pattern.version, pattern.tool_type.value)

    def freeze(self) -> PatternLibrary:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, pattern_id: str) -> ReferencePattern | None:
        return self._patterns.get(pattern_id)

    def all(self) -> list[ReferencePattern]:
        return list(self._patterns.values())

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._patterns

    def list_active(
        self,
        tool_types: Iterable[ToolType | str] | None = None,
        min_confidence: ConfidenceLevel | None = None,
    ) -> list[ReferencePattern]:
        """
        Patterns eligible to run, newest first within each tool type.

        A pattern superseded by another registered pattern is hidden.

        Args:
            tool_types: Restrict to these tool types (None = all)
            min_confidence: Drop patterns below this tier (None = all)
        """
        superseded = {p.supersedes for p in self._patterns.values() if p.supersedes}
        wanted = {ToolType(t) for t in tool_types} if tool_types is not None else None

        active = [
            p
            for p in self._patterns.values()
            if p.id not in superseded
            and (wanted is None or p.tool_type in wanted)
            and (min_confidence is None or p.confidence.rank >= min_confidence.rank)
        ]
        active.sort(key=lambda p: (p.tool_type.value, -p.version, p.id))
        return active


def build_library(path: Path | None = None) -> PatternLibrary:
    """Load, validate and freeze a library from a catalogue file."""
    catalogue_path = path or config.PATTERNS_PATH
    library = PatternLibrary(load_pattern_catalogue(catalogue_path)).freeze()
    logger.info("Pattern library ready: %d patterns from %s", len(library), catalogue_path)
    return library


@lru_cache(maxsize=1)
def default_library() -> PatternLibrary:
    """Process-wide frozen library built from the configured catalogue."""
    return build_library()
