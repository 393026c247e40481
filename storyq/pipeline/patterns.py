"""
Reference pattern catalogue loader.

Patterns are declared in reference_patterns.yaml and validated with a
pydantic schema before being compiled into ReferencePattern objects. A
pattern's `normalize` is a str.format template rendered against the match
groups ({0} is the whole match), so the catalogue stays pure data.

Loading only checks the shape of each entry. Whether a pattern actually
extracts what it claims is checked by PatternLibrary.register(), which runs
every pattern against its own examples.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from storyq.observability.logging import get_logger
from storyq.pipeline.errors import StoryQError
from storyq.pipeline.types import ConfidenceLevel, PatternExample, ReferencePattern, ToolType

logger = get_logger(__name__)

_ALLOWED_FLAGS = {
    "IGNORECASE": re.IGNORECASE,
    "MULTILINE": re.MULTILINE,
    "DOTALL": re.DOTALL,
}


class PatternExampleSpec(BaseModel):
    input: str
    expected_ref: str
    source: str | None = None


class PatternSpec(BaseModel):
    """Schema for one catalogue entry."""

    id: str = Field(min_length=1)
    name: str
    version: int = Field(ge=1)
    description: str = ""
    regex: str
    flags: list[str] = Field(default_factory=list)
    tool_type: ToolType
    confidence: ConfidenceLevel
    normalize: str
    case: Literal["lower", "upper"] | None = None
    examples: list[PatternExampleSpec] = Field(min_length=1)
    negative_examples: list[str] = Field(default_factory=list)
    supersedes: str | None = None

    @field_validator("regex")
    @classmethod
    def validate_regex(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}") from e
        return v

    @field_validator("flags")
    @classmethod
    def validate_flags(cls, v: list[str]) -> list[str]:
        unknown = [flag for flag in v if flag.upper() not in _ALLOWED_FLAGS]
        if unknown:
            raise ValueError(f"unsupported regex flags: {unknown}")
        return [flag.upper() for flag in v]

    @field_validator("normalize")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if "{" not in v:
            raise ValueError("normalize template must reference at least one group")
        return v


def template_normalizer(
    template: str, case: str | None = None
) -> Callable[[re.Match[str]], str]:
    """Build a normalize function that renders `template` from a match."""

    def normalize(match: re.Match[str]) -> str:
        groups = [match.group(0), *(g or "" for g in match.groups())]
        ref = template.format(*groups)
        if case == "lower":
            return ref.lower()
        if case == "upper":
            return ref.upper()
        return ref

    return normalize


def compile_pattern(spec: PatternSpec) -> ReferencePattern:
    flags = 0
    for flag in spec.flags:
        flags |= _ALLOWED_FLAGS[flag]

    return ReferencePattern(
        id=spec.id,
        name=spec.name,
        version=spec.version,
        description=spec.description,
        regex=re.compile(spec.regex, flags),
        tool_type=spec.tool_type,
        normalize=template_normalizer(spec.normalize, spec.case),
        confidence=spec.confidence,
        examples=tuple(
            PatternExample(input=ex.input, expected_ref=ex.expected_ref, source=ex.source)
            for ex in spec.examples
        ),
        negative_examples=tuple(spec.negative_examples),
        supersedes=spec.supersedes,
    )


def load_pattern_catalogue(path: Path) -> list[ReferencePattern]:
    """
    Load and compile every pattern in a YAML catalogue.

    Args:
        path: Catalogue file (see reference_patterns.yaml for the format)

    Returns:
        Compiled patterns in file order. Empty if the file is missing.

    Raises:
        StoryQError: If an entry does not match PatternSpec
    """
    if not path.exists():
        logger.warning("Pattern catalogue not found at %s, using empty catalogue", path)
        return []

    with open(path, encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    entries = config.get("patterns") or []
    patterns: list[ReferencePattern] = []
    for index, entry in enumerate(entries):
        try:
            spec = PatternSpec.model_validate(entry)
        except ValidationError as e:
            entry_id = entry.get("id", f"#{index}") if isinstance(entry, dict) else f"#{index}"
            raise StoryQError(f"Invalid pattern entry {entry_id} in {path}: {e}") from e
        patterns.append(compile_pattern(spec))

    logger.info(
        "Loaded pattern catalogue version %s: %d patterns",
        config.get("version", "unknown"),
        len(patterns),
    )
    return patterns
