"""
Module: types
Purpose: Shared domain types for the story pipeline.
Dependencies: none outside the standard library

Stable import boundary. Every stage (pattern library, reference extractor,
cluster builder, hydrator, participation analyzer, narrative extractor,
enrichment, orchestrator) imports its value objects from here, which keeps
the stage modules free of circular imports.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ToolType(str, Enum):
    """Source tool of an activity or pattern.

    Extends str so activity.source may be given as a plain string ("jira")
    and still compare equal to ToolType.JIRA.
    """

    JIRA = "jira"
    GITHUB = "github"
    CONFLUENCE = "confluence"
    FIGMA = "figma"
    SLACK = "slack"
    OUTLOOK = "outlook"
    GOOGLE = "google"
    GENERIC = "generic"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {ConfidenceLevel.HIGH: 3, ConfidenceLevel.MEDIUM: 2, ConfidenceLevel.LOW: 1}


class ParticipationLevel(str, Enum):
    """How strongly the persona was involved in an activity (strongest first)."""

    INITIATOR = "initiator"
    CONTRIBUTOR = "contributor"
    MENTIONED = "mentioned"
    OBSERVER = "observer"

    @property
    def rank(self) -> int:
        return _PARTICIPATION_RANK[self]


_PARTICIPATION_RANK = {
    ParticipationLevel.INITIATOR: 4,
    ParticipationLevel.CONTRIBUTOR: 3,
    ParticipationLevel.MENTIONED: 2,
    ParticipationLevel.OBSERVER: 1,
}


class NoMatchReason(str, Enum):
    NO_INPUT = "no-input"
    REGEX_NO_MATCH = "regex-no-match"


class WarningCode(str, Enum):
    """Non-fatal conditions reported alongside stage data."""

    TEXT_TRUNCATED = "TEXT_TRUNCATED"
    NO_PATTERNS = "NO_PATTERNS"
    DATE_FILTERED = "DATE_FILTERED"
    ACTIVITIES_WITHOUT_REFS = "ACTIVITIES_WITHOUT_REFS"
    VALIDATION_GATES_FAILED = "VALIDATION_GATES_FAILED"
    ACTIVITIES_NOT_FOUND = "ACTIVITIES_NOT_FOUND"
    NOT_CONFIGURED = "NOT_CONFIGURED"


class ErrorCode(str, Enum):
    """Stage error codes. Input errors are caller mistakes and never retried."""

    # Input errors
    INVALID_ACTIVITIES = "INVALID_ACTIVITIES"
    INVALID_CLUSTER = "INVALID_CLUSTER"
    INVALID_FRAMEWORK = "INVALID_FRAMEWORK"
    INVALID_PERSONA = "INVALID_PERSONA"
    CLUSTER_NOT_FOUND = "CLUSTER_NOT_FOUND"
    # Partial data
    NO_ACTIVITIES_FOUND = "NO_ACTIVITIES_FOUND"
    ACTIVITY_LOOKUP_FAILED = "ACTIVITY_LOOKUP_FAILED"
    # Dependent services
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_ERROR = "LLM_ERROR"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    # Pattern integrity
    PATTERN_ERROR = "PATTERN_ERROR"
    PATTERN_VALIDATION_FAILED = "PATTERN_VALIDATION_FAILED"
    # Unexpected exception inside a stage
    STAGE_CRASHED = "STAGE_CRASHED"


# ---------------------------------------------------------------------------
# Stage result envelope
# ---------------------------------------------------------------------------


@dataclass
class ProcessorDiagnostics:
    """Timing and size metrics for one stage invocation."""

    processor: str
    processing_time_ms: float = 0.0
    input_metrics: dict[str, float] = field(default_factory=dict)
    output_metrics: dict[str, float] = field(default_factory=dict)
    debug: dict[str, Any] | None = None


@dataclass
class PipelineWarning:
    code: WarningCode
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineError:
    """A stage failure. `recoverable` errors leave usable (partial) data behind."""

    code: ErrorCode
    message: str
    recoverable: bool = False
    cause: BaseException | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessorResult(Generic[T]):
    """Uniform envelope returned by every stage: data + diagnostics + warnings + errors."""

    data: T | None
    diagnostics: ProcessorDiagnostics
    warnings: list[PipelineWarning] = field(default_factory=list)
    errors: list[PipelineError] = field(default_factory=list)

    @property
    def fatal_errors(self) -> list[PipelineError]:
        return [e for e in self.errors if not e.recoverable]

    @property
    def success(self) -> bool:
        return self.data is not None and not self.fatal_errors

    def warning(self, code: WarningCode) -> PipelineWarning | None:
        return next((w for w in self.warnings if w.code == code), None)

    def has_warning(self, code: WarningCode) -> bool:
        return self.warning(code) is not None

    def error(self, code: ErrorCode) -> PipelineError | None:
        return next((e for e in self.errors if e.code == code), None)

    @classmethod
    def failed(
        cls,
        diagnostics: ProcessorDiagnostics,
        error: PipelineError,
        warnings: list[PipelineWarning] | None = None,
    ) -> ProcessorResult[T]:
        return cls(data=None, diagnostics=diagnostics, warnings=list(warnings or []), errors=[error])


# ---------------------------------------------------------------------------
# Pattern library / reference extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternExample:
    input: str
    expected_ref: str
    source: str | None = None


@dataclass(frozen=True)
class ReferencePattern:
    """
    A versioned, self-testing reference extraction rule.

    `normalize` maps a regex match to the canonical reference string; the
    positive `examples` and `negative_examples` are the fixtures the pattern
    must pass before the library lets it run.
    """

    id: str
    name: str
    version: int
    regex: re.Pattern[str]
    tool_type: ToolType
    normalize: Callable[[re.Match[str]], str]
    confidence: ConfidenceLevel
    examples: tuple[PatternExample, ...] = ()
    negative_examples: tuple[str, ...] = ()
    supersedes: str | None = None
    description: str = ""


@dataclass(frozen=True)
class MatchLocation:
    start: int
    end: int
    context: str
    fragment_index: int = 0


@dataclass(frozen=True)
class PatternMatch:
    ref: str
    pattern_id: str
    confidence: ConfidenceLevel
    location: MatchLocation
    raw_match: str
    pattern_version: int = 1


@dataclass
class PatternAnalysis:
    pattern_id: str
    match_count: int
    no_match_reason: NoMatchReason | None = None
    near_misses: list[str] | None = None


@dataclass
class RefExtractionOptions:
    debug: bool = False
    pattern_ids: list[str] | None = None
    tool_types: list[ToolType] | None = None
    min_confidence: ConfidenceLevel | None = None
    # None: scan the URL for activities, skip it for bare text extraction
    include_source_url: bool | None = None


@dataclass
class RefExtractionOutput:
    refs: list[str]
    matches: list[PatternMatch]
    pattern_analysis: list[PatternAnalysis]
    # Tier of the winning match per canonical ref
    ref_confidence: dict[str, ConfidenceLevel] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Activities and clusters
# ---------------------------------------------------------------------------


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Activity:
    """A work activity from an external store. Read-only to the pipeline."""

    id: str
    source: str
    title: str
    description: str | None = None
    timestamp: datetime | None = None
    source_url: str | None = None
    raw_data: dict[str, Any] | None = None
    refs: tuple[str, ...] = ()
    # Confidence tier of each ref, filled by reference extraction when known
    ref_confidence: dict[str, ConfidenceLevel] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description or ''}".strip()


@dataclass(frozen=True)
class DateRange:
    earliest: datetime
    latest: datetime


@dataclass(frozen=True)
class ClusterMetrics:
    activity_count: int
    ref_count: int
    tool_types: tuple[str, ...]
    date_range: DateRange | None = None


@dataclass(frozen=True)
class Cluster:
    """Activities connected through at least one shared reference."""

    id: str
    activity_ids: tuple[str, ...]
    shared_refs: tuple[str, ...]
    metrics: ClusterMetrics


@dataclass(frozen=True)
class HydratedCluster(Cluster):
    """A cluster with its member activities resolved, sorted oldest first."""

    activities: tuple[Activity, ...] = ()


@dataclass
class ClusterExtractionOptions:
    min_cluster_size: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    id_generator: Callable[[int], str] | None = None
    debug: bool = False


@dataclass
class ClusteringMetrics:
    total_activities: int
    clustered_activities: int
    unclustered_activities: int
    cluster_count: int
    avg_cluster_size: float
    largest_cluster: int = 0


@dataclass
class ClusterExtractionOutput:
    clusters: list[Cluster]
    unclustered: list[str]
    metrics: ClusteringMetrics


# ---------------------------------------------------------------------------
# Persona and participation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolIdentity:
    account_id: str | None = None
    login: str | None = None
    display_name: str | None = None
    email: str | None = None

    def values(self) -> list[str]:
        return [v for v in (self.account_id, self.login, self.display_name, self.email) if v]


@dataclass(frozen=True)
class Persona:
    """Identity profile of the person whose stories are generated."""

    display_name: str
    emails: tuple[str, ...] = ()
    identities: dict[str, ToolIdentity] = field(default_factory=dict)

    def identity(self, tool: str) -> ToolIdentity | None:
        return self.identities.get(str(getattr(tool, "value", tool)))


@dataclass
class ParticipationResult:
    activity_id: str
    level: ParticipationLevel
    signals: list[str] = field(default_factory=list)


@dataclass
class ParticipationSummary:
    initiator_count: int = 0
    contributor_count: int = 0
    mentioned_count: int = 0
    observer_count: int = 0

    @classmethod
    def from_results(cls, participations: list[ParticipationResult]) -> ParticipationSummary:
        summary = cls()
        for p in participations:
            attr = f"{p.level.value}_count"
            setattr(summary, attr, getattr(summary, attr) + 1)
        return summary


# ---------------------------------------------------------------------------
# Narrative
# ---------------------------------------------------------------------------


@dataclass
class NarrativeComponent:
    name: str
    text: str
    sources: list[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class ValidationResult:
    passed: bool
    score: float
    failed_gates: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class GateOptions:
    min_activities: int | None = None
    min_tool_types: int | None = None
    max_observer_ratio: float | None = None


@dataclass
class NarrativeMetadata:
    date_range: DateRange | None
    tools_covered: list[str]
    total_activities: int


@dataclass
class GeneratedNarrative:
    cluster_id: str
    framework: str
    components: list[NarrativeComponent]
    overall_confidence: float
    participation_summary: ParticipationSummary
    suggested_edits: list[str]
    metadata: NarrativeMetadata
    validation: ValidationResult
    alternative_frameworks: list[str] = field(default_factory=list)
    enriched: bool = False

    def component(self, name: str) -> NarrativeComponent | None:
        return next((c for c in self.components if c.name == name), None)


@dataclass
class NarrativeExtractionOutput:
    narrative: GeneratedNarrative | None
    participations: list[ParticipationResult]
    validation: ValidationResult


# Stage result aliases, named after the operations that produce them
RefExtractionResult = ProcessorResult[RefExtractionOutput]
ClusterExtractionResult = ProcessorResult[ClusterExtractionOutput]
HydrationResult = ProcessorResult[HydratedCluster]
STARExtractionResult = ProcessorResult[NarrativeExtractionOutput]
