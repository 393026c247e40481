"""
Module: narrative_extractor
Purpose: Validation gates + confidence-scored narrative components for a cluster.

Flow:
    1. Classify the persona's participation in every activity
    2. Run the validation gates (activity count, tool diversity, observer ratio)
    3. If the gates pass, build one component per framework section from the
       most relevant activity excerpts, each with its source ids and a
       confidence score
    4. Aggregate an overall confidence and suggested edits

A failed gate is an answer, not an error: the result carries a
ValidationResult(passed=False) and a VALIDATION_GATES_FAILED warning so the
caller can explain why the cluster is not story-worthy yet.

Scoring:
    component = min(1, base * evidence + concentration)
        base           0.9 keyword match / 0.6 preferred tool / 0.35 any activity
        evidence       mean over sources of participation weight * ref tier weight
        concentration  up to +0.1 for three or more agreeing sources
    overall = source-weighted mean, clamped to
              [min component, min(min component + OVERALL_CONFIDENCE_BONUS, max component)]
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter, log_event, time_block
from storyq.pipeline import frameworks
from storyq.pipeline.frameworks import FrameworkType, NarrativeFramework
from storyq.pipeline.participation import analyze_participation
from storyq.pipeline.types import (
    Activity,
    ConfidenceLevel,
    ErrorCode,
    GateOptions,
    GeneratedNarrative,
    HydratedCluster,
    NarrativeComponent,
    NarrativeExtractionOutput,
    NarrativeMetadata,
    ParticipationLevel,
    ParticipationResult,
    ParticipationSummary,
    Persona,
    PipelineError,
    PipelineWarning,
    ProcessorDiagnostics,
    ProcessorResult,
    STARExtractionResult,
    ValidationResult,
    WarningCode,
    as_utc,
)

logger = get_logger(__name__)

PROCESSOR_NAME = "narrative-extractor"

GATE_MIN_ACTIVITIES = "MIN_ACTIVITIES"
GATE_MIN_TOOL_TYPES = "MIN_TOOL_TYPES"
GATE_MAX_OBSERVER_RATIO = "MAX_OBSERVER_RATIO"
ALL_GATES = (GATE_MIN_ACTIVITIES, GATE_MIN_TOOL_TYPES, GATE_MAX_OBSERVER_RATIO)

PARTICIPATION_WEIGHT = {
    ParticipationLevel.INITIATOR: 1.0,
    ParticipationLevel.CONTRIBUTOR: 0.85,
    ParticipationLevel.MENTIONED: 0.55,
    ParticipationLevel.OBSERVER: 0.35,
}
REF_TIER_WEIGHT = {
    ConfidenceLevel.HIGH: 1.0,
    ConfidenceLevel.MEDIUM: 0.9,
    ConfidenceLevel.LOW: 0.75,
}
# Refs supplied without extraction metadata
UNKNOWN_REF_TIER_WEIGHT = 0.9

BASE_KEYWORD_MATCH = 0.9
BASE_TOOL_FALLBACK = 0.6
BASE_LAST_RESORT = 0.35
CONCENTRATION_BONUS = 0.1


@dataclass
class _Evidence:
    activity: Activity
    level: ParticipationLevel

    @property
    def tool(self) -> str:
        return str(getattr(self.activity.source, "value", self.activity.source))

    @property
    def ts(self) -> float:
        return as_utc(self.activity.timestamp).timestamp() if self.activity.timestamp else 0.0


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def _tool_types(cluster: HydratedCluster) -> set[str]:
    return {str(getattr(a.source, "value", a.source)) for a in cluster.activities if a.source}


def check_gates(
    cluster: HydratedCluster,
    participations: Sequence[ParticipationResult],
    gate_options: GateOptions | None = None,
) -> ValidationResult:
    """
    Evaluate the three validation gates.

    Returns:
        ValidationResult whose failed_gates holds the gate names and whose
        score is the fraction of gates satisfied (1.0 when all pass).
    """
    opts = gate_options or GateOptions()
    min_activities = opts.min_activities if opts.min_activities is not None else config.GATE_MIN_ACTIVITIES
    min_tools = opts.min_tool_types if opts.min_tool_types is not None else config.GATE_MIN_TOOL_TYPES
    max_observer = (
        opts.max_observer_ratio if opts.max_observer_ratio is not None else config.GATE_MAX_OBSERVER_RATIO
    )

    failed: list[str] = []
    details: list[str] = []

    activity_count = len(cluster.activities)
    if activity_count < min_activities:
        failed.append(GATE_MIN_ACTIVITIES)
        details.append(f"{GATE_MIN_ACTIVITIES} ({activity_count} < {min_activities})")

    tool_count = len(_tool_types(cluster))
    if tool_count < min_tools:
        failed.append(GATE_MIN_TOOL_TYPES)
        details.append(f"{GATE_MIN_TOOL_TYPES} ({tool_count} < {min_tools})")

    observers = sum(1 for p in participations if p.level is ParticipationLevel.OBSERVER)
    ratio = observers / len(participations) if participations else 0.0
    if ratio > max_observer:
        failed.append(GATE_MAX_OBSERVER_RATIO)
        details.append(f"{GATE_MAX_OBSERVER_RATIO} ({ratio:.0%} > {max_observer:.0%})")

    passed_count = len(ALL_GATES) - len(failed)
    return ValidationResult(
        passed=not failed,
        score=round(passed_count / len(ALL_GATES), 4),
        failed_gates=failed,
        warnings=details,
    )


# ---------------------------------------------------------------------------
# Component extraction
# ---------------------------------------------------------------------------


def _excerpt(text: str | None, limit: int = config.EXCERPT_MAX_CHARS) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0]
    return f"{cut}..."


def _rank_for_section(section: str, evidence: list[_Evidence]) -> list[_Evidence]:
    if section in frameworks.EARLY_SECTIONS:
        return sorted(evidence, key=lambda e: (e.ts, -e.level.rank, e.activity.id))
    if section in frameworks.LATE_SECTIONS:
        return sorted(
            evidence,
            key=lambda e: (
                -e.level.rank,
                frameworks.MEASURABLE.search(e.activity.text) is None,
                -e.ts,
                e.activity.id,
            ),
        )
    if section in frameworks.ACTION_SECTIONS:
        return sorted(evidence, key=lambda e: (e.tool != "github", -e.level.rank, e.ts, e.activity.id))
    if section in frameworks.TASK_SECTIONS:
        return sorted(evidence, key=lambda e: (e.tool != "jira", -e.level.rank, e.ts, e.activity.id))
    return sorted(evidence, key=lambda e: (-e.level.rank, e.ts, e.activity.id))


def _section_text(section: str, chosen: list[_Evidence]) -> str:
    activities = [e.activity for e in chosen]
    if not activities:
        return ""
    top = activities[0]

    if section in frameworks.ACTION_SECTIONS:
        parts = []
        for a in activities:
            desc = f": {_excerpt(a.description, 100)}" if a.description else ""
            parts.append(f"{a.title}{desc}")
        return ". ".join(parts)

    if section in frameworks.TASK_SECTIONS:
        return "; ".join(a.title for a in activities)

    if section in frameworks.REFLECTION_SECTIONS:
        keywords = frameworks.SECTION_KEYWORDS[section]
        reflective = next((a for a in activities if a.description and keywords.search(a.text)), None)
        if reflective is not None:
            return _excerpt(reflective.description)
        return f"Key takeaways from working on {', '.join(a.title for a in activities)}"

    return _excerpt(top.description or top.title)


def _ref_weight(activity: Activity, shared_refs: Sequence[str]) -> float:
    tiers = [activity.ref_confidence[r] for r in shared_refs if r in activity.ref_confidence]
    if not tiers:
        return UNKNOWN_REF_TIER_WEIGHT
    return max(REF_TIER_WEIGHT[t] for t in tiers)


def _component_confidence(base: float, chosen: list[_Evidence], shared_refs: Sequence[str]) -> float:
    if not chosen:
        return 0.0
    evidence = sum(PARTICIPATION_WEIGHT[e.level] * _ref_weight(e.activity, shared_refs) for e in chosen) / len(
        chosen
    )
    concentration = min(len(chosen), 3) / 3 * CONCENTRATION_BONUS
    return round(min(1.0, base * evidence + concentration), 4)


def extract_component(
    section: str,
    evidence: list[_Evidence],
    shared_refs: Sequence[str],
) -> NarrativeComponent:
    """Fill one section: keyword matches first, then preferred tools, then anything."""
    keywords = frameworks.SECTION_KEYWORDS.get(section)
    matches = [e for e in evidence if keywords is not None and keywords.search(e.activity.text)]

    if matches:
        chosen = _rank_for_section(section, matches)[: config.MAX_SOURCES_PER_COMPONENT]
        base = BASE_KEYWORD_MATCH
    else:
        chosen = []
        for tool in frameworks.SECTION_TOOL_PREFERENCES.get(section, ("jira", "github")):
            preferred = [e for e in evidence if e.tool == tool]
            if preferred:
                chosen = _rank_for_section(section, preferred)[:1]
                break
        base = BASE_TOOL_FALLBACK
        if not chosen and evidence:
            chosen = _rank_for_section(section, evidence)[:1]
            base = BASE_LAST_RESORT

    return NarrativeComponent(
        name=section,
        text=_section_text(section, chosen),
        sources=[e.activity.id for e in chosen],
        confidence=_component_confidence(base, chosen, shared_refs),
    )


def aggregate_confidence(components: Sequence[NarrativeComponent]) -> float:
    """
    Source-weighted mean, never below the weakest component and never more
    than OVERALL_CONFIDENCE_BONUS above it.
    """
    if not components:
        return 0.0
    weights = [max(1, len(c.sources)) for c in components]
    mean = sum(c.confidence * w for c, w in zip(components, weights)) / sum(weights)
    lowest = min(c.confidence for c in components)
    highest = max(c.confidence for c in components)
    ceiling = min(lowest + config.OVERALL_CONFIDENCE_BONUS, highest, 1.0)
    return round(min(max(mean, lowest), ceiling), 4)


def suggest_edits(components: Sequence[NarrativeComponent], summary: ParticipationSummary) -> list[str]:
    edits = [
        f"Add more detail to {c.name}: {frameworks.SECTION_EDIT_HINTS.get(c.name, 'Add more detail.')}"
        for c in components
        if c.confidence < config.CONFIDENCE_FLOOR
    ]
    if summary.observer_count > summary.initiator_count:
        edits.append(
            "Note: You were more observer than initiator. Consider highlighting your specific contributions."
        )
    return edits


def suggest_alternative_frameworks(
    components: Sequence[NarrativeComponent],
    activities: Sequence[Activity],
    current: FrameworkType,
    overall_confidence: float,
) -> list[str]:
    alternatives: list[FrameworkType] = []
    text = " ".join(a.text for a in activities)

    if frameworks.SECTION_KEYWORDS["learning"].search(text) and current not in (
        FrameworkType.STARL,
        FrameworkType.CARL,
    ):
        alternatives.append(FrameworkType.STARL)
    if overall_confidence >= config.CONFIDENCE_HIGH and current not in (FrameworkType.SAR, FrameworkType.CAR):
        alternatives.append(FrameworkType.SAR)
    if frameworks.SECTION_KEYWORDS["obstacles"].search(text) and current is not FrameworkType.SOAR:
        alternatives.append(FrameworkType.SOAR)

    return [f.value for f in alternatives if f is not current][:2]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def generate_narrative(
    cluster: HydratedCluster,
    persona: Persona,
    framework: str | FrameworkType | None = None,
    gate_options: GateOptions | None = None,
    participations: list[ParticipationResult] | None = None,
    debug: bool = False,
) -> STARExtractionResult:
    """
    Gate a hydrated cluster and extract a framework-shaped narrative.

    Args:
        cluster: Hydrated cluster (activities resolved)
        persona: Whose story this is
        framework: Framework name; defaults to STAR
        gate_options: Overrides for the gate thresholds
        participations: Precomputed participation results (computed if None)
        debug: Attach per-component confidences to diagnostics

    Returns:
        ProcessorResult[NarrativeExtractionOutput]. `narrative` is None when
        the gates fail. Unknown framework, invalid persona or an empty
        cluster fail with INVALID_FRAMEWORK / INVALID_PERSONA / INVALID_CLUSTER.
    """
    start_time = time.perf_counter()
    counter("narrative.calls")
    diagnostics = ProcessorDiagnostics(processor=PROCESSOR_NAME)

    try:
        framework_type = frameworks.parse_framework(framework)
    except ValueError as e:
        return ProcessorResult.failed(
            diagnostics,
            PipelineError(
                code=ErrorCode.INVALID_FRAMEWORK,
                message=str(e),
                context={"framework": str(framework), "available": [f.value for f in FrameworkType]},
            ),
        )
    if not isinstance(persona, Persona) or not persona.display_name:
        return ProcessorResult.failed(
            diagnostics,
            PipelineError(code=ErrorCode.INVALID_PERSONA, message="Persona must have a display name"),
        )
    if not isinstance(cluster, HydratedCluster) or not cluster.activities:
        return ProcessorResult.failed(
            diagnostics,
            PipelineError(
                code=ErrorCode.INVALID_CLUSTER,
                message="Narrative extraction needs a hydrated cluster with activities",
                context={"cluster_id": getattr(cluster, "id", None)},
            ),
        )

    definition: NarrativeFramework = frameworks.FRAMEWORKS[framework_type]
    if participations is None:
        participations = analyze_participation(cluster, persona)
    summary = ParticipationSummary.from_results(participations)

    validation = check_gates(cluster, participations, gate_options)
    diagnostics.input_metrics = {
        "activity_count": len(cluster.activities),
        "tool_type_count": len(_tool_types(cluster)),
        "initiator_count": summary.initiator_count,
    }

    if not validation.passed:
        counter("narrative.gates_failed")
        logger.info("Cluster %s failed gates: %s", cluster.id, ", ".join(validation.warnings))
        diagnostics.output_metrics = {"narrative_generated": 0, "validation_score": validation.score}
        diagnostics.processing_time_ms = (time.perf_counter() - start_time) * 1000
        return ProcessorResult(
            data=NarrativeExtractionOutput(narrative=None, participations=participations, validation=validation),
            diagnostics=diagnostics,
            warnings=[
                PipelineWarning(
                    code=WarningCode.VALIDATION_GATES_FAILED,
                    message=f"Cluster failed validation gates: {', '.join(validation.failed_gates)}",
                    context={
                        "cluster_id": cluster.id,
                        "failed_gates": list(validation.failed_gates),
                        "details": list(validation.warnings),
                        "score": validation.score,
                    },
                )
            ],
        )

    levels = {p.activity_id: p.level for p in participations}
    evidence = [_Evidence(a, levels.get(a.id, ParticipationLevel.OBSERVER)) for a in cluster.activities]

    with time_block("narrative.extraction"):
        components = [extract_component(s, evidence, cluster.shared_refs) for s in definition.section_order]

    overall = aggregate_confidence(components)

    filled = sum(1 for c in components if c.text)
    if filled < len(components):
        validation.warnings.append(f"Only {filled}/{len(components)} components have content")
    if overall < config.CONFIDENCE_MEDIUM:
        validation.warnings.append("Low confidence extraction - review carefully")

    timestamps = [a.timestamp for a in cluster.activities if a.timestamp is not None]
    narrative = GeneratedNarrative(
        cluster_id=cluster.id,
        framework=framework_type.value,
        components=components,
        overall_confidence=overall,
        participation_summary=summary,
        suggested_edits=suggest_edits(components, summary),
        metadata=NarrativeMetadata(
            date_range=cluster.metrics.date_range if timestamps else None,
            tools_covered=sorted(_tool_types(cluster)),
            total_activities=len(cluster.activities),
        ),
        validation=validation,
        alternative_frameworks=suggest_alternative_frameworks(
            components, cluster.activities, framework_type, overall
        ),
    )

    diagnostics.output_metrics = {
        "narrative_generated": 1,
        "overall_confidence": overall,
        "validation_score": validation.score,
        "component_count": len(components),
        "suggested_edit_count": len(narrative.suggested_edits),
    }
    if debug:
        diagnostics.debug = {
            "participations": {p.activity_id: p.level.value for p in participations},
            "component_confidences": {c.name: c.confidence for c in components},
        }
    diagnostics.processing_time_ms = (time.perf_counter() - start_time) * 1000

    log_event(
        "narrative.extracted",
        cluster_id=cluster.id,
        framework=framework_type.value,
        overall_confidence=overall,
    )
    return ProcessorResult(
        data=NarrativeExtractionOutput(narrative=narrative, participations=participations, validation=validation),
        diagnostics=diagnostics,
    )
