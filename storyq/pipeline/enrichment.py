"""
Enrichment Stage - optional LLM polish of a validated narrative.

Each component is sent to the enrichment provider on its own. A failure on
one component is recorded as a PolishError for that component and the
original text is kept; every other component is still polished. Sources and
confidence scores are never changed by this stage.

Per-component status:
    success          provider returned new text
    skipped          text too short to polish, or confidence is zero
    failed           provider raised (LLM_UNAVAILABLE / LLM_TIMEOUT / LLM_ERROR)
    no_improvement   provider returned empty or identical text

Overall status adds not_configured (no provider) and not_requested (the
orchestrator was asked not to polish).
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter, log_event, time_block
from storyq.pipeline.errors import ProviderUnavailableError
from storyq.pipeline.types import (
    ErrorCode,
    GeneratedNarrative,
    HydratedCluster,
    NarrativeComponent,
    PipelineError,
    PipelineWarning,
    ProcessorDiagnostics,
    ProcessorResult,
    WarningCode,
)

if TYPE_CHECKING:
    from storyq.contracts.providers import EnrichmentProvider

logger = get_logger(__name__)

PROCESSOR_NAME = "enrichment"


class PolishStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    NOT_CONFIGURED = "not_configured"
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    NO_IMPROVEMENT = "no_improvement"


@dataclass
class PolishError:
    """A polish failure scoped to one component."""

    component: str
    code: ErrorCode
    message: str


@dataclass
class ComponentPolishResult:
    component: str
    status: PolishStatus
    original: str
    improved: str
    reason: str | None = None
    error: PolishError | None = None


@dataclass
class EnrichmentOutcome:
    narrative: GeneratedNarrative
    status: PolishStatus
    components: list[ComponentPolishResult] = field(default_factory=list)

    @property
    def errors(self) -> list[PolishError]:
        return [c.error for c in self.components if c.error is not None]

    @property
    def enriched(self) -> bool:
        return self.narrative.enriched


EnrichmentResult = ProcessorResult[EnrichmentOutcome]


def build_source_context(cluster: HydratedCluster) -> dict[str, str]:
    """Activity id -> "title: description" for every activity in the cluster."""
    context: dict[str, str] = {}
    for activity in cluster.activities:
        text = activity.title
        if activity.description:
            text = f"{text}: {activity.description}"
        context[activity.id] = text[: config.POLISH_MAX_INPUT_CHARS]
    return context


def classify_provider_error(exc: BaseException) -> ErrorCode:
    """Map a provider exception onto its LLM error code."""
    # ProviderTimeoutError is a TimeoutError, so this check comes first
    if isinstance(exc, TimeoutError):
        return ErrorCode.LLM_TIMEOUT
    if isinstance(exc, (ProviderUnavailableError, ConnectionError)):
        return ErrorCode.LLM_UNAVAILABLE
    return ErrorCode.LLM_ERROR


def overall_status(results: list[ComponentPolishResult]) -> PolishStatus:
    if not results:
        return PolishStatus.NO_IMPROVEMENT
    if all(r.status is PolishStatus.FAILED for r in results):
        return PolishStatus.FAILED
    if any(r.status is PolishStatus.SUCCESS for r in results):
        return PolishStatus.SUCCESS
    return PolishStatus.NO_IMPROVEMENT


class NarrativeEnricher:
    """Runs the enrichment provider over every component of a narrative."""

    def __init__(
        self,
        provider: EnrichmentProvider | None,
        timeout: float | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.provider = provider
        self.timeout = timeout if timeout is not None else config.LLM_TIMEOUT_SECONDS
        self.max_workers = max_workers or config.LLM_MAX_WORKERS

    def _component_context(
        self,
        narrative: GeneratedNarrative,
        component: NarrativeComponent,
        source_context: Mapping[str, str],
    ) -> dict[str, Any]:
        return {
            "component": component.name,
            "framework": narrative.framework,
            "sources": [source_context[s] for s in component.sources if s in source_context],
        }

    def _polish_component(
        self,
        narrative: GeneratedNarrative,
        component: NarrativeComponent,
        source_context: Mapping[str, str],
    ) -> ComponentPolishResult:
        original = component.text or ""

        if len(original.strip()) < config.POLISH_MIN_TEXT_CHARS:
            return ComponentPolishResult(
                component.name, PolishStatus.SKIPPED, original, original, reason="Text too short to polish"
            )
        if component.confidence <= 0:
            return ComponentPolishResult(
                component.name, PolishStatus.SKIPPED, original, original, reason="No evidence to polish"
            )

        assert self.provider is not None
        context = self._component_context(narrative, component, source_context)
        try:
            with time_block("enrichment.polish"):
                improved = self.provider.polish(original, context, timeout=self.timeout)
        except Exception as e:
            code = classify_provider_error(e)
            logger.warning("Polish failed for component %s: %s (%s)", component.name, code.value, e)
            error = PolishError(component=component.name, code=code, message=str(e) or type(e).__name__)
            return ComponentPolishResult(
                component.name, PolishStatus.FAILED, original, original, reason=error.message, error=error
            )

        if not isinstance(improved, str):
            error = PolishError(
                component=component.name,
                code=ErrorCode.LLM_ERROR,
                message=f"Provider returned {type(improved).__name__}, expected str",
            )
            return ComponentPolishResult(
                component.name, PolishStatus.FAILED, original, original, reason=error.message, error=error
            )

        improved = improved.strip()
        if not improved:
            return ComponentPolishResult(
                component.name, PolishStatus.NO_IMPROVEMENT, original, original, reason="Empty response"
            )
        if improved == original.strip():
            return ComponentPolishResult(
                component.name, PolishStatus.NO_IMPROVEMENT, original, original, reason="No changes"
            )
        return ComponentPolishResult(component.name, PolishStatus.SUCCESS, original, improved)

    def enrich(
        self,
        narrative: GeneratedNarrative,
        source_context: Mapping[str, str] | None = None,
    ) -> EnrichmentResult:
        """
        Polish every component independently.

        Args:
            narrative: Validated narrative from generate_narrative()
            source_context: Activity id -> source text, passed to the provider

        Returns:
            ProcessorResult[EnrichmentOutcome]. Data is always present; the
            narrative is a copy with polished text where polishing worked.
            Component failures are recoverable errors on the envelope.

        Side Effects:
            - Calls the enrichment provider once per polishable component
            - Increments enrichment.* counters
        """
        start_time = time.perf_counter()
        counter("enrichment.calls")
        diagnostics = ProcessorDiagnostics(
            processor=PROCESSOR_NAME,
            input_metrics={"component_count": len(narrative.components)},
        )

        if self.provider is None:
            counter("enrichment.not_configured")
            logger.info("No enrichment provider configured, returning narrative unchanged")
            diagnostics.output_metrics = {"polished_count": 0}
            return ProcessorResult(
                data=EnrichmentOutcome(narrative=narrative, status=PolishStatus.NOT_CONFIGURED),
                diagnostics=diagnostics,
                warnings=[
                    PipelineWarning(
                        code=WarningCode.NOT_CONFIGURED,
                        message="Enrichment provider is not configured",
                        context={"cluster_id": narrative.cluster_id},
                    )
                ],
            )

        context = dict(source_context or {})
        components = list(narrative.components)
        if components:
            workers = min(self.max_workers, len(components))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._polish_component, narrative, c, context) for c in components
                ]
                results = [f.result() for f in futures]
        else:
            results = []

        polished = [
            dataclasses.replace(c, text=r.improved, sources=list(c.sources))
            if r.status is PolishStatus.SUCCESS
            else dataclasses.replace(c, sources=list(c.sources))
            for c, r in zip(components, results)
        ]
        status = overall_status(results)
        any_success = any(r.status is PolishStatus.SUCCESS for r in results)
        enriched = dataclasses.replace(narrative, components=polished, enriched=any_success)

        errors = [
            PipelineError(
                code=r.error.code,
                message=r.error.message,
                recoverable=True,
                context={"component": r.component},
            )
            for r in results
            if r.error is not None
        ]

        for r in results:
            counter(f"enrichment.{r.status.value}")

        diagnostics.output_metrics = {
            "polished_count": sum(1 for r in results if r.status is PolishStatus.SUCCESS),
            "failed_count": len(errors),
            "skipped_count": sum(1 for r in results if r.status is PolishStatus.SKIPPED),
        }
        diagnostics.processing_time_ms = (time.perf_counter() - start_time) * 1000

        log_event(
            "enrichment.complete",
            cluster_id=narrative.cluster_id,
            status=status.value,
            failed=[e.context["component"] for e in errors],
        )

        return ProcessorResult(
            data=EnrichmentOutcome(narrative=enriched, status=status, components=results),
            diagnostics=diagnostics,
            errors=errors,
        )


def enrich_narrative(
    narrative: GeneratedNarrative,
    source_context: Mapping[str, str] | None = None,
    provider: EnrichmentProvider | None = None,
    timeout: float | None = None,
) -> EnrichmentResult:
    return NarrativeEnricher(provider, timeout=timeout).enrich(narrative, source_context)
