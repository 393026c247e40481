"""
Module: orchestrator
Purpose: End-to-end story generation for one cluster.

State machine:
    HYDRATING -> PARTICIPATION_ANALYSIS -> EXTRACTING -> (ENRICHING) -> DONE
    FAILED is reachable from every stage.

Failures are wrapped in STARGenerationError naming the stage that produced
them ("hydration", "extraction" or "polish") with the stage error kept as
the cause. A polish failure never discards the validated narrative: the
result still carries it, flagged enriched=False. A cluster that fails the
validation gates ends in DONE with the failed ValidationResult and no
narrative.

The pipeline performs no retries. Callers wanting a deadline wrap generate()
in their own timeout.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from storyq import config
from storyq.observability.logging import pipeline_logger
from storyq.observability.telemetry import counter, log_event, time_block
from storyq.pipeline.cluster_hydrator import hydrate_cluster
from storyq.pipeline.enrichment import (
    NarrativeEnricher,
    PolishError,
    PolishStatus,
    build_source_context,
)
from storyq.pipeline.errors import STARGenerationError
from storyq.pipeline.frameworks import FrameworkType
from storyq.pipeline.narrative_extractor import generate_narrative
from storyq.pipeline.participation import analyze_participation
from storyq.pipeline.types import (
    ErrorCode,
    GateOptions,
    GeneratedNarrative,
    ParticipationResult,
    Persona,
    PipelineError,
    PipelineWarning,
    ValidationResult,
)

if TYPE_CHECKING:
    from storyq.contracts.providers import (
        ActivityStore,
        ClusterStore,
        EnrichmentProvider,
        PersonaProvider,
    )

STAGE_HYDRATION = "hydration"
STAGE_EXTRACTION = "extraction"
STAGE_POLISH = "polish"


class GenerationStage(str, Enum):
    HYDRATING = "HYDRATING"
    PARTICIPATION_ANALYSIS = "PARTICIPATION_ANALYSIS"
    EXTRACTING = "EXTRACTING"
    ENRICHING = "ENRICHING"
    DONE = "DONE"
    FAILED = "FAILED"


# Stage named on a STARGenerationError raised while in each state
_FAILURE_STAGE = {
    GenerationStage.HYDRATING: STAGE_HYDRATION,
    GenerationStage.PARTICIPATION_ANALYSIS: STAGE_EXTRACTION,
    GenerationStage.EXTRACTING: STAGE_EXTRACTION,
    GenerationStage.ENRICHING: STAGE_POLISH,
}


@dataclass
class STARGenerationResult:
    """Outcome of one orchestrated generation."""

    cluster_id: str
    persona_id: str
    stage: GenerationStage = GenerationStage.HYDRATING
    narrative: GeneratedNarrative | None = None
    participations: list[ParticipationResult] = field(default_factory=list)
    validation: ValidationResult | None = None
    polish_status: PolishStatus = PolishStatus.NOT_REQUESTED
    polish_errors: list[PolishError] = field(default_factory=list)
    warnings: list[PipelineWarning] = field(default_factory=list)
    stage_history: list[GenerationStage] = field(default_factory=list)
    error: STARGenerationError | None = None
    # Set when the enrichment stage itself crashed; the narrative is kept
    polish_failure: STARGenerationError | None = None
    processing_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.stage is GenerationStage.DONE and self.error is None

    @property
    def enriched(self) -> bool:
        return self.narrative is not None and self.narrative.enriched

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def _stage_error(stage: str, error: PipelineError) -> STARGenerationError:
    return STARGenerationError(
        stage=stage,
        code=error.code,
        message=error.message,
        cause=error.cause,
        context={**error.context, "stage_error": error},
    )


class GenerationOrchestrator:
    """
    Runs hydration, participation analysis, extraction and enrichment for a
    cluster id on behalf of a persona.

    Holds no per-request state, so one instance can serve concurrent calls.
    """

    def __init__(
        self,
        cluster_store: ClusterStore,
        activity_store: ActivityStore,
        persona_provider: PersonaProvider,
        enrichment_provider: EnrichmentProvider | None = None,
        hydration_timeout: float | None = None,
        llm_timeout: float | None = None,
    ) -> None:
        self.cluster_store = cluster_store
        self.activity_store = activity_store
        self.persona_provider = persona_provider
        self.enrichment_provider = enrichment_provider
        self.hydration_timeout = hydration_timeout
        self.llm_timeout = llm_timeout

    @classmethod
    def with_default_provider(
        cls,
        cluster_store: ClusterStore,
        activity_store: ActivityStore,
        persona_provider: PersonaProvider,
    ) -> GenerationOrchestrator:
        """Build an orchestrator using Gemini when STORYQ_USE_LLM is on."""
        from storyq.llm.gemini import default_enrichment_provider

        return cls(cluster_store, activity_store, persona_provider, default_enrichment_provider())

    def close(self) -> None:
        """Release the enrichment provider's resources (its worker pool, for Gemini)."""
        close = getattr(self.enrichment_provider, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> GenerationOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _transition(self, result: STARGenerationResult, stage: GenerationStage) -> None:
        result.stage = stage
        result.stage_history.append(stage)

    def _fail(
        self,
        result: STARGenerationResult,
        error: STARGenerationError,
        start_time: float,
        log,
    ) -> STARGenerationResult:
        self._transition(result, GenerationStage.FAILED)
        result.error = error
        result.processing_time_ms = (time.perf_counter() - start_time) * 1000
        counter(f"generation.failed.{error.stage}")
        log.warning("Generation failed: %s", error)
        log_event(
            "generation.failed",
            cluster_id=result.cluster_id,
            stage=error.stage,
            code=error.code.value,
        )
        return result

    def generate(
        self,
        cluster_id: str,
        persona_id: str,
        framework: str | FrameworkType | None = None,
        polish: bool = True,
        gate_options: GateOptions | None = None,
    ) -> STARGenerationResult:
        """
        Generate a narrative for one cluster.

        Args:
            cluster_id: Cluster to load from the cluster store
            persona_id: Persona to load from the persona provider
            framework: Narrative framework (defaults to STAR)
            polish: Run the enrichment stage after extraction
            gate_options: Overrides for the validation gate thresholds

        Returns:
            STARGenerationResult in DONE or FAILED. Never raises: an
            unexpected exception fails the result with STAGE_CRASHED at the
            stage it occurred in. Call raise_for_error() to turn a failure
            into an exception.

        Side Effects:
            - Activity store lookup (hydration)
            - Enrichment provider calls (when polish is True and configured)
            - Increments generation.* counters
        """
        start_time = time.perf_counter()
        counter("generation.calls")
        result = STARGenerationResult(cluster_id=cluster_id, persona_id=persona_id)
        log = pipeline_logger(__name__, cluster_id)

        try:
            return self._run(result, framework, polish, gate_options, start_time, log)
        except Exception as e:
            stage = _FAILURE_STAGE.get(result.stage, STAGE_EXTRACTION)
            log.at_stage(stage).exception("Unexpected error during %s", result.stage.value)
            return self._fail(
                result,
                STARGenerationError(
                    stage,
                    ErrorCode.STAGE_CRASHED,
                    f"{result.stage.value} crashed: {e}",
                    cause=e,
                    context={"cluster_id": cluster_id, "generation_stage": result.stage.value},
                ),
                start_time,
                log.at_stage(stage),
            )

    def _run(
        self,
        result: STARGenerationResult,
        framework: str | FrameworkType | None,
        polish: bool,
        gate_options: GateOptions | None,
        start_time: float,
        log,
    ) -> STARGenerationResult:
        cluster_id, persona_id = result.cluster_id, result.persona_id

        # HYDRATING
        self._transition(result, GenerationStage.HYDRATING)
        hydration_log = log.at_stage(STAGE_HYDRATION)

        try:
            persona = self.persona_provider.get_persona(persona_id)
        except Exception as e:
            return self._fail(
                result,
                STARGenerationError(
                    STAGE_HYDRATION,
                    ErrorCode.INVALID_PERSONA,
                    f"Persona lookup failed: {e}",
                    cause=e,
                    context={"persona_id": persona_id},
                ),
                start_time,
                hydration_log,
            )
        if not isinstance(persona, Persona) or not persona.display_name:
            return self._fail(
                result,
                STARGenerationError(
                    STAGE_HYDRATION,
                    ErrorCode.INVALID_PERSONA,
                    f"Persona {persona_id!r} not found",
                    context={"persona_id": persona_id},
                ),
                start_time,
                hydration_log,
            )

        try:
            cluster = self.cluster_store.get_cluster(cluster_id)
        except Exception as e:
            return self._fail(
                result,
                STARGenerationError(
                    STAGE_HYDRATION,
                    ErrorCode.CLUSTER_NOT_FOUND,
                    f"Cluster lookup failed: {e}",
                    cause=e,
                    context={"cluster_id": cluster_id},
                ),
                start_time,
                hydration_log,
            )
        if cluster is None:
            return self._fail(
                result,
                STARGenerationError(
                    STAGE_HYDRATION,
                    ErrorCode.CLUSTER_NOT_FOUND,
                    f"Cluster {cluster_id!r} not found",
                    context={"cluster_id": cluster_id},
                ),
                start_time,
                hydration_log,
            )

        with time_block("generation.hydration"):
            hydration = hydrate_cluster(cluster, self.activity_store, timeout=self.hydration_timeout)
        result.warnings.extend(hydration.warnings)
        if not hydration.success:
            return self._fail(
                result, _stage_error(STAGE_HYDRATION, hydration.fatal_errors[0]), start_time, hydration_log
            )
        hydrated = hydration.data
        hydration_log.info("Hydrated %d activities", len(hydrated.activities))

        # PARTICIPATION_ANALYSIS
        self._transition(result, GenerationStage.PARTICIPATION_ANALYSIS)
        participations = analyze_participation(hydrated, persona)
        result.participations = participations

        # EXTRACTING
        self._transition(result, GenerationStage.EXTRACTING)
        extraction_log = log.at_stage(STAGE_EXTRACTION)
        with time_block("generation.extraction"):
            extraction = generate_narrative(
                hydrated,
                persona,
                framework=framework,
                gate_options=gate_options,
                participations=participations,
            )
        result.warnings.extend(extraction.warnings)
        if not extraction.success:
            return self._fail(
                result, _stage_error(STAGE_EXTRACTION, extraction.fatal_errors[0]), start_time, extraction_log
            )

        output = extraction.data
        result.validation = output.validation
        narrative = output.narrative

        if narrative is None:
            # Gates failed: a complete answer, not an error
            extraction_log.info("Cluster not story-worthy yet: %s", ", ".join(output.validation.failed_gates))
            counter("generation.gates_failed")
            return self._finish(result, start_time, log)

        result.narrative = narrative

        # ENRICHING
        if polish:
            self._transition(result, GenerationStage.ENRICHING)
            polish_log = log.at_stage(STAGE_POLISH)
            enricher = NarrativeEnricher(self.enrichment_provider, timeout=self.llm_timeout)
            try:
                enrichment = enricher.enrich(narrative, build_source_context(hydrated))
            except Exception as e:
                # The validated narrative stays on the result, unenriched
                error = STARGenerationError(
                    STAGE_POLISH,
                    ErrorCode.LLM_ERROR,
                    f"Enrichment stage crashed: {e}",
                    cause=e,
                )
                polish_log.error("Enrichment failed, keeping unpolished narrative: %s", e)
                counter("generation.polish_crashed")
                result.polish_status = PolishStatus.FAILED
                result.polish_failure = error
                result.polish_errors = [
                    PolishError(component=c.name, code=ErrorCode.LLM_ERROR, message=str(e))
                    for c in narrative.components
                ]
            else:
                outcome = enrichment.data
                result.narrative = outcome.narrative
                result.polish_status = outcome.status
                result.polish_errors = outcome.errors
                result.warnings.extend(enrichment.warnings)
                if outcome.errors:
                    polish_log.warning(
                        "Polish failed for %s",
                        ", ".join(f"{e.component} ({e.code.value})" for e in outcome.errors),
                    )

        return self._finish(result, start_time, log)

    def _finish(self, result: STARGenerationResult, start_time: float, log) -> STARGenerationResult:
        self._transition(result, GenerationStage.DONE)
        result.processing_time_ms = (time.perf_counter() - start_time) * 1000
        counter("generation.done")
        log.info(
            "Generation done in %.1fms (narrative=%s, polish=%s)",
            result.processing_time_ms,
            result.narrative is not None,
            result.polish_status.value,
        )
        log_event(
            "generation.done",
            cluster_id=result.cluster_id,
            narrative=result.narrative is not None,
            enriched=result.enriched,
            polish_status=result.polish_status.value,
            processing_time_ms=round(result.processing_time_ms, 2),
        )
        return result

    def generate_batch(
        self,
        cluster_ids: list[str],
        persona_id: str,
        framework: str | FrameworkType | None = None,
        polish: bool = True,
        max_workers: int | None = None,
    ) -> list[STARGenerationResult]:
        """
        Generate narratives for independent clusters concurrently.

        Results are returned in the order of `cluster_ids`. A failure on one
        cluster is reported on its own result and does not affect the others.
        """
        if not cluster_ids:
            return []
        counter("generation.batches")
        workers = min(max_workers or config.BATCH_MAX_WORKERS, len(cluster_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="storyq-batch") as executor:
            futures = [
                executor.submit(self.generate, cid, persona_id, framework, polish) for cid in cluster_ids
            ]
            # generate() reports every failure on its own result
            return [future.result() for future in futures]
