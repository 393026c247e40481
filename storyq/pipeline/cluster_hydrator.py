"""
Cluster Hydrator - resolves a cluster's member ids into Activity records.

The activity store is external and may return a partial result. Missing ids
degrade the cluster (ACTIVITIES_NOT_FOUND warning) instead of failing it;
only a cluster with no resolvable member is fatal (NO_ACTIVITIES_FOUND).
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import TYPE_CHECKING

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter, time_block
from storyq.pipeline.cluster_builder import summarize_activities
from storyq.pipeline.types import (
    Activity,
    Cluster,
    ErrorCode,
    HydratedCluster,
    HydrationResult,
    PipelineError,
    PipelineWarning,
    ProcessorDiagnostics,
    ProcessorResult,
    WarningCode,
    as_utc,
)

if TYPE_CHECKING:
    from storyq.contracts.providers import ActivityStore

logger = get_logger(__name__)

PROCESSOR_NAME = "cluster-hydrator"


def _chronological(activity: Activity) -> tuple[bool, datetime | None, str]:
    # Undated activities go last, ties broken by id
    ts = as_utc(activity.timestamp) if activity.timestamp is not None else None
    return (ts is None, ts, activity.id)


def hydrate_cluster(
    cluster: Cluster,
    activity_store: ActivityStore,
    timeout: float | None = None,
) -> HydrationResult:
    """
    Resolve every member of `cluster` through the activity store.

    Args:
        cluster: Cluster produced by build_clusters()
        activity_store: Lookup collaborator
        timeout: Seconds passed to the store (defaults to HYDRATION_TIMEOUT_SECONDS)

    Returns:
        ProcessorResult[HydratedCluster]. Activities are sorted oldest
        first and metrics are recomputed from what was actually found.
    """
    start_time = time.perf_counter()
    counter("hydration.calls")
    diagnostics = ProcessorDiagnostics(processor=PROCESSOR_NAME)

    if not isinstance(cluster, Cluster) or not cluster.id or not cluster.activity_ids:
        return ProcessorResult.failed(
            diagnostics,
            PipelineError(
                code=ErrorCode.INVALID_CLUSTER,
                message="Cluster must have an id and at least one activity id",
                context={"cluster_id": getattr(cluster, "id", None)},
            ),
        )

    requested = list(dict.fromkeys(cluster.activity_ids))
    wait = timeout if timeout is not None else config.HYDRATION_TIMEOUT_SECONDS

    try:
        with time_block("hydration.lookup"):
            found = activity_store.lookup(requested, timeout=wait)
    except Exception as e:
        counter("hydration.lookup_failed")
        logger.error("Activity lookup failed for cluster %s: %s", cluster.id, e)
        diagnostics.processing_time_ms = (time.perf_counter() - start_time) * 1000
        return ProcessorResult.failed(
            diagnostics,
            PipelineError(
                code=ErrorCode.ACTIVITY_LOOKUP_FAILED,
                message=f"Activity lookup failed: {e}",
                cause=e,
                context={"cluster_id": cluster.id, "timeout": wait},
            ),
        )

    wanted = set(requested)
    by_id: dict[str, Activity] = {}
    for activity in found or []:
        if activity.id in wanted:
            by_id[activity.id] = activity

    missing = [i for i in requested if i not in by_id]
    warnings: list[PipelineWarning] = []
    if missing:
        counter("hydration.missing_activities", len(missing))
        warnings.append(
            PipelineWarning(
                code=WarningCode.ACTIVITIES_NOT_FOUND,
                message=f"{len(missing)} activities not found",
                context={
                    "missing_ids": missing[: config.HYDRATION_MAX_REPORTED_MISSING],
                    "missing_count": len(missing),
                },
            )
        )

    diagnostics.input_metrics = {"requested": len(requested)}
    diagnostics.output_metrics = {"found": len(by_id), "missing": len(missing)}
    diagnostics.processing_time_ms = (time.perf_counter() - start_time) * 1000

    if not by_id:
        logger.warning("No activities resolved for cluster %s", cluster.id)
        return ProcessorResult.failed(
            diagnostics,
            PipelineError(
                code=ErrorCode.NO_ACTIVITIES_FOUND,
                message=f"None of the {len(requested)} activities in cluster {cluster.id} were found",
                context={"cluster_id": cluster.id},
            ),
            warnings=warnings,
        )

    activities = tuple(sorted(by_id.values(), key=_chronological))
    hydrated = HydratedCluster(
        id=cluster.id,
        activity_ids=tuple(a.id for a in activities),
        shared_refs=cluster.shared_refs,
        metrics=summarize_activities(activities, cluster.shared_refs),
        activities=activities,
    )
    return ProcessorResult(data=hydrated, diagnostics=diagnostics, warnings=warnings)


def as_hydrated(cluster: Cluster, activities: list[Activity]) -> HydratedCluster:
    """Build a HydratedCluster directly from already loaded activities."""
    ordered = tuple(sorted(activities, key=_chronological))
    return HydratedCluster(
        id=cluster.id,
        activity_ids=tuple(a.id for a in ordered),
        shared_refs=cluster.shared_refs,
        metrics=summarize_activities(ordered, cluster.shared_refs),
        activities=ordered,
    )
