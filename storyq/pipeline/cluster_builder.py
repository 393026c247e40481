"""
Cluster Builder - groups activities connected through shared references.

Activities are graph nodes; two activities are joined when their reference
sets intersect. Each connected component at or above the minimum size
becomes a Cluster, smaller components are reported as unclustered.

Output is deterministic and independent of input order: members are sorted
by id, clusters are ordered by their smallest member id, and default cluster
ids are a hash of the member set.
"""

from __future__ import annotations

import hashlib
import time
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence

import networkx as nx

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter, log_event, time_block
from storyq.pipeline.types import (
    Activity,
    Cluster,
    ClusterExtractionOptions,
    ClusterExtractionOutput,
    ClusterExtractionResult,
    ClusteringMetrics,
    ClusterMetrics,
    DateRange,
    ErrorCode,
    PipelineError,
    PipelineWarning,
    ProcessorDiagnostics,
    ProcessorResult,
    WarningCode,
    as_utc,
)

logger = get_logger(__name__)

PROCESSOR_NAME = "cluster-builder"


def default_cluster_id(activity_ids: Iterable[str]) -> str:
    """Stable id derived from the sorted member ids."""
    digest = hashlib.sha1("\n".join(sorted(activity_ids)).encode("utf-8")).hexdigest()
    return f"{config.CLUSTER_ID_PREFIX}-{digest[:12]}"


def shared_references(activities: Sequence[Activity]) -> tuple[str, ...]:
    """References carried by more than one of `activities`, sorted."""
    ref_counts = Counter(ref for a in activities for ref in set(a.refs))
    return tuple(sorted(ref for ref, n in ref_counts.items() if n > 1))


def summarize_activities(activities: Sequence[Activity], shared_refs: Sequence[str]) -> ClusterMetrics:
    """Cluster metrics (count, ref count, tools, date range) for a member set."""
    timestamps = [as_utc(a.timestamp) for a in activities if a.timestamp is not None]
    return ClusterMetrics(
        activity_count=len(activities),
        ref_count=len(shared_refs),
        tool_types=tuple(sorted({str(getattr(a.source, "value", a.source)) for a in activities if a.source})),
        date_range=DateRange(earliest=min(timestamps), latest=max(timestamps)) if timestamps else None,
    )


def _validate(activities: object) -> str | None:
    if activities is None or isinstance(activities, (str, bytes)) or not isinstance(activities, Sequence):
        return "activities must be a list of Activity records"
    seen: set[str] = set()
    for index, activity in enumerate(activities):
        activity_id = getattr(activity, "id", None)
        if not isinstance(activity_id, str) or not activity_id:
            return f"activity at index {index} has no id"
        if activity_id in seen:
            return f"duplicate activity id {activity_id!r}"
        seen.add(activity_id)
    return None


def _build_graph(activities: Sequence[Activity]) -> tuple[nx.Graph, dict[str, list[str]]]:
    graph = nx.Graph()
    graph.add_nodes_from(a.id for a in activities)

    ref_members: dict[str, list[str]] = defaultdict(list)
    for activity in activities:
        for ref in set(activity.refs):
            ref_members[ref].append(activity.id)

    # A chain over the sorted members connects them as well as a clique would
    for ref, members in ref_members.items():
        members.sort()
        graph.add_edges_from(zip(members, members[1:]), ref=ref)

    return graph, ref_members


def build_clusters(
    activities: Sequence[Activity],
    options: ClusterExtractionOptions | None = None,
) -> ClusterExtractionResult:
    """
    Group activities into clusters via shared references.

    Args:
        activities: Activities already annotated with `refs`
        options: Minimum size, date window, id generator, debug flag

    Returns:
        ProcessorResult with clusters, unclustered ids and metrics.
        Invalid input fails with INVALID_ACTIVITIES.
    """
    options = options or ClusterExtractionOptions()
    start_time = time.perf_counter()
    warnings: list[PipelineWarning] = []
    counter("clustering.calls")

    problem = _validate(activities)
    if problem is not None:
        logger.warning("Rejected clustering input: %s", problem)
        return ProcessorResult.failed(
            ProcessorDiagnostics(processor=PROCESSOR_NAME),
            PipelineError(code=ErrorCode.INVALID_ACTIVITIES, message=problem),
        )

    min_size = options.min_cluster_size if options.min_cluster_size is not None else config.CLUSTER_MIN_SIZE
    min_size = max(1, min_size)

    selected = list(activities)
    if options.start is not None or options.end is not None:
        # Naive bounds and timestamps are read as UTC
        start = as_utc(options.start) if options.start is not None else None
        end = as_utc(options.end) if options.end is not None else None
        selected = [
            a
            for a in activities
            if a.timestamp is None
            or (
                (start is None or as_utc(a.timestamp) >= start)
                and (end is None or as_utc(a.timestamp) <= end)
            )
        ]
        excluded = len(activities) - len(selected)
        if excluded:
            warnings.append(
                PipelineWarning(
                    code=WarningCode.DATE_FILTERED,
                    message=f"Filtered {excluded} activities outside date range",
                    context={"original": len(activities), "filtered": len(selected), "excluded": excluded},
                )
            )

    without_refs = sorted(a.id for a in selected if not a.refs)
    if without_refs:
        warnings.append(
            PipelineWarning(
                code=WarningCode.ACTIVITIES_WITHOUT_REFS,
                message=f"{len(without_refs)} activities have no refs and cannot cluster",
                context={"activity_ids": without_refs[:5], "count": len(without_refs)},
            )
        )

    by_id = {a.id: a for a in selected}
    with time_block("clustering"):
        graph, ref_members = _build_graph(selected)
        components = sorted((sorted(c) for c in nx.connected_components(graph)), key=lambda c: c[0])

    clusters: list[Cluster] = []
    unclustered: list[str] = []
    for component in components:
        if len(component) < min_size:
            unclustered.extend(component)
            continue
        members = [by_id[i] for i in component]
        refs = shared_references(members)
        index = len(clusters)
        cluster_id = options.id_generator(index) if options.id_generator else default_cluster_id(component)
        clusters.append(
            Cluster(
                id=cluster_id,
                activity_ids=tuple(component),
                shared_refs=refs,
                metrics=summarize_activities(members, refs),
            )
        )
    unclustered.sort()

    clustered_count = sum(len(c.activity_ids) for c in clusters)
    metrics = ClusteringMetrics(
        total_activities=len(selected),
        clustered_activities=clustered_count,
        unclustered_activities=len(unclustered),
        cluster_count=len(clusters),
        avg_cluster_size=clustered_count / len(clusters) if clusters else 0.0,
        largest_cluster=max((len(c.activity_ids) for c in clusters), default=0),
    )

    diagnostics = ProcessorDiagnostics(
        processor=PROCESSOR_NAME,
        processing_time_ms=(time.perf_counter() - start_time) * 1000,
        input_metrics={
            "total_activities": len(selected),
            "activities_with_refs": len(selected) - len(without_refs),
            "total_refs": sum(len(a.refs) for a in selected),
            "unique_refs": len(ref_members),
        },
        output_metrics={
            "cluster_count": metrics.cluster_count,
            "clustered_activities": metrics.clustered_activities,
            "unclustered_activities": metrics.unclustered_activities,
            "avg_cluster_size": metrics.avg_cluster_size,
            "largest_cluster": metrics.largest_cluster,
        },
    )
    if options.debug:
        diagnostics.debug = {
            "components": [{"size": len(c), "meets_min_size": len(c) >= min_size} for c in components],
            "ref_distribution": {ref: len(ids) for ref, ids in sorted(ref_members.items())},
        }

    log_event(
        "clustering.completed",
        clusters=metrics.cluster_count,
        clustered=metrics.clustered_activities,
        unclustered=metrics.unclustered_activities,
    )
    return ProcessorResult(
        data=ClusterExtractionOutput(clusters=clusters, unclustered=unclustered, metrics=metrics),
        diagnostics=diagnostics,
        warnings=warnings,
    )


def cluster_by_refs(activities: Sequence[Activity], min_cluster_size: int = 2) -> list[list[str]]:
    """Just the member id groups."""
    result = build_clusters(activities, ClusterExtractionOptions(min_cluster_size=min_cluster_size))
    if result.data is None:
        return []
    return [list(c.activity_ids) for c in result.data.clusters]
