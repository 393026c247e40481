"""
Clustering entry point for raw activities.

run_clustering() extracts references for every activity, then groups the
annotated activities with build_clusters(). Refs already present on an
activity are kept and merged with the extracted ones.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence

from storyq.observability.logging import get_logger
from storyq.observability.telemetry import time_block
from storyq.pipeline.cluster_builder import build_clusters
from storyq.pipeline.ref_extractor import ReferenceExtractor
from storyq.pipeline.types import (
    Activity,
    ClusterExtractionOptions,
    ClusterExtractionResult,
    RefExtractionOptions,
)

logger = get_logger(__name__)


def annotate_activities(
    activities: Sequence[Activity],
    extractor: ReferenceExtractor | None = None,
    options: RefExtractionOptions | None = None,
) -> list[Activity]:
    """Fill `refs` / `ref_confidence` on each activity. Non-Activity items pass through untouched."""
    extractor = extractor or ReferenceExtractor()
    annotated: list[Activity] = []
    for activity in activities:
        if not isinstance(activity, Activity):
            annotated.append(activity)
            continue
        found = extractor.annotate(activity, options)
        if activity.refs:
            refs = tuple(sorted(set(activity.refs) | set(found.refs)))
            found = dataclasses.replace(
                found, refs=refs, ref_confidence={**activity.ref_confidence, **found.ref_confidence}
            )
        annotated.append(found)
    return annotated


def run_clustering(
    activities: Sequence[Activity],
    options: ClusterExtractionOptions | None = None,
    extractor: ReferenceExtractor | None = None,
    ref_options: RefExtractionOptions | None = None,
) -> ClusterExtractionResult:
    """
    Reference extraction + clustering in one call.

    Args:
        activities: Raw activities (refs may be empty)
        options: Clustering options
        extractor: Reference extractor (default pattern library if None)
        ref_options: Options forwarded to the extractor

    Returns:
        build_clusters() result over the annotated activities
    """
    if not isinstance(activities, Sequence) or isinstance(activities, (str, bytes)):
        # Let build_clusters report INVALID_ACTIVITIES
        return build_clusters(activities, options)

    with time_block("clustering.annotate"):
        annotated = annotate_activities(activities, extractor, ref_options)
    logger.debug("Annotated %d activities with references", len(annotated))
    return build_clusters(annotated, options)
