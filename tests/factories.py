"""Builders shared by the unit and integration tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from storyq.pipeline.cluster_builder import shared_references, summarize_activities
from storyq.pipeline.types import Activity, Cluster

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(days: int) -> datetime:
    return BASE_TIME + timedelta(days=days)


def make_activity(activity_id: str, source: str = "jira", refs: tuple[str, ...] = (), **kwargs) -> Activity:
    kwargs.setdefault("title", f"Activity {activity_id}")
    return Activity(id=activity_id, source=source, refs=refs, **kwargs)


def make_cluster(cluster_id: str, activities: list[Activity]) -> Cluster:
    refs = shared_references(activities)
    return Cluster(
        id=cluster_id,
        activity_ids=tuple(sorted(a.id for a in activities)),
        shared_refs=refs,
        metrics=summarize_activities(activities, refs),
    )


class PrefixProvider:
    """Polishes by prefixing the text; records every call."""

    def __init__(self, prefix: str = "Polished: ") -> None:
        self.prefix = prefix
        self.calls: list[tuple[str, dict]] = []

    def polish(self, text, context, timeout=None):
        self.calls.append((text, dict(context)))
        return f"{self.prefix}{text}"


class FailingProvider:
    """Raises `exc` for the named components (all components when None)."""

    def __init__(self, exc: BaseException, components: set[str] | None = None) -> None:
        self.exc = exc
        self.components = components
        self.calls: list[str] = []

    def polish(self, text, context, timeout=None):
        self.calls.append(context["component"])
        if self.components is None or context["component"] in self.components:
            raise self.exc
        return f"Polished: {text}"
