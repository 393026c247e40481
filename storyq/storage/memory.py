"""In-memory implementations of the store contracts (tests, scripts, batch jobs)."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from storyq.pipeline.types import Activity, Cluster, Persona


class InMemoryActivityStore:
    """ActivityStore backed by a dict. Duplicate ids: last one wins."""

    def __init__(self, activities: Iterable[Activity] = ()) -> None:
        self._activities: dict[str, Activity] = {a.id: a for a in activities}

    def add(self, activity: Activity) -> None:
        self._activities[activity.id] = activity

    def lookup(self, activity_ids: Sequence[str], timeout: float | None = None) -> list[Activity]:
        return [self._activities[i] for i in activity_ids if i in self._activities]

    def __len__(self) -> int:
        return len(self._activities)


class InMemoryClusterStore:
    def __init__(self, clusters: Iterable[Cluster] = ()) -> None:
        self._clusters: dict[str, Cluster] = {c.id: c for c in clusters}

    def add(self, cluster: Cluster) -> None:
        self._clusters[cluster.id] = cluster

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        return self._clusters.get(cluster_id)


class InMemoryPersonaProvider:
    def __init__(self, personas: dict[str, Persona] | None = None) -> None:
        self._personas: dict[str, Persona] = dict(personas or {})

    def add(self, persona_id: str, persona: Persona) -> None:
        self._personas[persona_id] = persona

    def get_persona(self, persona_id: str) -> Persona | None:
        return self._personas.get(persona_id)
