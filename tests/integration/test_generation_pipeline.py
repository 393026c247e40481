"""
End-to-end story generation.

Raw activities (no refs) go through reference extraction and clustering,
the clusters land in the in-memory stores, and the orchestrator turns them
into narratives.
"""

from __future__ import annotations

import random

import pytest

from storyq.pipeline import run_clustering
from storyq.pipeline.enrichment import PolishStatus
from storyq.pipeline.orchestrator import GenerationOrchestrator, GenerationStage
from storyq.pipeline.participation import analyze_participation
from storyq.pipeline.types import (
    Activity,
    ErrorCode,
    ParticipationLevel,
    WarningCode,
)
from storyq.storage.memory import InMemoryActivityStore, InMemoryClusterStore
from tests.factories import FailingProvider, PrefixProvider, at


@pytest.fixture
def raw_observer_activities():
    return [
        Activity(
            id=f"ops-{i}",
            source="jira" if i % 2 else "confluence",
            title=f"OPS-7 follow-up {i}",
            description="Rotate the on-call schedule",
            timestamp=at(10 + i),
            raw_data={"reporter": {"accountId": "acc-carol"}, "creator": {"accountId": "conf-carol"}},
        )
        for i in range(5)
    ]


@pytest.fixture
def isolated_activity():
    return Activity(
        id="figma-solo",
        source="figma",
        title="Onboarding mockups",
        source_url="https://www.figma.com/file/QWERTY12345/Onboarding",
        timestamp=at(20),
    )


@pytest.fixture
def all_activities(auth_activities, raw_observer_activities, isolated_activity):
    return [*auth_activities, *raw_observer_activities, isolated_activity]


@pytest.fixture
def clustering(all_activities):
    return run_clustering(all_activities)


@pytest.fixture
def cluster_ids(clustering):
    by_member = {}
    for cluster in clustering.data.clusters:
        for activity_id in cluster.activity_ids:
            by_member[activity_id] = cluster.id
    return {"auth": by_member["gh-pr-42"], "ops": by_member["ops-0"]}


@pytest.fixture
def make_orchestrator(clustering, all_activities, persona_provider):
    def _make(provider=None, activity_store=None):
        return GenerationOrchestrator(
            cluster_store=InMemoryClusterStore(clustering.data.clusters),
            activity_store=activity_store or InMemoryActivityStore(all_activities),
            persona_provider=persona_provider,
            enrichment_provider=provider,
        )

    return _make


class TestClustering:
    def test_clusters_from_raw_activities(self, clustering):
        clusters = {frozenset(c.activity_ids): c for c in clustering.data.clusters}
        auth = clusters[frozenset({"jira-auth-123", "gh-pr-42", "slack-msg-1"})]

        assert len(clusters) == 2
        assert auth.shared_refs == ("AUTH-123",)
        assert frozenset(f"ops-{i}" for i in range(5)) in clusters
        assert clustering.data.unclustered == ["figma-solo"]

    def test_every_activity_placed_once(self, clustering, all_activities):
        placed = [i for c in clustering.data.clusters for i in c.activity_ids] + clustering.data.unclustered
        assert sorted(placed) == sorted(a.id for a in all_activities)

    def test_shuffled_input_gives_same_clusters(self, all_activities, clustering):
        expected = {frozenset(c.activity_ids) for c in clustering.data.clusters}
        shuffled = list(all_activities)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            result = run_clustering(shuffled)
            assert {frozenset(c.activity_ids) for c in result.data.clusters} == expected
            assert sorted(c.id for c in result.data.clusters) == sorted(c.id for c in clustering.data.clusters)

    def test_single_isolated_activity(self, isolated_activity):
        result = run_clustering([isolated_activity])

        assert result.data.clusters == []
        assert result.data.unclustered == ["figma-solo"]

    def test_invalid_input(self):
        result = run_clustering(None)
        assert result.error(ErrorCode.INVALID_ACTIVITIES) is not None


class TestAuthScenario:
    def test_full_story(self, make_orchestrator, cluster_ids):
        result = make_orchestrator().generate(cluster_ids["auth"], "alice", framework="STAR")
        narrative = result.narrative

        assert result.success
        assert result.stage is GenerationStage.DONE
        assert sorted(p.level.value for p in result.participations) == ["contributor", "initiator", "mentioned"]
        assert result.validation.passed
        assert [c.name for c in narrative.components] == ["situation", "task", "action", "result"]
        assert narrative.component("action").text
        assert narrative.component("result").text
        assert set(narrative.component("action").sources) <= {"gh-pr-42", "jira-auth-123"}
        assert set(narrative.component("result").sources) <= {"gh-pr-42", "jira-auth-123"}
        assert narrative.overall_confidence <= 1.0
        assert narrative.overall_confidence >= min(c.confidence for c in narrative.components)

    def test_polished_story(self, make_orchestrator, cluster_ids):
        provider = PrefixProvider()
        result = make_orchestrator(provider).generate(cluster_ids["auth"], "alice")

        assert result.enriched
        assert result.polish_status is PolishStatus.SUCCESS
        assert len(provider.calls) == 4
        situation_context = next(ctx for _, ctx in provider.calls if ctx["component"] == "situation")
        assert situation_context["sources"][0].startswith("AUTH-123: Login fails after token expiry")

    def test_one_component_failing_keeps_the_rest(self, make_orchestrator, cluster_ids):
        provider = FailingProvider(TimeoutError("polish took too long"), components={"action"})
        result = make_orchestrator(provider).generate(cluster_ids["auth"], "alice")
        components = {c.name: c for c in result.narrative.components}

        assert result.success
        assert all(c.text for c in components.values())
        assert not components["action"].text.startswith("Polished: ")
        assert components["result"].text.startswith("Polished: ")
        assert [e.code for e in result.polish_errors] == [ErrorCode.LLM_TIMEOUT]

    def test_partial_hydration_degrades(self, make_orchestrator, cluster_ids, auth_activities):
        # The Slack message vanished from the store after clustering
        store = InMemoryActivityStore([a for a in auth_activities if a.id != "slack-msg-1"])
        result = make_orchestrator(activity_store=store).generate(cluster_ids["auth"], "alice")
        warning = next(w for w in result.warnings if w.code is WarningCode.ACTIVITIES_NOT_FOUND)

        assert result.success
        assert warning.context["missing_ids"] == ["slack-msg-1"]
        assert result.narrative.metadata.total_activities == 2


class TestObserverScenario:
    def test_all_observers_fail_gates(self, make_orchestrator, cluster_ids):
        result = make_orchestrator().generate(cluster_ids["ops"], "alice")
        warning = next(w for w in result.warnings if w.code is WarningCode.VALIDATION_GATES_FAILED)

        assert result.success
        assert result.narrative is None
        assert {p.level for p in result.participations} == {ParticipationLevel.OBSERVER}
        assert "MAX_OBSERVER_RATIO" in warning.context["failed_gates"]
        assert not result.validation.passed


class TestBatch:
    def test_batch_over_all_clusters(self, make_orchestrator, clustering, cluster_ids):
        ids = [c.id for c in clustering.data.clusters]
        results = make_orchestrator(PrefixProvider()).generate_batch(ids, "alice")

        assert [r.cluster_id for r in results] == ids
        assert all(r.success for r in results)
        stories = {r.cluster_id: r for r in results}
        assert stories[cluster_ids["auth"]].enriched
        assert stories[cluster_ids["ops"]].narrative is None


def test_participation_is_total(clustering, all_activities, persona):
    from storyq.pipeline.cluster_hydrator import hydrate_cluster

    store = InMemoryActivityStore(all_activities)
    for cluster in clustering.data.clusters:
        hydrated = hydrate_cluster(cluster, store).data
        results = analyze_participation(hydrated, persona)
        assert [r.activity_id for r in results] == list(hydrated.activity_ids)
        assert all(isinstance(r.level, ParticipationLevel) for r in results)
