"""
Pytest configuration for StoryQ tests

Provides the shared persona, the AUTH-123 activity scenario, in-memory
stores and fake enrichment providers. No test touches the network.
"""

from __future__ import annotations

import pytest

from storyq.observability.telemetry import reset_telemetry
from storyq.pipeline.errors import ProviderUnavailableError
from storyq.pipeline.types import Activity, Cluster, Persona, ToolIdentity
from storyq.storage.memory import InMemoryActivityStore, InMemoryClusterStore, InMemoryPersonaProvider
from tests.factories import FailingProvider, PrefixProvider, at, make_cluster


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_telemetry()
    yield
    reset_telemetry()


@pytest.fixture
def persona() -> Persona:
    return Persona(
        display_name="Alice Chen",
        emails=("alice@acme.com",),
        identities={
            "github": ToolIdentity(login="alicechen"),
            "jira": ToolIdentity(account_id="acc-alice", email="alice@acme.com"),
            "slack": ToolIdentity(account_id="U_ALICE", login="alice"),
            "confluence": ToolIdentity(account_id="conf-alice"),
        },
    )


@pytest.fixture
def jira_ticket() -> Activity:
    """Ticket assigned to Alice, reported by Bob (earliest activity)."""
    return Activity(
        id="jira-auth-123",
        source="jira",
        title="AUTH-123: Login fails after token expiry",
        description="Users were getting logged out. Login is broken when the OAuth token expires; "
        "we need a refresh flow.",
        timestamp=at(0),
        source_url="https://acme.atlassian.net/browse/AUTH-123",
        raw_data={
            "key": "AUTH-123",
            "assignee": {"accountId": "acc-alice", "emailAddress": "alice@acme.com"},
            "reporter": {"accountId": "acc-bob", "emailAddress": "bob@acme.com"},
        },
    )


@pytest.fixture
def pull_request() -> Activity:
    """Pull request authored by Alice with a measurable outcome."""
    return Activity(
        id="gh-pr-42",
        source="github",
        title="Implement OAuth token refresh (AUTH-123)",
        description="Implemented silent token refresh in the auth middleware. "
        "Reduced login failures from 12% to 0.5%.",
        timestamp=at(4),
        source_url="https://github.com/acme/backend/pull/42",
        raw_data={"number": 42, "author": "alicechen", "reviewers": ["bobsmith"]},
    )


@pytest.fixture
def slack_mention() -> Activity:
    """Bob's message mentioning Alice."""
    return Activity(
        id="slack-msg-1",
        source="slack",
        title="Message in #auth-team",
        description="@alice can you take a look at AUTH-123 when you get a chance?",
        timestamp=at(5),
        raw_data={"author": "U_BOB"},
    )


@pytest.fixture
def auth_activities(jira_ticket, pull_request, slack_mention) -> list[Activity]:
    """The AUTH-123 scenario without refs (run extraction to fill them)."""
    return [jira_ticket, pull_request, slack_mention]


@pytest.fixture
def auth_annotated(auth_activities) -> list[Activity]:
    from storyq.pipeline.runner import annotate_activities

    return annotate_activities(auth_activities)


@pytest.fixture
def auth_cluster(auth_annotated) -> Cluster:
    return make_cluster("cluster-auth", auth_annotated)


@pytest.fixture
def observer_activities() -> list[Activity]:
    """Five tickets sharing OPS-7 with no trace of Alice."""
    return [
        Activity(
            id=f"ops-{i}",
            source="jira",
            title=f"OPS-7 follow-up {i}",
            description="Rotate the on-call schedule",
            timestamp=at(i),
            refs=("OPS-7",),
            raw_data={"reporter": {"accountId": "acc-carol"}, "assignee": {"accountId": "acc-dave"}},
        )
        for i in range(5)
    ]


@pytest.fixture
def activity_store(auth_annotated, observer_activities) -> InMemoryActivityStore:
    return InMemoryActivityStore([*auth_annotated, *observer_activities])


@pytest.fixture
def cluster_store(auth_cluster, observer_activities) -> InMemoryClusterStore:
    return InMemoryClusterStore([auth_cluster, make_cluster("cluster-ops", observer_activities)])


@pytest.fixture
def persona_provider(persona) -> InMemoryPersonaProvider:
    return InMemoryPersonaProvider({"alice": persona})


@pytest.fixture
def prefix_provider() -> PrefixProvider:
    return PrefixProvider()


@pytest.fixture
def unavailable_provider() -> FailingProvider:
    return FailingProvider(ProviderUnavailableError("Gemini unreachable"))
