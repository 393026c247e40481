"""Tests for participation detection."""

from __future__ import annotations

import pytest

from storyq.observability.telemetry import get_counter
from storyq.pipeline.cluster_hydrator import as_hydrated
from storyq.pipeline.participation import analyze_participation, classify_activity
from storyq.pipeline.types import ParticipationLevel, ParticipationSummary
from tests.factories import make_activity, make_cluster


class TestScenarioLevels:
    def test_assigned_ticket_is_contribution(self, jira_ticket, persona):
        result = classify_activity(jira_ticket, persona)
        assert result.level is ParticipationLevel.CONTRIBUTOR
        assert result.signals == ["jira-assignee"]

    def test_authored_pull_request_is_initiation(self, pull_request, persona):
        result = classify_activity(pull_request, persona)
        assert result.level is ParticipationLevel.INITIATOR
        assert "github-author" in result.signals

    def test_handle_in_message_is_mention(self, slack_mention, persona):
        result = classify_activity(slack_mention, persona)
        assert result.level is ParticipationLevel.MENTIONED
        assert result.signals == ["mention-text"]

    def test_every_activity_gets_exactly_one_result(self, auth_cluster, auth_annotated, persona):
        results = analyze_participation(as_hydrated(auth_cluster, auth_annotated), persona)

        assert [r.activity_id for r in results] == ["jira-auth-123", "gh-pr-42", "slack-msg-1"]
        summary = ParticipationSummary.from_results(results)
        assert (summary.initiator_count, summary.contributor_count, summary.mentioned_count) == (1, 1, 1)
        assert summary.observer_count == 0
        assert get_counter("participation.initiator") == 1
        assert get_counter("participation.mentioned") == 1


class TestStructuralSignals:
    def test_reporter_is_initiator(self, persona):
        activity = make_activity("t1", raw_data={"reporter": {"accountId": "acc-alice"}})
        assert classify_activity(activity, persona).level is ParticipationLevel.INITIATOR

    def test_strongest_signal_wins(self, persona):
        activity = make_activity(
            "t1",
            raw_data={"assignee": {"accountId": "acc-alice"}, "reporter": {"accountId": "acc-alice"}},
        )
        result = classify_activity(activity, persona)

        assert result.level is ParticipationLevel.INITIATOR
        assert result.signals == ["jira-reporter", "jira-assignee"]

    def test_watcher_stays_observer(self, persona):
        activity = make_activity("t1", raw_data={"watchers": [{"accountId": "acc-alice"}]})
        result = classify_activity(activity, persona)

        assert result.level is ParticipationLevel.OBSERVER
        assert result.signals == ["jira-watcher"]

    def test_reviewer_list_is_contribution(self, persona):
        activity = make_activity("pr", "github", raw_data={"author": "bob", "reviewers": ["AliceChen"]})
        assert classify_activity(activity, persona).level is ParticipationLevel.CONTRIBUTOR

    def test_slack_reply_is_contribution(self, persona):
        activity = make_activity("m1", "slack", raw_data={"author": "U_ALICE", "isReply": True})
        result = classify_activity(activity, persona)

        assert result.level is ParticipationLevel.CONTRIBUTOR
        assert result.signals == ["slack-replier"]

    def test_email_matches_any_tool(self, persona):
        activity = make_activity("doc", "confluence", raw_data={"creator": "ALICE@acme.com"})
        assert classify_activity(activity, persona).level is ParticipationLevel.INITIATOR

    def test_unknown_tool_matches_display_name(self, persona):
        activity = make_activity("n1", "notion", raw_data={"author": "Alice Chen"})
        assert classify_activity(activity, persona).level is ParticipationLevel.INITIATOR

    def test_other_tools_identity_does_not_leak(self, persona):
        # acc-alice is Alice's Jira id, not her GitHub login
        activity = make_activity("pr", "github", raw_data={"author": "acc-alice"})
        assert classify_activity(activity, persona).level is ParticipationLevel.OBSERVER


class TestTextMentions:
    @pytest.mark.parametrize(
        "description",
        [
            "Pinging @AliceChen for review",
            "Thanks alice chen for the fix",
            "Contact alice@acme.com for details",
        ],
    )
    def test_text_mentions(self, persona, description):
        activity = make_activity("m", "slack", title="note", description=description)
        assert classify_activity(activity, persona).level is ParticipationLevel.MENTIONED

    def test_handle_must_end_at_word_boundary(self, persona):
        activity = make_activity("m", "slack", title="note", description="cc @alicechenx and @alice.b")
        assert classify_activity(activity, persona).level is ParticipationLevel.OBSERVER

    def test_no_signal_is_observer(self, persona):
        activity = make_activity("m", "slack", title="Deploy finished", raw_data={"author": "U_BOB"})
        result = classify_activity(activity, persona)

        assert result.level is ParticipationLevel.OBSERVER
        assert result.signals == []


def test_observer_cluster(observer_activities, persona):
    cluster = as_hydrated(make_cluster("ops", observer_activities), observer_activities)
    results = analyze_participation(cluster, persona)
    assert {r.level for r in results} == {ParticipationLevel.OBSERVER}
