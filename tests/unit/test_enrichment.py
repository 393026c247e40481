"""
Tests for the Enrichment Stage.

Polishing is best effort and per component: one component failing must
never cost the others their polish, and sources / confidence never change.
"""

from __future__ import annotations

import dataclasses

import pytest

from storyq.observability.telemetry import get_counter
from storyq.pipeline.cluster_hydrator import as_hydrated
from storyq.pipeline.enrichment import (
    ComponentPolishResult,
    NarrativeEnricher,
    PolishStatus,
    build_source_context,
    classify_provider_error,
    enrich_narrative,
    overall_status,
)
from storyq.pipeline.errors import ProviderTimeoutError, ProviderUnavailableError
from storyq.pipeline.narrative_extractor import generate_narrative
from storyq.pipeline.types import ErrorCode, NarrativeComponent, WarningCode
from tests.factories import FailingProvider, PrefixProvider


@pytest.fixture
def hydrated(auth_cluster, auth_annotated):
    return as_hydrated(auth_cluster, auth_annotated)


@pytest.fixture
def narrative(hydrated, persona):
    return generate_narrative(hydrated, persona, "STAR").data.narrative


@pytest.fixture
def source_context(hydrated):
    return build_source_context(hydrated)


class ConstantProvider:
    def __init__(self, value):
        self.value = value

    def polish(self, text, context, timeout=None):
        return self.value


class EchoProvider:
    def polish(self, text, context, timeout=None):
        return f"  {text}  "


class TestNotConfigured:
    def test_no_provider_returns_narrative_unchanged(self, narrative):
        result = NarrativeEnricher(None).enrich(narrative)

        assert result.success
        assert result.data.status is PolishStatus.NOT_CONFIGURED
        assert result.data.narrative is narrative
        assert not result.data.enriched
        assert result.has_warning(WarningCode.NOT_CONFIGURED)
        assert get_counter("enrichment.not_configured") == 1

    def test_helper_defaults_to_no_provider(self, narrative):
        assert enrich_narrative(narrative).data.status is PolishStatus.NOT_CONFIGURED


class TestPolish:
    def test_every_component_polished(self, narrative, source_context):
        provider = PrefixProvider()
        result = NarrativeEnricher(provider).enrich(narrative, source_context)
        polished = result.data.narrative

        assert result.data.status is PolishStatus.SUCCESS
        assert polished.enriched
        assert result.errors == []
        assert len(provider.calls) == 4
        for before, after in zip(narrative.components, polished.components):
            assert after.text == f"Polished: {before.text}"
            assert after.sources == before.sources
            assert after.confidence == before.confidence

    def test_original_narrative_is_not_mutated(self, narrative, source_context):
        texts = [c.text for c in narrative.components]
        NarrativeEnricher(PrefixProvider()).enrich(narrative, source_context)

        assert [c.text for c in narrative.components] == texts
        assert not narrative.enriched

    def test_provider_receives_component_context(self, narrative, source_context):
        provider = PrefixProvider()
        NarrativeEnricher(provider).enrich(narrative, source_context)
        contexts = {ctx["component"]: ctx for _, ctx in provider.calls}

        assert contexts["situation"]["framework"] == "STAR"
        assert contexts["situation"]["sources"] == [source_context["jira-auth-123"]]
        assert contexts["result"]["sources"][0].startswith("Implement OAuth token refresh (AUTH-123): ")

    def test_component_order_is_preserved(self, narrative, source_context):
        result = NarrativeEnricher(PrefixProvider(), max_workers=4).enrich(narrative, source_context)
        assert [c.name for c in result.data.narrative.components] == ["situation", "task", "action", "result"]
        assert [r.component for r in result.data.components] == ["situation", "task", "action", "result"]


class TestComponentFailures:
    def test_one_failure_does_not_block_others(self, narrative, source_context):
        provider = FailingProvider(ProviderUnavailableError("Gemini unreachable"), components={"action"})
        result = NarrativeEnricher(provider).enrich(narrative, source_context)
        polished = result.data.narrative

        assert result.success
        assert result.data.status is PolishStatus.SUCCESS
        assert polished.component("action").text == narrative.component("action").text
        assert polished.component("result").text.startswith("Polished: ")
        [error] = result.data.errors
        assert error.component == "action"
        assert error.code is ErrorCode.LLM_UNAVAILABLE

        [envelope_error] = result.errors
        assert envelope_error.recoverable
        assert envelope_error.context == {"component": "action"}

    def test_all_failed(self, narrative, source_context):
        provider = FailingProvider(ProviderUnavailableError("down"))
        result = NarrativeEnricher(provider).enrich(narrative, source_context)

        assert result.data.status is PolishStatus.FAILED
        assert not result.data.enriched
        assert len(result.data.errors) == 4
        assert [c.text for c in result.data.narrative.components] == [c.text for c in narrative.components]
        assert get_counter("enrichment.failed") == 4

    @pytest.mark.parametrize(
        "exc,code",
        [
            (ProviderTimeoutError("too slow"), ErrorCode.LLM_TIMEOUT),
            (TimeoutError(), ErrorCode.LLM_TIMEOUT),
            (ProviderUnavailableError("down"), ErrorCode.LLM_UNAVAILABLE),
            (ConnectionError("reset"), ErrorCode.LLM_UNAVAILABLE),
            (ValueError("Malformed polish response"), ErrorCode.LLM_ERROR),
            (RuntimeError("boom"), ErrorCode.LLM_ERROR),
        ],
    )
    def test_error_codes(self, narrative, source_context, exc, code):
        result = NarrativeEnricher(FailingProvider(exc, components={"task"})).enrich(narrative, source_context)
        [error] = result.data.errors
        assert error.code is code
        assert classify_provider_error(exc) is code

    def test_exception_without_message_uses_type_name(self, narrative, source_context):
        result = NarrativeEnricher(FailingProvider(TimeoutError(), components={"task"})).enrich(
            narrative, source_context
        )
        assert result.data.errors[0].message == "TimeoutError"

    def test_non_string_output_is_an_error(self, narrative, source_context):
        result = NarrativeEnricher(ConstantProvider({"text": "nope"})).enrich(narrative, source_context)

        assert result.data.status is PolishStatus.FAILED
        assert {e.code for e in result.data.errors} == {ErrorCode.LLM_ERROR}


class TestNoImprovement:
    def test_identical_output(self, narrative, source_context):
        result = NarrativeEnricher(EchoProvider()).enrich(narrative, source_context)

        assert result.data.status is PolishStatus.NO_IMPROVEMENT
        assert not result.data.enriched
        assert {r.reason for r in result.data.components} == {"No changes"}

    def test_empty_output(self, narrative, source_context):
        result = NarrativeEnricher(ConstantProvider("   ")).enrich(narrative, source_context)

        assert result.data.status is PolishStatus.NO_IMPROVEMENT
        assert result.errors == []


class TestSkipped:
    def test_short_and_zero_confidence_components_are_skipped(self, narrative, source_context):
        components = [
            NarrativeComponent("situation", "Short", ["jira-auth-123"], 0.8),
            NarrativeComponent("task", "A long enough task description", [], 0.0),
            *narrative.components[2:],
        ]
        sparse = dataclasses.replace(narrative, components=components)
        provider = PrefixProvider()
        result = NarrativeEnricher(provider).enrich(sparse, source_context)
        statuses = {r.component: r.status for r in result.data.components}

        assert statuses["situation"] is PolishStatus.SKIPPED
        assert statuses["task"] is PolishStatus.SKIPPED
        assert statuses["action"] is PolishStatus.SUCCESS
        assert len(provider.calls) == 2
        assert result.data.narrative.component("situation").text == "Short"


class TestOverallStatus:
    @staticmethod
    def _results(*statuses):
        return [ComponentPolishResult(f"c{i}", s, "x", "x") for i, s in enumerate(statuses)]

    def test_empty(self):
        assert overall_status([]) is PolishStatus.NO_IMPROVEMENT

    def test_any_success_wins(self):
        results = self._results(PolishStatus.FAILED, PolishStatus.SUCCESS, PolishStatus.SKIPPED)
        assert overall_status(results) is PolishStatus.SUCCESS

    def test_all_failed(self):
        assert overall_status(self._results(PolishStatus.FAILED, PolishStatus.FAILED)) is PolishStatus.FAILED

    def test_failed_and_skipped(self):
        results = self._results(PolishStatus.FAILED, PolishStatus.SKIPPED)
        assert overall_status(results) is PolishStatus.NO_IMPROVEMENT


def test_source_context_text(hydrated):
    context = build_source_context(hydrated)

    assert set(context) == {"jira-auth-123", "gh-pr-42", "slack-msg-1"}
    assert context["slack-msg-1"].startswith("Message in #auth-team: @alice")
