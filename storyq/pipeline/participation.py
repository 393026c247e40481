"""
Participation Analyzer - how was the persona involved in each activity?

Two kinds of evidence are collected per activity:

1. Structural: identity-bearing fields of the raw payload (author, assignee,
   reviewers, watchers...) compared case-insensitively with the persona's
   emails and the identity fields registered for that tool.
2. Textual: the persona's @handle, display name or email appearing in the
   title or description.

Every activity receives exactly one level. The strongest signal wins:
initiator > contributor > mentioned > observer. An activity with no signal
is an observer (it is only in the cluster through a shared reference).
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter
from storyq.pipeline.types import (
    Activity,
    HydratedCluster,
    ParticipationLevel,
    ParticipationResult,
    Persona,
    ToolType,
)

logger = get_logger(__name__)

INITIATOR = ParticipationLevel.INITIATOR
CONTRIBUTOR = ParticipationLevel.CONTRIBUTOR
MENTIONED = ParticipationLevel.MENTIONED
OBSERVER = ParticipationLevel.OBSERVER

# (raw payload field, signal name, level) per tool
FIELD_SIGNALS: dict[ToolType, tuple[tuple[str, str, ParticipationLevel], ...]] = {
    ToolType.JIRA: (
        ("reporter", "jira-reporter", INITIATOR),
        ("creator", "jira-reporter", INITIATOR),
        ("assignee", "jira-assignee", CONTRIBUTOR),
        ("commenters", "jira-commenter", CONTRIBUTOR),
        ("mentions", "jira-mentioned", MENTIONED),
        ("watchers", "jira-watcher", OBSERVER),
    ),
    ToolType.GITHUB: (
        ("author", "github-author", INITIATOR),
        ("user", "github-author", INITIATOR),
        ("reviewers", "github-reviewer", CONTRIBUTOR),
        ("requestedReviewers", "github-reviewer", CONTRIBUTOR),
        ("coAuthors", "github-coauthor", CONTRIBUTOR),
        ("assignees", "github-assignee", CONTRIBUTOR),
        ("commenters", "github-commenter", CONTRIBUTOR),
        ("mentions", "github-mentioned", MENTIONED),
    ),
    ToolType.CONFLUENCE: (
        ("creator", "confluence-creator", INITIATOR),
        ("lastModifiedBy", "confluence-editor", CONTRIBUTOR),
        ("editors", "confluence-editor", CONTRIBUTOR),
        ("mentions", "confluence-mentioned", MENTIONED),
        ("watchers", "confluence-watcher", OBSERVER),
    ),
    ToolType.SLACK: (
        ("author", "slack-author", INITIATOR),
        ("userId", "slack-author", INITIATOR),
        ("mentions", "slack-mentioned", MENTIONED),
    ),
    ToolType.GOOGLE: (
        ("organizer", "google-organizer", INITIATOR),
        ("owner", "google-owner", INITIATOR),
        ("editors", "google-editor", CONTRIBUTOR),
        ("attendees", "google-attendee", OBSERVER),
    ),
    ToolType.OUTLOOK: (
        ("organizer", "outlook-organizer", INITIATOR),
        ("from", "outlook-organizer", INITIATOR),
        ("attendees", "outlook-attendee", OBSERVER),
        ("to", "outlook-recipient", OBSERVER),
    ),
    ToolType.FIGMA: (
        ("owner", "figma-owner", INITIATOR),
        ("creator", "figma-owner", INITIATOR),
        ("editors", "figma-editor", CONTRIBUTOR),
        ("commenters", "figma-commenter", CONTRIBUTOR),
    ),
    ToolType.GENERIC: (
        ("author", "generic-author", INITIATOR),
        ("assignee", "generic-assignee", CONTRIBUTOR),
        ("mentions", "generic-mentioned", MENTIONED),
    ),
}

TEXT_MENTION_SIGNAL = "mention-text"
MIN_HANDLE_CHARS = 3


def _tool_type(source: str | ToolType) -> ToolType:
    try:
        return ToolType(source)
    except ValueError:
        return ToolType.GENERIC


def _field_values(value: Any) -> Iterable[str]:
    """Flatten a payload field (str, dict of identity keys, or list of either)."""
    if value is None or value == "":
        return
    if isinstance(value, Mapping):
        for v in value.values():
            if isinstance(v, str) and v:
                yield v
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            yield from _field_values(item)
    elif not isinstance(value, bool):
        yield str(value)


class IdentityMatcher:
    """Classifies activities against one persona."""

    def __init__(self, persona: Persona) -> None:
        self.persona = persona
        self._emails = {e.lower() for e in persona.emails if e}
        self._text_patterns = self._build_text_patterns()

    def _identity_values(self, tool: ToolType) -> set[str]:
        values = set(self._emails)
        if tool is ToolType.GENERIC:
            values.add(self.persona.display_name.lower())
            return values
        identity = self.persona.identity(tool.value)
        if identity is not None:
            values.update(v.lower() for v in identity.values())
        return values

    def _build_text_patterns(self) -> list[re.Pattern[str]]:
        handles: set[str] = set()
        names: set[str] = {self.persona.display_name}
        for identity in self.persona.identities.values():
            if identity.login:
                handles.add(identity.login)
            if identity.display_name:
                names.add(identity.display_name)

        patterns = [
            re.compile(rf"@{re.escape(h)}(?![\w.-])", re.IGNORECASE)
            for h in sorted(handles)
            if len(h) >= MIN_HANDLE_CHARS
        ]
        patterns += [
            re.compile(rf"(?<!\w){re.escape(n)}(?!\w)", re.IGNORECASE)
            for n in sorted(names)
            if n and len(n) >= MIN_HANDLE_CHARS
        ]
        patterns += [re.compile(re.escape(e), re.IGNORECASE) for e in sorted(self._emails)]
        return patterns

    def structural_signals(self, activity: Activity) -> list[tuple[str, ParticipationLevel]]:
        tool = _tool_type(activity.source)
        raw = activity.raw_data or {}
        known = self._identity_values(tool)

        found: list[tuple[str, ParticipationLevel]] = []
        for field_name, signal, level in FIELD_SIGNALS[tool]:
            if not any(v.lower() in known for v in _field_values(raw.get(field_name))):
                continue
            # A Slack reply is a contribution to someone else's thread
            if tool is ToolType.SLACK and level is INITIATOR and raw.get("isReply"):
                signal, level = "slack-replier", CONTRIBUTOR
            if (signal, level) not in found:
                found.append((signal, level))
        return found

    def mentions_in_text(self, activity: Activity) -> bool:
        text = activity.text
        return bool(text) and any(p.search(text) for p in self._text_patterns)

    def detect(self, activity: Activity) -> ParticipationResult:
        signals = self.structural_signals(activity)
        if self.mentions_in_text(activity):
            signals.append((TEXT_MENTION_SIGNAL, MENTIONED))

        if not signals:
            return ParticipationResult(activity_id=activity.id, level=OBSERVER, signals=[])

        signals.sort(key=lambda s: s[1].rank, reverse=True)
        return ParticipationResult(
            activity_id=activity.id,
            level=signals[0][1],
            signals=[name for name, _ in signals],
        )


def classify_activity(activity: Activity, persona: Persona) -> ParticipationResult:
    return IdentityMatcher(persona).detect(activity)


def analyze_participation(cluster: HydratedCluster, persona: Persona) -> list[ParticipationResult]:
    """
    One ParticipationResult per activity, in the cluster's activity order.

    Side Effects:
        - Increments participation.<level> counters
    """
    matcher = IdentityMatcher(persona)
    results = [matcher.detect(a) for a in cluster.activities]
    for r in results:
        counter(f"participation.{r.level.value}")
    logger.debug(
        "Participation for cluster %s: %s",
        cluster.id,
        {r.activity_id: r.level.value for r in results},
    )
    return results
