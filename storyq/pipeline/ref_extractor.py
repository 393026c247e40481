"""
Reference Extractor - canonical reference ids from activity text.

Runs every active pattern from the PatternLibrary against each text
fragment (and the source URL when enabled) and normalizes the matches into
canonical references such as "AUTH-123", "acme/backend#42" or
"gdoc:<id>". Those references are the join keys the cluster builder uses.

Extraction is idempotent: the same input always yields the same sorted refs
and the same match list. When several matches normalize to the same
reference, one survives: highest confidence tier first, then highest
pattern version.
"""

from __future__ import annotations

import dataclasses
import json
import re
import time
from collections.abc import Sequence

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter, time_block
from storyq.pipeline.pattern_library import PatternLibrary, default_library
from storyq.pipeline.types import (
    Activity,
    ConfidenceLevel,
    ErrorCode,
    MatchLocation,
    NoMatchReason,
    PatternAnalysis,
    PatternMatch,
    PipelineError,
    PipelineWarning,
    ProcessorDiagnostics,
    ProcessorResult,
    ReferencePattern,
    RefExtractionOptions,
    RefExtractionOutput,
    RefExtractionResult,
    ToolType,
    WarningCode,
)

logger = get_logger(__name__)

PROCESSOR_NAME = "ref-extractor"


def _match_context(text: str, start: int, end: int, radius: int) -> str:
    lo = max(0, start - radius)
    hi = min(len(text), end + radius)
    context = text[lo:hi]
    if lo > 0:
        context = "..." + context
    if hi < len(text):
        context = context + "..."
    return context.replace("\n", " ")


def _winner_key(match: PatternMatch) -> tuple[int, int]:
    return (match.confidence.rank, match.pattern_version)


class ReferenceExtractor:
    """Applies a PatternLibrary to text fragments."""

    def __init__(self, library: PatternLibrary | None = None) -> None:
        self.library = library or default_library()

    def _select_patterns(self, options: RefExtractionOptions) -> list[ReferencePattern]:
        if options.pattern_ids is not None:
            # An explicit id list may name superseded patterns on purpose
            patterns = [p for pid in options.pattern_ids if (p := self.library.get(pid)) is not None]
        else:
            patterns = self.library.list_active()

        if options.tool_types is not None:
            wanted = {ToolType(t) for t in options.tool_types}
            patterns = [p for p in patterns if p.tool_type in wanted]

        if options.min_confidence is not None:
            floor = ConfidenceLevel(options.min_confidence).rank
            patterns = [p for p in patterns if p.confidence.rank >= floor]

        return patterns

    def _near_misses(self, pattern: ReferencePattern, fragments: list[str]) -> list[str]:
        """Substrings that match only when case is ignored (e.g. "auth-123")."""
        if pattern.regex.flags & re.IGNORECASE:
            return []
        loose = re.compile(pattern.regex.pattern, pattern.regex.flags | re.IGNORECASE)
        misses: list[str] = []
        for fragment in fragments:
            for m in loose.finditer(fragment):
                if pattern.regex.fullmatch(m.group(0)) is None and m.group(0) not in misses:
                    misses.append(m.group(0))
                if len(misses) >= config.REF_MAX_NEAR_MISSES:
                    return misses
        return misses

    def extract(
        self,
        texts: Sequence[str | None],
        source_url: str | None = None,
        options: RefExtractionOptions | None = None,
    ) -> RefExtractionResult:
        """
        Extract canonical references from text fragments.

        Args:
            texts: Nullable fragments (title, description, serialized payload...)
            source_url: Optional URL, scanned only when options.include_source_url
            options: Filters and debug flag

        Returns:
            ProcessorResult with RefExtractionOutput. Never raises for bad
            text; a pattern that raises is reported as PATTERN_ERROR
            (recoverable) and contributes nothing.
        """
        options = options or RefExtractionOptions()
        start_time = time.perf_counter()
        warnings: list[PipelineWarning] = []
        errors: list[PipelineError] = []
        counter("ref_extraction.calls")

        fragments: list[str] = [t for t in texts if t]
        if options.include_source_url and source_url:
            fragments.append(source_url)

        truncated = [i for i, f in enumerate(fragments) if len(f) > config.REF_MAX_TEXT_CHARS]
        if truncated:
            fragments = [f[: config.REF_MAX_TEXT_CHARS] for f in fragments]
            warnings.append(
                PipelineWarning(
                    code=WarningCode.TEXT_TRUNCATED,
                    message=f"{len(truncated)} fragment(s) truncated to {config.REF_MAX_TEXT_CHARS} chars",
                    context={"fragment_indexes": truncated},
                )
            )

        patterns = self._select_patterns(options)
        if not patterns:
            warnings.append(
                PipelineWarning(
                    code=WarningCode.NO_PATTERNS,
                    message="No patterns match the specified filters",
                    context={
                        "pattern_ids": options.pattern_ids,
                        "tool_types": [ToolType(t).value for t in options.tool_types or []],
                        "min_confidence": options.min_confidence,
                    },
                )
            )

        analysis: list[PatternAnalysis] = []
        all_matches: list[PatternMatch] = []

        with time_block("ref_extraction"):
            for pattern in patterns:
                if not fragments:
                    analysis.append(
                        PatternAnalysis(pattern.id, 0, no_match_reason=NoMatchReason.NO_INPUT)
                    )
                    continue

                try:
                    pattern_matches = [
                        PatternMatch(
                            ref=pattern.normalize(m),
                            pattern_id=pattern.id,
                            confidence=pattern.confidence,
                            location=MatchLocation(
                                start=m.start(),
                                end=m.end(),
                                context=_match_context(
                                    fragment, m.start(), m.end(), config.REF_CONTEXT_RADIUS
                                ),
                                fragment_index=index,
                            ),
                            raw_match=m.group(0),
                            pattern_version=pattern.version,
                        )
                        for index, fragment in enumerate(fragments)
                        for m in pattern.regex.finditer(fragment)
                    ]
                except Exception as e:
                    counter("ref_extraction.pattern_errors")
                    logger.warning("Pattern %s raised during extraction: %s", pattern.id, e)
                    errors.append(
                        PipelineError(
                            code=ErrorCode.PATTERN_ERROR,
                            message=f"Pattern {pattern.id} raised: {e}",
                            recoverable=True,
                            cause=e,
                            context={"pattern_id": pattern.id},
                        )
                    )
                    continue

                if pattern_matches:
                    analysis.append(PatternAnalysis(pattern.id, len(pattern_matches)))
                    all_matches.extend(pattern_matches)
                else:
                    analysis.append(
                        PatternAnalysis(
                            pattern.id,
                            0,
                            no_match_reason=NoMatchReason.REGEX_NO_MATCH,
                            near_misses=self._near_misses(pattern, fragments) if options.debug else None,
                        )
                    )

        winners: dict[str, PatternMatch] = {}
        for match in all_matches:
            current = winners.get(match.ref)
            if current is None or _winner_key(match) > _winner_key(current):
                winners[match.ref] = match

        refs = sorted(winners)
        output = RefExtractionOutput(
            refs=refs,
            matches=[winners[ref] for ref in refs],
            pattern_analysis=analysis,
            ref_confidence={ref: winners[ref].confidence for ref in refs},
        )

        diagnostics = ProcessorDiagnostics(
            processor=PROCESSOR_NAME,
            processing_time_ms=(time.perf_counter() - start_time) * 1000,
            input_metrics={
                "text_count": len(fragments),
                "total_length": sum(len(f) for f in fragments),
            },
            output_metrics={
                "ref_count": len(refs),
                "match_count": len(all_matches),
                "patterns_matched": sum(1 for a in analysis if a.match_count > 0),
            },
        )
        if options.debug:
            diagnostics.debug = {
                "patterns_attempted": [p.id for p in patterns],
                "text_preview": "\n".join(fragments)[:500],
            }

        return ProcessorResult(data=output, diagnostics=diagnostics, warnings=warnings, errors=errors)

    def extract_from_activity(
        self, activity: Activity, options: RefExtractionOptions | None = None
    ) -> RefExtractionResult:
        """Scan title, description, serialized raw data and (by default) the source URL."""
        options = dataclasses.replace(options) if options else RefExtractionOptions()
        if options.include_source_url is None:
            options.include_source_url = True

        raw_text = json.dumps(activity.raw_data, default=str, sort_keys=True) if activity.raw_data else None
        return self.extract(
            [activity.title, activity.description, raw_text],
            source_url=activity.source_url,
            options=options,
        )

    def annotate(self, activity: Activity, options: RefExtractionOptions | None = None) -> Activity:
        """Return a copy of `activity` with refs and their confidence tiers filled in."""
        result = self.extract_from_activity(activity, options)
        data = result.data
        if data is None:
            return activity
        return dataclasses.replace(activity, refs=tuple(data.refs), ref_confidence=dict(data.ref_confidence))


def extract_references(
    texts: Sequence[str | None],
    source_url: str | None = None,
    options: RefExtractionOptions | None = None,
) -> RefExtractionResult:
    """Extract references using the default pattern library."""
    return ReferenceExtractor().extract(texts, source_url=source_url, options=options)


def extract_from_activity(activity: Activity, options: RefExtractionOptions | None = None) -> RefExtractionResult:
    return ReferenceExtractor().extract_from_activity(activity, options)


def extract_refs(text: str | None) -> list[str]:
    """Just the sorted references found in one string."""
    result = extract_references([text])
    return result.data.refs if result.data else []
