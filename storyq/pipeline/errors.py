"""
Exceptions raised by the story pipeline.

Stage functions report data problems through ProcessorResult envelopes and
do not raise. The exceptions here cover the few places that do:
pattern registration, LLM providers signalling an outage, and callers that
prefer raising over inspecting a failed generation result.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from storyq.pipeline.types import ErrorCode


class StoryQError(Exception):
    """Base class for all StoryQ exceptions."""

    code: ErrorCode | None = None


class PatternValidationError(StoryQError):
    """Raised when a pattern fails its own examples at registration time."""

    code = ErrorCode.PATTERN_VALIDATION_FAILED

    def __init__(self, pattern_id: str, failures: list[str]) -> None:
        self.pattern_id = pattern_id
        self.failures = list(failures)
        super().__init__(f"Pattern {pattern_id!r} failed validation: {'; '.join(self.failures)}")


class ProviderUnavailableError(StoryQError):
    """Raised by an enrichment provider that cannot reach its backend."""

    code = ErrorCode.LLM_UNAVAILABLE


class ProviderTimeoutError(StoryQError, TimeoutError):
    """Raised by an enrichment provider whose call exceeded its timeout."""

    code = ErrorCode.LLM_TIMEOUT


class STARGenerationError(StoryQError):
    """
    A generation failure tagged with the stage that produced it.

    `stage` is one of "hydration", "extraction" or "polish". The originating
    stage error (or exception) is kept in `cause` so the full chain survives.
    """

    def __init__(
        self,
        stage: str,
        code: ErrorCode,
        message: str,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"[{stage}] {code.value}: {message}")
        self.stage = stage
        self.code = code
        self.message = message
        self.cause = cause
        self.context = dict(context or {})
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "code": self.code.value,
            "message": self.message,
            "context": _plain(self.context),
        }


def _plain(value: Any) -> Any:
    """JSON-safe copy of an error context (enums, nested errors, exceptions)."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if hasattr(value, "code") and hasattr(value, "message"):
        # A nested PipelineError / PipelineWarning
        return {"code": _plain(value.code), "message": value.message}
    return str(value)
