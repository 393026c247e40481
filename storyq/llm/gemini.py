"""
Gemini Model Manager + polish provider.

get_gemini_model() returns one shared model instance for the process.

Supports two backends:
  1. Vertex AI SDK (production) - uses GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) - uses GOOGLE_API_KEY

GeminiPolishProvider implements the EnrichmentProvider contract on top of
that model. It is only handed to the pipeline when STORYQ_USE_LLM is set
(see default_enrichment_provider()).
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field

from storyq import config
from storyq.observability.logging import get_logger
from storyq.observability.telemetry import counter, log_event
from storyq.pipeline import frameworks
from storyq.pipeline.errors import ProviderTimeoutError, ProviderUnavailableError

logger = get_logger(__name__)


class GeminiInitializationError(ProviderUnavailableError):
    """Raised when Gemini model cannot be initialized."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create shared Gemini model instance.

    Uses @lru_cache for a thread-safe singleton. Tries Vertex AI SDK first
    (production, needs GOOGLE_CLOUD_PROJECT). Falls back to
    google-generativeai with GOOGLE_API_KEY for local development.

    Returns:
        GenerativeModel: Shared Gemini model

    Raises:
        GeminiInitializationError: If model cannot be initialized
    """
    # Try Vertex AI first (production)
    try:
        import vertexai
        from vertexai.generative_models import GenerativeModel

        project = config.GOOGLE_CLOUD_PROJECT or os.getenv("GOOGLE_CLOUD_PROJECT")
        location = config.GEMINI_LOCATION or "us-central1"

        if project:
            vertexai.init(project=project, location=location)
            model = GenerativeModel(config.GEMINI_MODEL)

            logger.info(
                "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
                project,
                location,
                config.GEMINI_MODEL,
            )

            return model

        logger.info("GOOGLE_CLOUD_PROJECT not set, trying google-generativeai fallback")

    except ImportError:
        logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")
    except Exception as e:
        logger.error("Failed to initialize Gemini model (Vertex AI): %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    # Fallback: google-generativeai with API key (local dev)
    try:
        import google.generativeai as genai

        api_key = config.GOOGLE_API_KEY or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise GeminiInitializationError(
                "Neither vertexai nor GOOGLE_API_KEY available. "
                "Install google-cloud-aiplatform or set GOOGLE_API_KEY."
            )

        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(config.GEMINI_MODEL)

        logger.info("Initialized Gemini model (google-generativeai): model=%s", config.GEMINI_MODEL)

        return model

    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e
    except GeminiInitializationError:
        raise
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e


def clear_model_cache() -> None:
    """
    Clear the cached model instance.

    Useful for testing or when reconfiguration is needed.
    """
    get_gemini_model.cache_clear()
    logger.info("Cleared Gemini model cache")


class PolishSchema(BaseModel):
    """Schema for LLM response validation."""

    text: str = Field(description="Polished component text, 1-3 sentences")


class GeminiPolishProvider:
    """
    Polishes one narrative component per call with Gemini.

    The model call runs on a worker thread so the caller's timeout is
    enforced even if the SDK ignores it.
    """

    PROMPT_TEMPLATE = """Improve the {label} section of a {framework} career story for clarity and impact.

Section intent: {intent}
{guideline}

Keep the same facts and meaning, but make it flow naturally and sound professional.
Keep it concise (1-3 sentences). Write in the first person. Do not invent numbers,
names or outcomes that are not in the draft or the source notes.

## Draft
{text}

## Source notes
{sources}

## Output JSON:
{{
  "text": "the improved section text"
}}

Respond with ONLY the JSON, no other text."""

    SECTION_GUIDELINES = {
        "situation": "Focus on the business context and problem. What was at stake?",
        "task": "Clarify what specifically needed to be accomplished.",
        "action": "Highlight the technical approach and your individual contributions.",
        "result": "Quantify the impact where possible (metrics, time saved, etc.).",
    }

    def __init__(self, model: Any | None = None, max_workers: int | None = None) -> None:
        self._model = model  # Lazy load
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.LLM_MAX_WORKERS,
            thread_name_prefix="gemini-polish",
        )

    def _get_model(self):
        if self._model is None:
            self._model = get_gemini_model()
        return self._model

    def polish(self, text: str, context: Mapping[str, Any], timeout: float | None = None) -> str:
        """
        Polish a single component's text.

        Args:
            text: Component text from the narrative extractor
            context: {"component", "framework", "sources"} from the enrichment stage
            timeout: Seconds to wait for Gemini (defaults to LLM_TIMEOUT_SECONDS)

        Returns:
            Polished text

        Raises:
            GeminiInitializationError: model could not be created
            ProviderTimeoutError: Gemini did not answer in time
            ValueError: response was not the expected JSON

        Side Effects:
            - Calls Gemini API
            - Increments polish.* counters
        """
        model = self._get_model()
        prompt = self._build_prompt(text, context)
        wait = timeout if timeout is not None else config.LLM_TIMEOUT_SECONDS
        component = str(context.get("component", ""))

        logger.info("LLM POLISH: Calling %s for component=%s", config.GEMINI_MODEL, component)
        future = self._executor.submit(
            model.generate_content,
            prompt,
            generation_config={
                "max_output_tokens": config.GEMINI_MAX_TOKENS,
                "temperature": config.GEMINI_TEMPERATURE,
            },
        )
        try:
            response = future.result(timeout=wait)
        except FuturesTimeoutError as e:
            future.cancel()
            counter("polish.timeout")
            raise ProviderTimeoutError(f"Gemini did not respond within {wait:.1f}s") from e

        polished = self._parse_response(response.text)

        counter("polish.success")
        log_event(
            "polish.result",
            component=component,
            input_chars=len(text),
            output_chars=len(polished),
            model=config.GEMINI_MODEL,
        )
        return polished

    def _build_prompt(self, text: str, context: Mapping[str, Any]) -> str:
        """Build polish prompt with sanitized inputs."""
        component = str(context.get("component", "")) or "story"
        framework_name = str(context.get("framework", frameworks.DEFAULT_FRAMEWORK.value))

        label, intent = component.title(), ""
        try:
            section = frameworks.get_framework(framework_name).section(component)
        except ValueError:
            section = None
        if section is not None:
            label, intent = section.label, section.prompt

        sources = [self._sanitize(str(s), max_length=300) for s in context.get("sources", []) or []]

        return self.PROMPT_TEMPLATE.format(
            label=label,
            framework=framework_name.upper(),
            intent=intent or "Tell this part of the story clearly.",
            guideline=self.SECTION_GUIDELINES.get(component, ""),
            text=self._sanitize(text, max_length=config.POLISH_MAX_INPUT_CHARS),
            sources="\n".join(f"- {s}" for s in sources if s) or "- (none)",
        )

    def _sanitize(self, text: str, max_length: int = 500) -> str:
        """Sanitize input to prevent prompt injection."""
        if not text:
            return ""

        # Remove common injection patterns
        text = re.sub(r"(?i)(ignore|disregard).*(instruction|prompt)", "[REDACTED]", text)
        text = re.sub(r"(?i)system\s*:", "", text)
        text = re.sub(r"(?i)assistant\s*:", "", text)

        return text[:max_length]

    def _parse_response(self, response_text: str | None) -> str:
        """Parse LLM response into the polished text."""
        # Extract JSON from response (handle markdown code blocks)
        json_text = (response_text or "").strip()
        if json_text.startswith("```"):
            json_text = re.sub(r"^```(?:json)?\n?", "", json_text)
            json_text = re.sub(r"\n?```$", "", json_text)

        try:
            data = json.loads(json_text)
        except json.JSONDecodeError as e:
            counter("polish.parse_error")
            raise ValueError(f"Malformed polish response: {e}") from e

        # Validate with Pydantic
        validated = PolishSchema.model_validate(data)
        return validated.text.strip()

    def close(self) -> None:
        """
        Stop accepting polish calls and drop queued ones.

        A call already running on a worker cannot be interrupted; its thread
        exits once the SDK returns.
        """
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> GeminiPolishProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def default_enrichment_provider() -> GeminiPolishProvider | None:
    """
    Provider used by the orchestrator when none is injected.

    Returns None (enrichment becomes a NOT_CONFIGURED no-op) unless
    STORYQ_USE_LLM is on and Gemini credentials are present.
    """
    if not config.USE_LLM:
        counter("polish.llm_disabled")
        logger.info(
            "LLM DISABLED: STORYQ_USE_LLM=%s - enrichment not configured",
            os.getenv("STORYQ_USE_LLM", "not_set"),
        )
        return None
    if not (config.GOOGLE_CLOUD_PROJECT or config.GOOGLE_API_KEY):
        logger.warning("STORYQ_USE_LLM is on but neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set")
        return None
    return GeminiPolishProvider()
