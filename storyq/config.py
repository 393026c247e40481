"""Centralized configuration for the StoryQ pipeline.

Typed constants for pattern loading, extraction, clustering, validation
gates, confidence scoring, enrichment (Gemini) and batch generation.
Environment variable overrides use safe defaults so the pipeline runs
without any extra configuration; the LLM stays off unless STORYQ_USE_LLM
is set.
"""

from __future__ import annotations

import os
from pathlib import Path

from storyq.infrastructure.env import ensure_env_loaded, env_flag, env_float, env_int

ensure_env_loaded()

# --- App ---
APP_VERSION: str = "0.3.0"
ENV: str = os.getenv("STORYQ_ENV", "development")

# --- Pattern Library ---
PATTERNS_PATH: Path = Path(
    os.getenv(
        "STORYQ_PATTERNS_PATH",
        str(Path(__file__).parent / "pipeline" / "reference_patterns.yaml"),
    )
)

# --- Reference Extraction ---
REF_CONTEXT_RADIUS: int = 40
REF_MAX_TEXT_CHARS: int = env_int("STORYQ_REF_MAX_TEXT_CHARS", 100_000)
REF_MAX_NEAR_MISSES: int = 3

# --- Clustering ---
CLUSTER_MIN_SIZE: int = env_int("STORYQ_CLUSTER_MIN_SIZE", 2)
CLUSTER_ID_PREFIX: str = "cluster"

# --- Hydration ---
HYDRATION_TIMEOUT_SECONDS: float = env_float("STORYQ_HYDRATION_TIMEOUT", 10.0)
HYDRATION_MAX_REPORTED_MISSING: int = 10

# --- Validation Gates ---
GATE_MIN_ACTIVITIES: int = env_int("STORYQ_GATE_MIN_ACTIVITIES", 2)
GATE_MIN_TOOL_TYPES: int = env_int("STORYQ_GATE_MIN_TOOL_TYPES", 2)
GATE_MAX_OBSERVER_RATIO: float = env_float("STORYQ_GATE_MAX_OBSERVER_RATIO", 0.6)

# --- Confidence Scoring ---
CONFIDENCE_HIGH: float = 0.8
CONFIDENCE_MEDIUM: float = 0.5
CONFIDENCE_LOW: float = 0.3
# Components below this get a suggested edit.
CONFIDENCE_FLOOR: float = CONFIDENCE_MEDIUM
# Overall confidence may exceed the weakest component by at most this much.
OVERALL_CONFIDENCE_BONUS: float = 0.15
MAX_SOURCES_PER_COMPONENT: int = 3
EXCERPT_MAX_CHARS: int = 200

# --- Enrichment / LLM ---
USE_LLM: bool = env_flag("STORYQ_USE_LLM", False)
GOOGLE_CLOUD_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")
GOOGLE_API_KEY: str | None = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION: str = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS: int = env_int("GEMINI_MAX_TOKENS", 500)
GEMINI_TEMPERATURE: float = env_float("GEMINI_TEMPERATURE", 0.7)
LLM_TIMEOUT_SECONDS: float = env_float("STORYQ_LLM_TIMEOUT", 30.0)
LLM_MAX_WORKERS: int = env_int("STORYQ_LLM_MAX_WORKERS", 4)
POLISH_MIN_TEXT_CHARS: int = 10
POLISH_MAX_INPUT_CHARS: int = 2000

# --- Batch Generation ---
BATCH_MAX_WORKERS: int = env_int("STORYQ_BATCH_MAX_WORKERS", 4)
