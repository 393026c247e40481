"""
StoryQ pipeline - references -> clusters -> hydration -> participation -> narrative -> polish.
"""

from storyq.pipeline.cluster_builder import build_clusters
from storyq.pipeline.cluster_hydrator import hydrate_cluster
from storyq.pipeline.enrichment import (
    EnrichmentOutcome,
    PolishError,
    PolishStatus,
    enrich_narrative,
)
from storyq.pipeline.errors import (
    PatternValidationError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    STARGenerationError,
    StoryQError,
)
from storyq.pipeline.frameworks import FrameworkType, get_framework, recommend_frameworks
from storyq.pipeline.narrative_extractor import generate_narrative
from storyq.pipeline.orchestrator import (
    GenerationOrchestrator,
    GenerationStage,
    STARGenerationResult,
)
from storyq.pipeline.participation import analyze_participation
from storyq.pipeline.pattern_library import PatternLibrary, build_library, default_library
from storyq.pipeline.ref_extractor import ReferenceExtractor, extract_references
from storyq.pipeline.runner import run_clustering

__all__ = [
    # Stages
    "extract_references",
    "build_clusters",
    "hydrate_cluster",
    "analyze_participation",
    "generate_narrative",
    "enrich_narrative",
    "run_clustering",
    # Orchestration
    "GenerationOrchestrator",
    "GenerationStage",
    "STARGenerationResult",
    # Patterns
    "PatternLibrary",
    "ReferenceExtractor",
    "build_library",
    "default_library",
    # Frameworks
    "FrameworkType",
    "get_framework",
    "recommend_frameworks",
    # Enrichment
    "EnrichmentOutcome",
    "PolishError",
    "PolishStatus",
    # Errors
    "StoryQError",
    "PatternValidationError",
    "ProviderUnavailableError",
    "ProviderTimeoutError",
    "STARGenerationError",
]
