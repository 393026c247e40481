"""StoryQ - Turn everyday work activity into evidence-backed career stories"""

from __future__ import annotations

__version__ = "0.3.0"


# Lazy imports for the pipeline entry points
def __getattr__(name: str):
    """
    Lazy imports to avoid loading networkx / pydantic when only importing lightweight modules.
    """
    if name in ("GenerationOrchestrator", "STARGenerationResult"):
        from storyq.pipeline import orchestrator

        return getattr(orchestrator, name)

    if name in ("Activity", "Cluster", "Persona", "GeneratedNarrative"):
        from storyq.pipeline import types

        return getattr(types, name)

    if name == "PatternLibrary":
        from storyq.pipeline.pattern_library import PatternLibrary

        return PatternLibrary

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "Activity",
    "Cluster",
    "GeneratedNarrative",
    "GenerationOrchestrator",
    "PatternLibrary",
    "Persona",
    "STARGenerationResult",
]
