"""
Contracts for the collaborators the pipeline reaches through narrow interfaces.

Import Protocols from here rather than from storyq.contracts.providers so the
module layout can change without touching callers.
"""

from __future__ import annotations

from storyq.contracts.providers import (
    ActivityStore,
    ClusterStore,
    EnrichmentProvider,
    PersonaProvider,
)

__all__ = [
    "ActivityStore",
    "ClusterStore",
    "EnrichmentProvider",
    "PersonaProvider",
]
