"""
External Collaborator Protocols

Interfaces for the services the pipeline consumes but does not own: the
activity store, the cluster store, the persona provider and the LLM-backed
enrichment provider.

Design Principles:
- Only the hydration lookup and the enrichment call perform I/O
- Both I/O calls take an explicit timeout; the pipeline never retries them
- Implementations raise on transport failure; stages translate exceptions
  into error codes
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from storyq.pipeline.types import Activity, Cluster, Persona


class ActivityStore(Protocol):
    """Resolves activity ids to full activity records."""

    def lookup(self, activity_ids: Sequence[str], timeout: float | None = None) -> list[Activity]:
        """Return the activities that exist among `activity_ids`.

        Args:
            activity_ids: Ids to resolve
            timeout: Seconds the caller is willing to wait

        Returns:
            Found activities in any order. Missing ids are simply absent.

        Side Effects:
            I/O against the backing store
        """
        ...


class ClusterStore(Protocol):
    """Loads a previously built cluster by id."""

    def get_cluster(self, cluster_id: str) -> Cluster | None: ...


class PersonaProvider(Protocol):
    """Supplies a fully formed persona; the pipeline never resolves identities itself."""

    def get_persona(self, persona_id: str) -> Persona | None: ...


class EnrichmentProvider(Protocol):
    """Rewrites one narrative component into more fluent prose."""

    def polish(
        self,
        text: str,
        context: Mapping[str, Any],
        timeout: float | None = None,
    ) -> str:
        """Polish a single component's text.

        Args:
            text: Component text produced by the narrative extractor
            context: Component name, framework, and source excerpts
            timeout: Seconds before the call should give up

        Returns:
            Polished text

        Raises:
            ProviderUnavailableError / ConnectionError: backend unreachable
            ProviderTimeoutError / TimeoutError: call exceeded timeout
            Exception: anything else is reported as LLM_ERROR
        """
        ...
