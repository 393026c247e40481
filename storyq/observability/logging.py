"""
Logging setup for the story pipeline.

Every module calls get_logger(__name__). The orchestrator additionally wraps
its logger with pipeline_logger() so each line carries the cluster being
generated and the stage it is in.
"""

from __future__ import annotations

import logging
import os
from collections.abc import MutableMapping
from typing import Any, Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level() -> int:
    level_name = os.getenv("STORYQ_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; the root stream handler is attached once per process."""
    global _HANDLER_ATTACHED

    level = _resolve_level()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(level)
        _HANDLER_ATTACHED = True

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


class PipelineLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with `[cluster=<id> stage=<stage>]`."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return (
            f"[cluster={extra.get('cluster_id', '-')} stage={extra.get('stage', '-')}] {msg}",
            kwargs,
        )

    def at_stage(self, stage: str) -> PipelineLogAdapter:
        return PipelineLogAdapter(self.logger, {**(self.extra or {}), "stage": stage})


def pipeline_logger(name: str, cluster_id: str) -> PipelineLogAdapter:
    return PipelineLogAdapter(get_logger(name), {"cluster_id": cluster_id, "stage": "-"})
