"""
Environment loading for StoryQ.

storyq.config calls ensure_env_loaded() before reading any STORYQ_* or
GOOGLE_* variable, so a project-level .env is honoured no matter which module
is imported first.

Usage:
    from storyq.infrastructure.env import ensure_env_loaded, env_flag

    ensure_env_loaded()
    use_llm = env_flag("STORYQ_USE_LLM")
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Load the nearest .env file exactly once.

    Values already present in the process environment win over the file.

    Args:
        env_path: Explicit .env path. If None, walks up from this package.

    Side Effects:
        - Populates os.environ from the .env file (if one is found)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path, override=False)
    else:
        load_dotenv(override=False)
    _ENV_LOADED = True


def env_flag(key: str, default: bool = False) -> bool:
    """Read a boolean flag ("true"/"1"/"yes" are truthy)."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e


def env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e
