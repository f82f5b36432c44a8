"""Environment-backed configuration helpers.

Every setting is read at call time, so tests can ``monkeypatch.setenv`` without
reloading modules. Values that fail validation fall back to the default with a
warning instead of aborting start-up.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from core.logging import get_logger

logger = get_logger(__name__)


def load_dotenv_if_available(path: Path | None = None) -> bool:
    """Load ``.env`` (or ``path``) without overriding variables already set."""
    env_path = path or Path(os.getenv("ENV_FILE", ".env"))
    if not env_path.is_file():
        return False
    try:
        loaded = load_dotenv(dotenv_path=env_path, override=False)
    except OSError as exc:
        logger.warning("Failed to load env file %s: %s", env_path, exc)
        return False
    logger.debug("Loaded environment variables from %s", env_path)
    return loaded


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip() or default


def env_int(key: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %d.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%d is below the minimum %d. Falling back to %d.", key, value, minimum, default)
        return default
    return value


def env_float(key: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %.2f.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%.2f is below the minimum %.2f. Falling back to %.2f.", key, value, minimum, default)
        return default
    return value


def env_list(key: str, default: Sequence[str]) -> tuple[str, ...]:
    """Parse a comma separated variable into a tuple of lower-cased tokens."""
    raw = os.getenv(key)
    if raw is None:
        return tuple(default)
    items = tuple(token.strip().lower() for token in raw.split(",") if token.strip())
    if not items:
        logger.warning("Empty list env %s. Using default=%s.", key, ",".join(default))
        return tuple(default)
    return items


__all__ = ["env_float", "env_int", "env_list", "env_str", "load_dotenv_if_available"]
