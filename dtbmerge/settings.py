from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, Optional

from dtbmerge import utils  # noqa: F401  loads .env before the environment is read

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TAIL_AUDIO = 1.5

_SETTINGS_DEFAULTS: Dict[str, Any] = {
    "allowed_tail_audio": DEFAULT_ALLOWED_TAIL_AUDIO,
}

_ENVIRONMENT_KEYS: Dict[str, str] = {
    "allowed_tail_audio": "DTBMERGE_ALLOWED_TAIL_AUDIO",
}


@lru_cache(maxsize=1)
def _environment_defaults() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for key, env_var in _ENVIRONMENT_KEYS.items():
        default = _SETTINGS_DEFAULTS.get(key)
        if default is None:
            continue
        value = os.environ.get(env_var)
        if value is None or value == "":
            continue
        if isinstance(default, float):
            overrides[key] = _coerce_float(value, float(default), name=env_var)
        else:
            overrides[key] = value
    return overrides


def _coerce_float(value: Any, default: float, *, name: str = "value") -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s %r; using %s", name, value, default)
        return default
    if not result >= 0:
        logger.warning("Ignoring out-of-range %s %r; using %s", name, value, default)
        return default
    return result


def get_settings() -> Dict[str, Any]:
    settings = dict(_SETTINGS_DEFAULTS)
    settings.update(_environment_defaults())
    return settings


def clear_cached_settings() -> None:
    _environment_defaults.cache_clear()


def allowed_tail_audio(override: Optional[float] = None) -> float:
    """Seconds of trailing audio past a segment's clip-end that may be copied along untrimmed.

    An explicit ``override`` must be a non-negative number; invalid environment
    values fall back to the default with a warning.
    """
    if override is not None:
        try:
            value = float(override)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"allowed_tail_audio must be a number, got {override!r}") from exc
        if not value >= 0:
            raise ValueError(f"allowed_tail_audio must be a non-negative number, got {override!r}")
        return value
    return float(get_settings()["allowed_tail_audio"])
