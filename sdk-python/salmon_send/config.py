from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings read from the environment.

    debug:     SALMON_DEBUG, enables debug logging and error details
    timeout:   SALMON_TIMEOUT, delivery timeout in seconds (None = unbounded)
    keys_path: SALMON_KEYS_PATH, trusted keyring JSON used for verification
    """

    debug: bool = False
    timeout: Optional[float] = None
    keys_path: Optional[Path] = None


def debug_enabled(env: Optional[Mapping[str, str]] = None) -> bool:
    e = os.environ if env is None else env
    return (e.get("SALMON_DEBUG") or "").strip().lower() in _TRUE_VALUES


def _parse_timeout(value: str) -> Optional[float]:
    v = value.strip()
    if not v:
        return None
    try:
        t = float(v)
    except ValueError:
        raise ValueError(f"SALMON_TIMEOUT must be a number of seconds, got '{v}'")
    if t <= 0:
        raise ValueError(f"SALMON_TIMEOUT must be positive, got {t}")
    return t


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    e = os.environ if env is None else env

    keys = (e.get("SALMON_KEYS_PATH") or "").strip()
    return Settings(
        debug=debug_enabled(e),
        timeout=_parse_timeout(e.get("SALMON_TIMEOUT") or ""),
        keys_path=Path(keys) if keys else None,
    )
