"""YAML config loader — reads engine-config.yml into EngineConfig."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from cse.schemas.config import EngineConfig

# Environment variable → dotted path into the raw config mapping.
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "CSE_CACHE_TTL_MS": ("cache", "ttl_ms"),
    "CSE_CACHE_ENABLED": ("cache", "enabled"),
    "CSE_MAX_IN_FLIGHT": ("max_in_flight",),
    "CSE_CALL_TIMEOUT_S": ("call_timeout_s",),
    "CSE_DEFAULT_MODEL": ("default_model",),
}


def _apply_env_overrides(raw: dict[str, Any], environ: dict[str, str]) -> None:
    for var, path in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        target = raw
        for key in path[:-1]:
            if not isinstance(target.get(key), dict):
                target[key] = {}
            target = target[key]
        # Strings are fine here; pydantic coerces "false", "5000", "2.5".
        target[path[-1]] = value


def load_config(path: str | Path, environ: dict[str, str] | None = None) -> EngineConfig:
    """Load and validate an engine config file.

    ``CSE_*`` environment variables override the matching file values.
    Raises ``FileNotFoundError`` if the path doesn't exist, ``ValueError``
    if the file is not a YAML mapping and ``pydantic.ValidationError`` if
    the content is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = yaml.safe_load(path.read_text())
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    # A templates: key with only commented-out entries loads as None.
    if "templates" in raw and raw["templates"] is None:
        raw["templates"] = []

    _apply_env_overrides(raw, dict(os.environ) if environ is None else environ)
    return EngineConfig(**raw)
