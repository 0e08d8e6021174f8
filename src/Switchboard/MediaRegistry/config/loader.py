# === NAVMAP v1 ===
# {
#   "module": "Switchboard.MediaRegistry.config.loader",
#   "purpose": "Build a MediaRegistryConfig from a file, SWBD_* variables and overrides.",
#   "sections": [
#     {
#       "id": "load-mapping",
#       "name": "_load_mapping",
#       "anchor": "function-load-mapping",
#       "kind": "function"
#     },
#     {
#       "id": "parse-env-value",
#       "name": "_parse_env_value",
#       "anchor": "function-parse-env-value",
#       "kind": "function"
#     },
#     {
#       "id": "env-layer",
#       "name": "_env_layer",
#       "anchor": "function-env-layer",
#       "kind": "function"
#     },
#     {
#       "id": "deep-merge",
#       "name": "_deep_merge",
#       "anchor": "function-deep-merge",
#       "kind": "function"
#     },
#     {
#       "id": "load-config",
#       "name": "load_config",
#       "anchor": "function-load-config",
#       "kind": "function"
#     },
#     {
#       "id": "validate-config-file",
#       "name": "validate_config_file",
#       "anchor": "function-validate-config-file",
#       "kind": "function"
#     },
#     {
#       "id": "export-config-schema",
#       "name": "export_config_schema",
#       "anchor": "function-export-config-schema",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Registry configuration from three layers.

Layers are applied in order, later ones winning key by key:

1. A YAML or JSON file (optional)
2. ``SWBD_*`` environment variables
3. Overrides passed in by the caller (the CLI)

A double underscore in a variable name descends one level:

  SWBD_STORAGE__ROOT_DIR=/srv/media       →  storage.root_dir
  SWBD_POLICY__DENIED_MEDIA_TYPES='["application/x-msdownload"]'
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable

import yaml

from .models import MediaRegistryConfig

_LOGGER = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "SWBD_"

_PARSERS: dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


def _load_mapping(path: str) -> dict[str, Any]:
    """Parse ``path`` into a dict, raising ``ValueError`` on any problem."""
    source = Path(path)
    if not source.is_file():
        raise ValueError(f"Config file not found: {path}")

    parser = _PARSERS.get(source.suffix.lower())
    if parser is None:
        raise ValueError(
            f"Unsupported file format: {source.suffix or '<none>'} (expected .yaml, .yml or .json)"
        )

    try:
        loaded = parser(source.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot parse {path}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return loaded


def _parse_env_value(raw: str) -> Any:
    # JSON covers numbers, lists and true/false; anything else stays a string
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _env_layer(prefix: str) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(prefix):
            continue
        *parents, leaf = name[len(prefix) :].lower().split("__")
        node = layer
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = _parse_env_value(raw)
        _LOGGER.debug(f"Environment override {name} -> {'.'.join([*parents, leaf])}")
    return layer


def _deep_merge(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated with ``overlay``, merging nested mappings."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = dict(value) if isinstance(value, Mapping) else value
    return merged


def load_config(
    path: str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> MediaRegistryConfig:
    """
    Build and validate the registry configuration.

    Args:
        path: YAML or JSON file to start from
        env_prefix: Prefix of the environment variables to apply
        cli_overrides: Nested mapping applied last

    Raises:
        ValueError: If the file is unusable or the merged data does not validate
    """
    data: dict[str, Any] = {}
    if path:
        try:
            data = _load_mapping(path)
        except ValueError as e:
            _LOGGER.error(f"Failed to load config: {e}")
            raise
        _LOGGER.info(f"Loaded config from {path}")

    data = _deep_merge(data, _env_layer(env_prefix))
    if cli_overrides:
        data = _deep_merge(data, cli_overrides)

    try:
        config = MediaRegistryConfig.model_validate(data)
    except ValueError as e:
        _LOGGER.error(f"Invalid media registry configuration: {e}")
        raise
    _LOGGER.info(f"Media registry configuration ready (hash {config.config_hash()[:8]})")
    return config


def validate_config_file(path: str) -> bool:
    """Raise ``ValueError`` unless ``path`` yields a valid configuration."""
    load_config(path=path)
    return True


def export_config_schema() -> dict[str, Any]:
    return MediaRegistryConfig.model_json_schema()
