"""Merge configuration layers into a validated ``SmartdirConfig``."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Mapping

from pydantic import ValidationError

from .exceptions import ConfigError
from .models import SmartdirConfig

_LAYERS = ("file", "environment", "cli")


def resolve_with_precedence(
    *,
    defaults: SmartdirConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> SmartdirConfig:
    """Apply overrides on top of ``defaults`` and validate the result.

    Later layers win: defaults < file < environment < CLI. Keys may be nested
    mappings or dotted paths such as ``"monitor.tick_seconds"``.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from ``config.yaml``.
        env_overrides: Values derived from ``SMARTDIR__*`` variables.
        cli_overrides: Values supplied on the command line.

    Returns:
        SmartdirConfig: Validated configuration.

    Raises:
        ConfigError: If an override is malformed or fails validation.
    """
    merged = defaults.model_dump(mode="python")
    for name, source in zip(_LAYERS, (file_overrides, env_overrides, cli_overrides)):
        if source is None:
            continue
        merged = deep_merge(merged, expand_dotted(source, source_name=name))

    try:
        return SmartdirConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def expand_dotted(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    """Return ``source`` with dotted keys expanded into nested mappings."""
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        if isinstance(value, MappingABC):
            value = expand_dotted(value, source_name=source_name)
        assign_nested(result, key.split("."), value)
    return result


def assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign ``value`` at ``path`` inside ``target``, creating mappings as needed.

    Raises:
        ConfigError: If a non-mapping value already occupies part of the path.
    """
    node = target
    for segment in path[:-1]:
        existing = node.setdefault(segment, {})
        if not isinstance(existing, dict):
            raise ConfigError(f"Cannot assign into '{segment}' because it is not a mapping.")
        node = existing
    leaf = path[-1]
    if isinstance(value, dict) and isinstance(node.get(leaf), dict):
        node[leaf] = deep_merge(node[leaf], value)
    else:
        node[leaf] = value


def deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new mapping with ``overrides`` recursively layered on ``base``."""
    merged = {key: deepcopy(value) for key, value in base.items()}
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = ["resolve_with_precedence", "expand_dotted", "assign_nested", "deep_merge"]
