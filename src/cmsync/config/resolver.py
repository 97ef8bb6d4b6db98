"""Configuration resolution helpers."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import CMSyncConfig

ENV_PREFIX = "CMSYNC__"
_SECRET_KEYS = frozenset({"password"})


def resolve_with_precedence(
    *,
    defaults: CMSyncConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> CMSyncConfig:
    """Layer override sources over ``defaults`` and validate the result.

    Sources are applied in the order file, environment, CLI; a later source
    replaces scalar values of an earlier one and merges into nested sections.
    CLI overrides may use dotted keys such as ``project.clean_copy``.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the configuration file.
        env_overrides: Values derived from ``CMSYNC__`` environment variables.
        cli_overrides: Values supplied on the command line.

    Returns:
        CMSyncConfig: Validated configuration.

    Raises:
        ConfigError: If an override source is malformed or a value is invalid.
    """
    merged = defaults.model_dump(mode="python")
    sources = {"file": file_overrides, "environment": env_overrides, "cli": cli_overrides}
    for label, source in sources.items():
        if source is None:
            continue
        merged = _merge(merged, _expand_dotted(source, label))

    try:
        return CMSyncConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def flatten_for_env(config: CMSyncConfig, *, include_secrets: bool = False) -> Dict[str, str]:
    """Render ``config`` as ``CMSYNC__SECTION__KEY`` environment variables.

    Args:
        config: Configuration to flatten.
        include_secrets: Whether secret values such as passwords are emitted.

    Returns:
        Dict[str, str]: Environment variable mapping.
    """
    flat: Dict[str, str] = {}
    for section, values in config.model_dump(mode="python").items():
        for key, value in values.items():
            if key in _SECRET_KEYS and not include_secrets:
                continue
            env_key = f"{ENV_PREFIX}{section.upper()}__{key.upper()}"
            if value is None:
                flat[env_key] = "null"
            elif isinstance(value, bool):
                flat[env_key] = "true" if value else "false"
            elif isinstance(value, (dict, list)):
                flat[env_key] = yaml.safe_dump(value, default_flow_style=True).strip()
            else:
                flat[env_key] = str(value)
    return flat


def _expand_dotted(source: Mapping[str, Any], label: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{label.capitalize()} overrides must be a mapping.")

    expanded: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{label.capitalize()} override keys must be strings.")
        *parents, leaf = key.split(".")
        node = expanded
        for segment in parents:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"{label.capitalize()} override for {key} conflicts with {segment}.")
            node = child
        if isinstance(value, MappingABC):
            existing = node.get(leaf)
            base = existing if isinstance(existing, MappingABC) else {}
            value = _merge(base, _expand_dotted(value, label))
        node[leaf] = value
    return expanded


def _merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = ["ENV_PREFIX", "resolve_with_precedence", "flatten_for_env"]
