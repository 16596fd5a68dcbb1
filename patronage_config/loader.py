"""
Configuration Loader (``patronage_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the typed ``patronage_config.schema``
dataclasses.  Runtime callers do not use this module directly; the single
public entry point is ``patronage_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections or keys are rejected (``ConfigValidationError``) so a
  typo in a deployment file is never silently ignored.
* Later sources override earlier ones key by key within a section.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the merged
  data for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong types or out-of-range values -> ``ConfigValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from patronage_config.schema import (
    ConfigValidationError,
    DatabaseConfig,
    DistributionConfig,
    EngineConfig,
    RetryConfig,
    SchedulerConfig,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "retry": RetryConfig,
    "scheduler": SchedulerConfig,
    "distribution": DistributionConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigValidationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigValidationError(str(path), "<root>", "top level must be a mapping")
    return data


def merge_config_data(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` one section at a time (new dict)."""
    merged = {section: dict(values or {}) for section, values in base.items()}
    for section, values in override.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigValidationError(section, "<section>", "must be a mapping")
        merged.setdefault(section, {}).update(values)
    return merged


def _coerce(section: str, key: str, value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigValidationError(section, key, f"expected true/false, got {value!r}")
        return value
    if isinstance(default, int) and not isinstance(default, bool):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigValidationError(section, key, f"expected an integer, got {value!r}")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigValidationError(section, key, f"expected a number, got {value!r}")
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise ConfigValidationError(section, key, f"expected a string, got {value!r}")
        return value
    return value


def parse_section(section: str, data: dict[str, Any]) -> Any:
    """Parse one section dict into its frozen dataclass."""
    cls = _SECTIONS[section]
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigValidationError(section, ", ".join(sorted(unknown)), "unknown key")
    kwargs = {
        key: _coerce(section, key, value, getattr(defaults, key))
        for key, value in data.items()
    }
    return cls(**kwargs)


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the merged configuration data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_engine_config(
    data: dict[str, Any],
    sources: tuple[str, ...] = (),
) -> EngineConfig:
    """
    Parse merged configuration data into an ``EngineConfig``.

    Raises:
        ConfigValidationError: unknown section/key or invalid value.
    """
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ConfigValidationError(", ".join(sorted(unknown)), "<section>", "unknown section")

    parsed = {
        section: parse_section(section, data.get(section) or {})
        for section in _SECTIONS
    }
    return EngineConfig(
        database=parsed["database"],
        retry=parsed["retry"],
        scheduler=parsed["scheduler"],
        distribution=parsed["distribution"],
        checksum=compute_checksum(data),
        sources=sources,
    )
