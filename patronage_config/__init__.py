"""
patronage_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services, the HTTP layer and scripts never read
    YAML files or environment variables themselves.

Architecture position:
    Configuration -- sits above ``patronage_kernel`` and below
    ``patronage_services`` / ``patronage_api``.  The kernel MUST NEVER
    import from ``patronage_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through get_active_config().
    - Packaged ``defaults.yaml`` is always the base layer; a deployment file
      overrides it; ``PATRONAGE_DATABASE_URL`` overrides database.url.

Failure modes:
    - FileNotFoundError: config_path does not exist.
    - ConfigValidationError: unknown keys or invalid values.

Audit relevance:
    Every successful call emits a ``PATRONAGE_CONFIG_TRACE`` log entry with
    the checksum and source files of the active configuration.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from patronage_config.loader import load_yaml_file, merge_config_data, parse_engine_config
from patronage_config.schema import (
    ConfigValidationError,
    DatabaseConfig,
    DistributionConfig,
    EngineConfig,
    RetryConfig,
    SchedulerConfig,
)
from patronage_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
DATABASE_URL_ENV = "PATRONAGE_DATABASE_URL"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional deployment YAML overriding the packaged defaults.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Frozen, validated EngineConfig.
    """
    env = os.environ if environ is None else environ

    data = load_yaml_file(DEFAULTS_PATH)
    sources = [str(DEFAULTS_PATH)]
    if config_path is not None:
        data = merge_config_data(data, load_yaml_file(Path(config_path)))
        sources.append(str(config_path))

    database_url = env.get(DATABASE_URL_ENV)
    if database_url:
        data = merge_config_data(data, {"database": {"url": database_url}})
        sources.append(f"env:{DATABASE_URL_ENV}")

    config = parse_engine_config(data, sources=tuple(sources))

    _logger.info(
        "PATRONAGE_CONFIG_TRACE",
        extra={
            "trace_type": "PATRONAGE_CONFIG_TRACE",
            "checksum": config.checksum,
            "sources": list(config.sources),
            "max_attempts": config.retry.max_attempts,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ConfigValidationError",
    "DatabaseConfig",
    "DistributionConfig",
    "EngineConfig",
    "RetryConfig",
    "SchedulerConfig",
]
