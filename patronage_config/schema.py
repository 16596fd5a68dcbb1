"""
Configuration Schema (``patronage_config.schema``).

Responsibility
--------------
Typed, frozen dataclasses describing every runtime setting of the dividend
engine: database connection, collaborator retry/timeout policy, scheduler
behaviour and distribution defaults.  Each dataclass validates itself on
construction.

Architecture position
---------------------
**Config layer** -- pure data definitions with zero I/O.  Consumed by
``patronage_config.loader`` (parsing) and by ``patronage_services`` /
``patronage_api`` (reading).

Invariants enforced
-------------------
* All dataclasses are ``frozen=True`` -- immutable once constructed.
* Invalid values raise ``ConfigValidationError`` at construction, so a bad
  YAML file fails at startup rather than mid-distribution.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from patronage_kernel.db.types import InvalidCurrencyError, validate_currency


class ConfigValidationError(ValueError):
    """A configuration value is missing, malformed or out of range."""

    def __init__(self, section: str, key: str, reason: str):
        self.section = section
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration {section}.{key}: {reason}")


def _require(condition: bool, section: str, key: str, reason: str) -> None:
    if not condition:
        raise ConfigValidationError(section, key, reason)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection settings (see patronage_kernel.db.engine)."""

    url: str = "sqlite:///patronage.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    sqlite_busy_timeout_ms: int = 30000

    def __post_init__(self) -> None:
        _require(bool(self.url), "database", "url", "must not be empty")
        _require(self.pool_size > 0, "database", "pool_size", "must be positive")
        _require(self.max_overflow >= 0, "database", "max_overflow", "cannot be negative")
        _require(self.pool_timeout > 0, "database", "pool_timeout", "must be positive")
        _require(
            self.sqlite_busy_timeout_ms >= 0,
            "database", "sqlite_busy_timeout_ms", "cannot be negative",
        )


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry/backoff/timeout policy for the trip, ledger and settings stores.

    Waits grow exponentially from ``initial_backoff_seconds`` by
    ``backoff_multiplier`` and are capped at ``max_backoff_seconds``.
    """

    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0
    backoff_multiplier: float = 2.0
    collaborator_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        _require(self.max_attempts >= 1, "retry", "max_attempts", "must be at least 1")
        _require(
            self.initial_backoff_seconds >= 0,
            "retry", "initial_backoff_seconds", "cannot be negative",
        )
        _require(
            self.max_backoff_seconds >= self.initial_backoff_seconds,
            "retry", "max_backoff_seconds", "must be >= initial_backoff_seconds",
        )
        _require(
            self.backoff_multiplier >= 1,
            "retry", "backoff_multiplier", "must be >= 1",
        )
        _require(
            self.collaborator_timeout_seconds > 0,
            "retry", "collaborator_timeout_seconds", "must be positive",
        )


@dataclass(frozen=True)
class SchedulerConfig:
    """Scheduled (cron-driven) distribution run settings."""

    enabled: bool = True
    triggered_by: str = "scheduler"

    def __post_init__(self) -> None:
        _require(bool(self.triggered_by), "scheduler", "triggered_by", "must not be empty")


@dataclass(frozen=True)
class DistributionConfig:
    """Defaults applied when a tenant has no explicit setting."""

    default_currency: str = "GBP"
    history_limit: int = 12
    max_history_limit: int = 100

    def __post_init__(self) -> None:
        try:
            validate_currency(self.default_currency)
        except InvalidCurrencyError as exc:
            raise ConfigValidationError(
                "distribution", "default_currency", str(exc)
            ) from None
        _require(self.history_limit >= 1, "distribution", "history_limit", "must be positive")
        _require(
            self.max_history_limit >= self.history_limit,
            "distribution", "max_history_limit", "must be >= history_limit",
        )


@dataclass(frozen=True)
class EngineConfig:
    """
    The complete runtime configuration.

    ``checksum`` identifies the merged source data; ``sources`` lists the
    files it was assembled from (packaged defaults first).
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    distribution: DistributionConfig = field(default_factory=DistributionConfig)
    checksum: str = ""
    sources: tuple[str, ...] = ()
