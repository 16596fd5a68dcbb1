"""
Composition of the SQL-backed distribution stack.

Used by the HTTP app and the scheduler CLI so both build the same object
graph from an EngineConfig.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from patronage_config.schema import EngineConfig
from patronage_kernel.domain.clock import Clock
from patronage_kernel.domain.values import MemberType
from patronage_services.distribution_service import DistributionService
from patronage_services.patronage_aggregator import PatronageAggregator
from patronage_services.scheduler import DividendScheduler
from patronage_services.sql_sources import (
    SqlServiceCostLedger,
    SqlTenantSettingsSource,
    TripsDrivenSource,
    TripsTakenSource,
)
from patronage_services.surplus_calculator import SurplusCalculator


def build_distribution_service(
    config: EngineConfig,
    session_factory: Callable[[], Session],
    clock: Clock | None = None,
) -> DistributionService:
    settings = SqlTenantSettingsSource(session_factory)
    ledger = SqlServiceCostLedger(
        session_factory, default_currency=config.distribution.default_currency
    )
    aggregator = PatronageAggregator(
        {
            MemberType.CUSTOMER: TripsTakenSource(session_factory),
            MemberType.DRIVER: TripsDrivenSource(session_factory),
        }
    )
    return DistributionService(
        session_factory=session_factory,
        aggregator=aggregator,
        surplus_calculator=SurplusCalculator(ledger, settings),
        settings_source=settings,
        clock=clock,
        retry_config=config.retry,
    )


def build_scheduler(
    config: EngineConfig,
    session_factory: Callable[[], Session],
    clock: Clock | None = None,
    distribution_service: DistributionService | None = None,
) -> DividendScheduler:
    service = distribution_service or build_distribution_service(config, session_factory, clock)
    return DividendScheduler(
        distribution_service=service,
        settings_source=SqlTenantSettingsSource(session_factory),
        session_factory=session_factory,
        clock=clock,
        scheduler_config=config.scheduler,
    )
