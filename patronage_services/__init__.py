"""
Patronage services - orchestration of distribution runs.

Wires the collaborator protocols (trips, service ledger, tenant settings)
to the pure engines and the kernel store.
"""

from patronage_services.collaborators import (
    DividendSettingsSource,
    FinancialLedger,
    PatronageSource,
    PeriodFinancials,
    TenantDividendConfig,
)
from patronage_services.distribution_service import DistributionService
from patronage_services.patronage_aggregator import PatronageAggregator
from patronage_services.scheduler import (
    DividendScheduler,
    SchedulerRunReport,
    previous_period,
)
from patronage_services.sql_sources import (
    SqlServiceCostLedger,
    SqlTenantSettingsSource,
    TripsDrivenSource,
    TripsTakenSource,
)
from patronage_services.surplus_calculator import SurplusCalculator

__all__ = [
    "DistributionService",
    "DividendScheduler",
    "DividendSettingsSource",
    "FinancialLedger",
    "PatronageAggregator",
    "PatronageSource",
    "PeriodFinancials",
    "SchedulerRunReport",
    "SqlServiceCostLedger",
    "SqlTenantSettingsSource",
    "SurplusCalculator",
    "TenantDividendConfig",
    "TripsDrivenSource",
    "TripsTakenSource",
    "previous_period",
]
