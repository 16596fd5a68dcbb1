"""ORM models for the patronage kernel."""

from patronage_kernel.models.distribution import (
    DistributionPeriod,
    DistributionStatus,
    DividendRecord,
    PaymentStatus,
)
from patronage_kernel.models.ledger import LedgerClose, ServiceCostEntry
from patronage_kernel.models.tenant_settings import TenantDividendSettings
from patronage_kernel.models.trip import Trip, TripStatus

__all__ = [
    "DistributionPeriod",
    "DistributionStatus",
    "DividendRecord",
    "PaymentStatus",
    "LedgerClose",
    "ServiceCostEntry",
    "TenantDividendSettings",
    "Trip",
    "TripStatus",
]
